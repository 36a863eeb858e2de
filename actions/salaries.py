# actions/salaries.py
# Staff payroll: salary records, filtering, and payroll statistics.

from datetime import date

from sqlalchemy import or_, extract

from models import db, StaffSalary, SalaryStatus, Staff, Department, LogAction
from utils.auth import check_auth_and_permissions, has_role, ADMIN, ACCOUNTANT, STAFF, LECTURER, HOD, REGISTRAR
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.helpers import clean, to_int, to_decimal, parse_date, iso, money, transaction

MANAGE_ROLES = [ADMIN, ACCOUNTANT]
VIEW_ROLES = [ADMIN, ACCOUNTANT]
SELF_VIEW_ROLES = [STAFF, LECTURER, HOD, REGISTRAR]

MONTHS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


def _to_dict(salary):
    staff = salary.staff
    return {
        "id": salary.id,
        "amount": money(salary.amount),
        "payment_date": iso(salary.payment_date),
        "description": salary.description,
        "status": salary.status.value,
        "staff": {
            "id": staff.id,
            "name": staff.full_name,
            "email": staff.email,
            "position": staff.position,
            "department": staff.department.name if staff.department else None,
        },
    }


def _get_or_404(salary_id):
    salary = db.session.get(StaffSalary, salary_id)
    if not salary:
        raise NotFoundError("Salary record not found")
    return salary


def parse_status(value):
    try:
        return SalaryStatus(str(value).lower())
    except ValueError:
        raise ActionError(f"Invalid salary status: {value}")


def _ordered(query):
    return query.order_by(StaffSalary.payment_date.desc(), StaffSalary.id.desc())


# --- Queries ---

def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(s) for s in _ordered(StaffSalary.query).all()]


def get_by_id(salary_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(salary_id))


def get_by_staff(staff_id):
    user = check_auth_and_permissions(VIEW_ROLES + SELF_VIEW_ROLES)
    if not has_role(user, *VIEW_ROLES) and (not user.staff_profile or user.staff_profile.id != staff_id):
        raise ForbiddenError("Forbidden: You can only view your own salary records.")
    return [_to_dict(s) for s in _ordered(StaffSalary.query.filter_by(staff_id=staff_id)).all()]


def get_by_department(department_id):
    check_auth_and_permissions(VIEW_ROLES)
    query = StaffSalary.query.join(Staff).filter(Staff.department_id == department_id)
    return [_to_dict(s) for s in _ordered(query).all()]


def filter_salaries(staff_id=None, department_id=None, status=None, date_from=None, date_to=None,
                    min_amount=None, max_amount=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = StaffSalary.query.join(Staff)
    if staff_id: query = query.filter(StaffSalary.staff_id == to_int(staff_id, 'staff'))
    if department_id: query = query.filter(Staff.department_id == to_int(department_id, 'department'))
    if status: query = query.filter(StaffSalary.status == parse_status(status))
    if date_from: query = query.filter(StaffSalary.payment_date >= parse_date(date_from, 'from date'))
    if date_to: query = query.filter(StaffSalary.payment_date <= parse_date(date_to, 'to date'))
    if min_amount not in (None, ''): query = query.filter(StaffSalary.amount >= to_decimal(min_amount, 'minimum amount'))
    if max_amount not in (None, ''): query = query.filter(StaffSalary.amount <= to_decimal(max_amount, 'maximum amount'))
    return [_to_dict(s) for s in _ordered(query).all()]


def search(query):
    check_auth_and_permissions(VIEW_ROLES)
    term = f"%{(query or '').strip()}%"
    results = StaffSalary.query.join(Staff).outerjoin(Department, Staff.department_id == Department.id).filter(or_(
        Staff.first_name.ilike(term),
        Staff.last_name.ilike(term),
        (Staff.first_name + ' ' + Staff.last_name).ilike(term),
        Staff.email.ilike(term),
        Staff.position.ilike(term),
        Department.name.ilike(term),
        StaffSalary.description.ilike(term)
    ))
    return [_to_dict(s) for s in _ordered(results).all()]


def get_payroll_summary():
    check_auth_and_permissions(VIEW_ROLES)
    totals = dict(db.session.query(StaffSalary.status, db.func.sum(StaffSalary.amount)).group_by(StaffSalary.status).all())
    return {
        "total_paid": money(totals.get(SalaryStatus.PAID)),
        "total_pending": money(totals.get(SalaryStatus.PENDING)),
        "total_cancelled": money(totals.get(SalaryStatus.CANCELLED)),
        "total_records": StaffSalary.query.count(),
        "staff_count": db.session.query(db.func.count(db.distinct(StaffSalary.staff_id))).scalar(),
    }


def get_monthly_stats(year=None):
    """Paid salary totals for each month of a year, January first."""
    check_auth_and_permissions(VIEW_ROLES)
    year = to_int(year, 'year') or date.today().year
    month = extract('month', StaffSalary.payment_date)
    rows = db.session.query(
        month.label('month'),
        db.func.sum(StaffSalary.amount).label('total'),
        db.func.count(StaffSalary.id).label('records')
    ).filter(
        extract('year', StaffSalary.payment_date) == year,
        StaffSalary.status == SalaryStatus.PAID
    ).group_by(month).all()
    by_month = {int(row.month): row for row in rows}
    return [{
        "month": MONTHS[m - 1],
        "total": money(by_month[m].total) if m in by_month else 0.0,
        "count": by_month[m].records if m in by_month else 0,
    } for m in range(1, 13)]


# --- Mutations ---

def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    staff_id = to_int(data.get('staff_id'), 'staff')
    amount = to_decimal(data.get('amount'), 'amount')
    payment_date = parse_date(data.get('payment_date'), 'payment date')
    if not staff_id or amount is None or not payment_date:
        raise ActionError("Staff, amount, and payment date are required")
    if amount <= 0:
        raise ActionError("Amount must be greater than zero")
    staff = db.session.get(Staff, staff_id)
    if not staff:
        raise NotFoundError("Staff member not found")
    status = parse_status(data['status']) if clean(data.get('status')) else SalaryStatus.PENDING

    with transaction("Failed to create salary record"):
        salary = StaffSalary(staff_id=staff_id, amount=amount, payment_date=payment_date,
                             description=clean(data.get('description')), status=status)
        db.session.add(salary)
        db.session.flush()
        log_action(LogAction.CREATE, StaffSalary.__tablename__, salary.id,
                   f"Created {status.value} salary of {amount} for {staff.full_name}")
    return _to_dict(salary)


def update(salary_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    salary = _get_or_404(salary_id)
    staff_id = to_int(data.get('staff_id'), 'staff')
    if staff_id and not db.session.get(Staff, staff_id):
        raise NotFoundError("Staff member not found")
    amount = to_decimal(data.get('amount'), 'amount')
    if amount is not None and amount <= 0:
        raise ActionError("Amount must be greater than zero")
    payment_date = parse_date(data.get('payment_date'), 'payment date')
    status = parse_status(data['status']) if clean(data.get('status')) else None

    with transaction("Failed to update salary record"):
        if staff_id: salary.staff_id = staff_id
        if amount is not None: salary.amount = amount
        if payment_date: salary.payment_date = payment_date
        if status: salary.status = status
        if 'description' in data: salary.description = clean(data['description'])
        log_action(LogAction.UPDATE, StaffSalary.__tablename__, salary.id, f"Updated salary record {salary.id}")
    return _to_dict(salary)


def mark_paid(salary_id):
    return update(salary_id, {"status": SalaryStatus.PAID.value})


def delete(salary_id):
    check_auth_and_permissions(MANAGE_ROLES)
    salary = _get_or_404(salary_id)
    with transaction("Failed to delete salary record"):
        db.session.delete(salary)
        log_action(LogAction.DELETE, StaffSalary.__tablename__, salary_id, f"Deleted salary record {salary_id}")
    return {"success": True}
