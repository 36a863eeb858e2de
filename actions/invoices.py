# actions/invoices.py
# Student invoices, their running balance/status, and the finance summary.

from datetime import date
from decimal import Decimal

from models import db, Invoice, InvoiceStatus, Payment, Student, Semester, FeeStructure, LogAction
from utils.auth import check_auth_and_permissions, has_role, ADMIN, ACCOUNTANT, REGISTRAR, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.helpers import to_int, to_decimal, parse_date, iso, money, require, transaction

MANAGE_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR]
VIEW_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR]
STUDENT_VIEW_ROLES = VIEW_ROLES + [STUDENT]


# --- Balance bookkeeping ---

def status_for(amount_paid, balance):
    if balance <= 0:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.UNPAID


def recalculate(invoice):
    """
    Re-derives amount_paid from the invoice's payments, then balance and status.

    Call inside the same transaction as the payment write so the invoice
    never disagrees with its payments.
    """
    db.session.flush()
    paid = db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0)).filter(Payment.invoice_id == invoice.id).scalar()
    invoice.amount_paid = Decimal(str(paid)).quantize(Decimal('0.01'))
    invoice.balance = Decimal(str(invoice.amount_due)) - invoice.amount_paid
    invoice.status = status_for(invoice.amount_paid, invoice.balance)
    return invoice


def _to_dict(invoice):
    return {
        "id": invoice.id,
        "amount_due": money(invoice.amount_due),
        "amount_paid": money(invoice.amount_paid),
        "balance": money(invoice.balance),
        "due_date": iso(invoice.due_date),
        "issued_date": iso(invoice.issued_date),
        "status": invoice.status.value,
        "student": {
            "id": invoice.student.id,
            "name": invoice.student.full_name,
            "registration_number": invoice.student.registration_number,
            "email": invoice.student.email,
        },
        "semester": {"id": invoice.semester.id, "name": invoice.semester.name},
        "fee_structure": {
            "id": invoice.fee_structure.id,
            "description": invoice.fee_structure.description,
            "total_amount": money(invoice.fee_structure.total_amount),
        } if invoice.fee_structure else None,
    }


def _get_or_404(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def _ordered(query):
    return query.order_by(Invoice.issued_date.desc(), Invoice.id.desc()).all()


def _check_student_access(user, student_id):
    if has_role(user, STUDENT) and (not user.student_profile or user.student_profile.id != student_id):
        raise ForbiddenError("Forbidden: Students may only view their own invoices.")


def parse_status(value):
    try:
        return InvoiceStatus(str(value).lower())
    except ValueError:
        raise ActionError(f"Invalid invoice status: {value}")


# --- Queries ---

def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(i) for i in _ordered(Invoice.query)]


def get_by_student(student_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    _check_student_access(user, student_id)
    return [_to_dict(i) for i in _ordered(Invoice.query.filter_by(student_id=student_id))]


def get_by_semester(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(i) for i in _ordered(Invoice.query.filter_by(semester_id=semester_id))]


def get_by_status(status):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(i) for i in _ordered(Invoice.query.filter_by(status=parse_status(status)))]


def get_overdue():
    check_auth_and_permissions(VIEW_ROLES)
    query = Invoice.query.filter(Invoice.due_date < date.today(), Invoice.balance > 0)
    return [_to_dict(i) for i in query.order_by(Invoice.due_date).all()]


def get_by_id(invoice_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    invoice = _get_or_404(invoice_id)
    _check_student_access(user, invoice.student_id)
    return _to_dict(invoice)


def get_financial_summary():
    check_auth_and_permissions(VIEW_ROLES)
    total_due, total_paid, outstanding = db.session.query(
        db.func.coalesce(db.func.sum(Invoice.amount_due), 0),
        db.func.coalesce(db.func.sum(Invoice.amount_paid), 0),
        db.func.coalesce(db.func.sum(Invoice.balance), 0)
    ).one()
    revenue = db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0)).scalar()
    return {
        "total_revenue": money(revenue),
        "total_invoiced": money(total_due),
        "paid_amount": money(total_paid),
        "outstanding_balance": money(outstanding),
        "overdue_count": Invoice.query.filter(Invoice.due_date < date.today(), Invoice.balance > 0).count(),
    }


# --- Mutations ---

def create(data):
    """
    Issues an invoice. Without an explicit amount the fee structure's total is used.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'student_id', 'semester_id', 'due_date', message="Student, semester, and due date are required")
    student_id = to_int(data['student_id'], 'student')
    semester_id = to_int(data['semester_id'], 'semester')
    fee_structure_id = to_int(data.get('fee_structure_id'), 'fee structure')
    if not db.session.get(Student, student_id):
        raise NotFoundError("Student not found")
    if not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")
    fee_structure = None
    if fee_structure_id:
        fee_structure = db.session.get(FeeStructure, fee_structure_id)
        if not fee_structure:
            raise NotFoundError("Fee structure not found")

    amount_due = to_decimal(data.get('amount_due'), 'amount due')
    if amount_due is None and fee_structure:
        amount_due = Decimal(str(fee_structure.total_amount))
    if amount_due is None or amount_due <= 0:
        raise ActionError("Amount due must be greater than zero")
    amount_paid = to_decimal(data.get('amount_paid'), 'amount paid') or Decimal('0.00')
    if amount_paid < 0:
        raise ActionError("Amount paid cannot be negative")
    due_date = parse_date(data['due_date'], 'due date')
    issued_date = parse_date(data.get('issued_date'), 'issued date') or date.today()

    with transaction("Failed to create invoice"):
        balance = amount_due - amount_paid
        invoice = Invoice(
            student_id=student_id, semester_id=semester_id, fee_structure_id=fee_structure_id,
            amount_due=amount_due, amount_paid=amount_paid, balance=balance,
            due_date=due_date, issued_date=issued_date, status=status_for(amount_paid, balance)
        )
        db.session.add(invoice)
        db.session.flush()
        log_action(LogAction.CREATE, Invoice.__tablename__, invoice.id,
                   f"Issued invoice of {amount_due} to student {student_id}")
    return _to_dict(invoice)


def update(invoice_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    invoice = _get_or_404(invoice_id)
    amount_due = to_decimal(data.get('amount_due'), 'amount due')
    if amount_due is not None and amount_due <= 0:
        raise ActionError("Amount due must be greater than zero")
    amount_paid = to_decimal(data.get('amount_paid'), 'amount paid')
    if amount_paid is not None and amount_paid < 0:
        raise ActionError("Amount paid cannot be negative")
    if amount_paid is not None and invoice.payments.count():
        raise ActionError("Amount paid is derived from recorded payments and cannot be edited directly")
    due_date = parse_date(data.get('due_date'), 'due date')
    semester_id = to_int(data.get('semester_id'), 'semester')
    if semester_id and not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")

    with transaction("Failed to update invoice"):
        if amount_due is not None: invoice.amount_due = amount_due
        if amount_paid is not None: invoice.amount_paid = amount_paid
        if due_date: invoice.due_date = due_date
        if semester_id: invoice.semester_id = semester_id
        invoice.balance = Decimal(str(invoice.amount_due)) - Decimal(str(invoice.amount_paid))
        invoice.status = status_for(Decimal(str(invoice.amount_paid)), invoice.balance)
        log_action(LogAction.UPDATE, Invoice.__tablename__, invoice.id, f"Updated invoice {invoice.id}")
    return _to_dict(invoice)


def delete(invoice_id):
    check_auth_and_permissions(MANAGE_ROLES)
    invoice = _get_or_404(invoice_id)
    if invoice.payments.count():
        raise ActionError("Cannot delete invoice with recorded payments")
    with transaction("Failed to delete invoice"):
        db.session.delete(invoice)
        log_action(LogAction.DELETE, Invoice.__tablename__, invoice_id, f"Deleted invoice {invoice_id}")
    return {"success": True}


def issue_for_fee_structure(fee_structure_id, due_date):
    """
    Invoices every student in the fee structure's program who has not yet been
    invoiced for that semester. Returns the number of invoices issued.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    fee_structure = db.session.get(FeeStructure, fee_structure_id)
    if not fee_structure:
        raise NotFoundError("Fee structure not found")
    due_date = parse_date(due_date, 'due date')
    if not due_date:
        raise ActionError("Due date is required")
    already_invoiced = {sid for (sid,) in db.session.query(Invoice.student_id).filter_by(semester_id=fee_structure.semester_id)}
    students = [s for s in fee_structure.program.students.all() if s.id not in already_invoiced]

    amount = Decimal(str(fee_structure.total_amount))
    with transaction("Failed to issue invoices"):
        for student in students:
            db.session.add(Invoice(
                student_id=student.id, semester_id=fee_structure.semester_id, fee_structure_id=fee_structure.id,
                amount_due=amount, amount_paid=Decimal('0.00'), balance=amount, due_date=due_date,
                issued_date=date.today(), status=InvoiceStatus.UNPAID
            ))
        log_action(LogAction.CREATE, Invoice.__tablename__, fee_structure.id,
                   f"Issued {len(students)} invoices from fee structure {fee_structure.id}")
    return len(students)
