# actions/departments.py
# Department CRUD and head-of-department assignment.

from models import db, Department, Staff, Student, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, REGISTRAR, ALL_ROLES
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, transaction

MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = ALL_ROLES


def _to_dict(department):
    head = department.head
    return {
        "id": department.id,
        "name": department.name,
        "head": {"id": head.id, "name": head.full_name, "email": head.email} if head else None,
        "staff_count": department.staff.count(),
        "program_count": department.programs.count(),
    }


def _get_or_404(department_id):
    department = db.session.get(Department, department_id)
    if not department:
        raise NotFoundError("Department not found")
    return department


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(d) for d in Department.query.order_by(Department.name).all()]


def get_by_id(department_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(department_id))


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    name = clean(data.get('name'))
    if not name:
        raise ActionError("Department name is required")
    if Department.query.filter(db.func.lower(Department.name) == name.lower()).first():
        raise ActionError("Department with this name already exists")

    with transaction("Failed to create department"):
        department = Department(name=name)
        db.session.add(department)
        db.session.flush()
        log_action(LogAction.CREATE, Department.__tablename__, department.id, f"Created department {name}")
    return _to_dict(department)


def update(department_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    department = _get_or_404(department_id)
    name = clean(data.get('name'))
    if name and name.lower() != department.name.lower():
        clash = Department.query.filter(db.func.lower(Department.name) == name.lower(), Department.id != department.id).first()
        if clash:
            raise ActionError("Another department with this name already exists")

    with transaction("Failed to update department"):
        if name:
            department.name = name
        if 'head_of_department_id' in data:
            _set_head(department, to_int(data.get('head_of_department_id'), 'head of department'))
        log_action(LogAction.UPDATE, Department.__tablename__, department.id, f"Updated department {department.name}")
    return _to_dict(department)


def _set_head(department, staff_id):
    if staff_id is None:
        department.head_of_department_id = None
        return
    staff = db.session.get(Staff, staff_id)
    if not staff:
        raise NotFoundError("Staff member not found")
    if staff.department_id != department.id:
        raise ActionError("Head of department must be a member of the department")
    department.head_of_department_id = staff.id


def assign_head(department_id, staff_id):
    return update(department_id, {"head_of_department_id": staff_id})


def remove_head(department_id):
    return update(department_id, {"head_of_department_id": None})


def delete(department_id):
    check_auth_and_permissions(MANAGE_ROLES)
    department = _get_or_404(department_id)
    if department.staff.count():
        raise ActionError("Cannot delete department with staff members")
    if department.programs.count():
        raise ActionError("Cannot delete department with programs")
    if Student.query.filter_by(department_id=department.id).first():
        raise ActionError("Cannot delete department with students")

    with transaction("Failed to delete department"):
        name = department.name
        db.session.delete(department)
        log_action(LogAction.DELETE, Department.__tablename__, department_id, f"Deleted department {name}")
    return {"success": True}
