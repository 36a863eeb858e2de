# actions/staff.py
# Staff records. Every staff member owns a login account, created and removed with them.

from sqlalchemy import or_

from models import db, Staff, User, Department, LogAction
from utils.auth import check_auth_and_permissions, resolve_role, ADMIN, REGISTRAR, HOD, LECTURER, ACCOUNTANT, STAFF
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, iso, transaction
from utils.storage import upload_file, delete_file


MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = [ADMIN, REGISTRAR, HOD, LECTURER, ACCOUNTANT]

DOCUMENT_FIELDS = ('employment_documents_url', 'national_id_photo_url', 'academic_certificates_url', 'passport_photo_url')


def _to_dict(staff, with_documents=False):
    result = {
        "id": staff.id,
        "first_name": staff.first_name,
        "last_name": staff.last_name,
        "name": staff.full_name,
        "email": staff.email,
        "id_number": staff.id_number,
        "position": staff.position,
        "department": {"id": staff.department.id, "name": staff.department.name} if staff.department else None,
        "user": {"id": staff.user.id, "role": {"id": staff.user.role.id, "name": staff.user.role.name}},
        "created_at": iso(staff.created_at),
        "updated_at": iso(staff.updated_at),
    }
    if with_documents:
        for field in DOCUMENT_FIELDS:
            result[field] = getattr(staff, field)
    return result


def _get_or_404(staff_id):
    staff = db.session.get(Staff, staff_id)
    if not staff:
        raise NotFoundError("Staff member not found")
    return staff


def _check_department(department_id):
    if department_id and not db.session.get(Department, department_id):
        raise NotFoundError("Department not found")


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(s) for s in Staff.query.order_by(Staff.last_name, Staff.first_name).all()]


def search(query):
    check_auth_and_permissions(VIEW_ROLES)
    term = f"%{(query or '').strip()}%"
    results = Staff.query.filter(or_(
        Staff.first_name.ilike(term),
        Staff.last_name.ilike(term),
        (Staff.first_name + ' ' + Staff.last_name).ilike(term),
        Staff.email.ilike(term),
        Staff.id_number.ilike(term),
        Staff.position.ilike(term)
    )).order_by(Staff.last_name, Staff.first_name).all()
    return [_to_dict(s) for s in results]


def get_by_id(staff_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(staff_id), with_documents=True)


def get_by_department(department_id):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(s) for s in Staff.query.filter_by(department_id=department_id).order_by(Staff.last_name).all()]


def create(data):
    """
    Registers a staff member together with their login account.

    The account has no password until one is set, so it cannot be used to
    sign in straight away.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    first_name, last_name = clean(data.get('first_name')), clean(data.get('last_name'))
    email, position = clean(data.get('email')), clean(data.get('position'))
    if not all([first_name, last_name, email, position]):
        raise ActionError("All required fields must be filled")
    email = email.lower()
    id_number = clean(data.get('id_number'))
    department_id = to_int(data.get('department_id'), 'department')
    _check_department(department_id)
    role = resolve_role(data.get('role_id'), data.get('role') or STAFF)

    if Staff.query.filter(db.func.lower(Staff.email) == email).first():
        raise ActionError("Staff with this email already exists")
    if id_number and Staff.query.filter_by(id_number=id_number).first():
        raise ActionError("Staff with this ID number already exists")
    if User.query.filter(db.func.lower(User.email) == email).first():
        raise ActionError("User with this email already exists")

    with transaction("Failed to create staff member"):
        user = User(email=email, role_id=role.id)
        if clean(data.get('password')):
            user.set_password(data['password'])
        db.session.add(user)
        db.session.flush()
        staff = Staff(
            user_id=user.id, department_id=department_id, first_name=first_name,
            last_name=last_name, email=email, id_number=id_number, position=position
        )
        db.session.add(staff)
        db.session.flush()
        log_action(LogAction.CREATE, Staff.__tablename__, staff.id, f"Created staff member {first_name} {last_name} ({position})")
    return _to_dict(staff)


def update(staff_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    staff = _get_or_404(staff_id)
    email = clean(data.get('email'))
    email = email.lower() if email else None
    id_number = clean(data.get('id_number'))
    department_id = to_int(data.get('department_id'), 'department')
    _check_department(department_id)
    role = resolve_role(data.get('role_id'), data.get('role')) if (data.get('role_id') or data.get('role')) else None

    if email and email != staff.email.lower():
        if Staff.query.filter(db.func.lower(Staff.email) == email, Staff.id != staff.id).first():
            raise ActionError("Another staff member with this email already exists")
        if User.query.filter(db.func.lower(User.email) == email, User.id != staff.user_id).first():
            raise ActionError("Another user with this email already exists")
    if id_number and Staff.query.filter(Staff.id_number == id_number, Staff.id != staff.id).first():
        raise ActionError("Another staff member with this ID number already exists")

    with transaction("Failed to update staff member"):
        for field in ('first_name', 'last_name', 'position'):
            if clean(data.get(field)):
                setattr(staff, field, clean(data[field]))
        if id_number: staff.id_number = id_number
        if department_id and department_id != staff.department_id:
            # A head must belong to the department they head
            for headed in Department.query.filter(Department.head_of_department_id == staff.id,
                                                  Department.id != department_id).all():
                headed.head_of_department_id = None
                log_action(LogAction.UPDATE, Department.__tablename__, headed.id,
                           f"Removed {staff.full_name} as head of {headed.name} after department change")
            staff.department_id = department_id
        # The login account mirrors the staff email and carries the role
        if email:
            staff.email = email
            staff.user.email = email
        if role:
            staff.user.role_id = role.id
        log_action(LogAction.UPDATE, Staff.__tablename__, staff.id, f"Updated staff member {staff.full_name}")
    return _to_dict(staff)


def update_documents(staff_id, documents=None, files=None):
    """
    Sets document URLs directly and/or uploads replacement files.

    Args:
        documents (dict): field name -> URL (or None to clear).
        files (dict): field name -> uploaded FileStorage.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    staff = _get_or_404(staff_id)
    documents = {k: v for k, v in (documents or {}).items() if k in DOCUMENT_FIELDS}
    replaced = []
    for field, file_storage in (files or {}).items():
        if field not in DOCUMENT_FIELDS or not file_storage or not file_storage.filename:
            continue
        documents[field] = upload_file(file_storage, 'staff')
        if getattr(staff, field):
            replaced.append(getattr(staff, field))
    if not documents:
        raise ActionError("No documents provided")

    with transaction("Failed to update staff documents"):
        for field, value in documents.items():
            setattr(staff, field, value)
        log_action(LogAction.UPDATE, Staff.__tablename__, staff.id, "Updated staff member documents")
    for old_url in replaced:
        delete_file(old_url)
    return _to_dict(staff, with_documents=True)


def delete(staff_id):
    check_auth_and_permissions(MANAGE_ROLES)
    staff = _get_or_404(staff_id)
    if Department.query.filter_by(head_of_department_id=staff.id).first():
        raise ActionError("Cannot delete staff member who is head of a department")
    if staff.courses.count():
        raise ActionError("Cannot delete staff member who is assigned to courses")
    if staff.salaries.count():
        raise ActionError("Cannot delete staff member with salary records")
    if staff.materials.count():
        raise ActionError("Cannot delete staff member who has uploaded course materials")
    if staff.assignments.count():
        raise ActionError("Cannot delete staff member who has set assignments")

    documents = [getattr(staff, f) for f in DOCUMENT_FIELDS if getattr(staff, f)]
    with transaction("Failed to delete staff member"):
        name, user = staff.full_name, staff.user
        db.session.delete(staff)
        db.session.flush()
        if user:
            db.session.delete(user)
        log_action(LogAction.DELETE, Staff.__tablename__, staff_id, f"Deleted staff member {name}")
    for url in documents:
        delete_file(url)
    return {"success": True}
