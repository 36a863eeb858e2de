# actions/programs.py
# Academic programs offered by departments.

from models import db, Program, Department, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, REGISTRAR, HOD, ALL_ROLES
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, require, transaction

MANAGE_ROLES = [ADMIN, REGISTRAR, HOD]
VIEW_ROLES = ALL_ROLES


def _to_dict(program):
    return {
        "id": program.id,
        "name": program.name,
        "code": program.code,
        "duration_semesters": program.duration_semesters,
        "department": {"id": program.department.id, "name": program.department.name} if program.department else None,
        "course_count": program.courses.count(),
        "student_count": program.students.count(),
    }


def _get_or_404(program_id):
    program = db.session.get(Program, program_id)
    if not program:
        raise NotFoundError("Program not found")
    return program


def _check_unique(name, code, exclude_id=None):
    query = Program.query
    if exclude_id:
        query = query.filter(Program.id != exclude_id)
    if name and query.filter(db.func.lower(Program.name) == name.lower()).first():
        raise ActionError("Program with this name already exists")
    if code and query.filter(db.func.upper(Program.code) == code.upper()).first():
        raise ActionError("Program with this code already exists")


def _duration(value):
    duration = to_int(value, 'duration')
    if duration is not None and duration <= 0:
        raise ActionError("Duration must be a positive number of semesters")
    return duration


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(p) for p in Program.query.order_by(Program.name).all()]


def get_by_id(program_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(program_id))


def get_by_department(department_id):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(p) for p in Program.query.filter_by(department_id=department_id).order_by(Program.name).all()]


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'name', 'code', 'department_id', message="Name, code, and department are required")
    name, code = clean(data['name']), clean(data['code']).upper()
    department_id = to_int(data['department_id'], 'department')
    if not db.session.get(Department, department_id):
        raise NotFoundError("Department not found")
    duration = _duration(data.get('duration_semesters')) or 8
    _check_unique(name, code)

    with transaction("Failed to create program"):
        program = Program(name=name, code=code, department_id=department_id, duration_semesters=duration)
        db.session.add(program)
        db.session.flush()
        log_action(LogAction.CREATE, Program.__tablename__, program.id, f"Created program {code} - {name}")
    return _to_dict(program)


def update(program_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    program = _get_or_404(program_id)
    name = clean(data.get('name'))
    code = clean(data.get('code'))
    code = code.upper() if code else None
    department_id = to_int(data.get('department_id'), 'department')
    if department_id and not db.session.get(Department, department_id):
        raise NotFoundError("Department not found")
    duration = _duration(data.get('duration_semesters'))
    _check_unique(name, code, exclude_id=program.id)

    with transaction("Failed to update program"):
        if name: program.name = name
        if code: program.code = code
        if department_id: program.department_id = department_id
        if duration: program.duration_semesters = duration
        log_action(LogAction.UPDATE, Program.__tablename__, program.id, f"Updated program {program.code}")
    return _to_dict(program)


def delete(program_id):
    check_auth_and_permissions(MANAGE_ROLES)
    program = _get_or_404(program_id)
    if program.courses.count():
        raise ActionError("Cannot delete program with courses")
    if program.students.count():
        raise ActionError("Cannot delete program with enrolled students")
    if program.fee_structures.count():
        raise ActionError("Cannot delete program with fee structures")

    with transaction("Failed to delete program"):
        code = program.code
        db.session.delete(program)
        log_action(LogAction.DELETE, Program.__tablename__, program_id, f"Deleted program {code}")
    return {"success": True}
