# actions/courses.py
# Courses: a program's unit of study in one semester, taught by one lecturer.

from models import db, Course, Program, Semester, Staff, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, REGISTRAR, HOD, ALL_ROLES
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, to_decimal, money, require, transaction

MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = ALL_ROLES
LECTURER_VIEW_ROLES = [ADMIN, REGISTRAR, HOD]


def _to_dict(course):
    return {
        "id": course.id,
        "code": course.code,
        "name": course.name,
        "credits": money(course.credits),
        "description": course.description,
        "program": {"id": course.program.id, "name": course.program.name, "code": course.program.code},
        "semester": {"id": course.semester.id, "name": course.semester.name},
        "lecturer": {"id": course.lecturer.id, "name": course.lecturer.full_name} if course.lecturer else None,
        "enrollment_count": course.enrollments.count(),
    }


def _get_or_404(course_id):
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found")
    return course


def _resolve_refs(program_id, semester_id, lecturer_id):
    if program_id and not db.session.get(Program, program_id):
        raise NotFoundError("Program not found")
    if semester_id and not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")
    if lecturer_id and not db.session.get(Staff, lecturer_id):
        raise NotFoundError("Lecturer not found")


def _check_unique(program_id, code, semester_id, exclude_id=None):
    query = Course.query.filter(
        Course.program_id == program_id,
        db.func.upper(Course.code) == code.upper(),
        Course.semester_id == semester_id
    )
    if exclude_id:
        query = query.filter(Course.id != exclude_id)
    if query.first():
        raise ActionError("A course with this code already exists for this program and semester")


def get_all(program_id=None, semester_id=None, lecturer_id=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = Course.query
    if program_id: query = query.filter(Course.program_id == program_id)
    if semester_id: query = query.filter(Course.semester_id == semester_id)
    if lecturer_id: query = query.filter(Course.lecturer_id == lecturer_id)
    return [_to_dict(c) for c in query.order_by(Course.code).all()]


def get_by_id(course_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(course_id))


def get_details(course_id):
    check_auth_and_permissions(VIEW_ROLES)
    course = _get_or_404(course_id)
    result = _to_dict(course)
    result["students"] = [{
        "enrollment_id": e.id,
        "student_id": e.student.id,
        "name": e.student.full_name,
        "registration_number": e.student.registration_number,
    } for e in course.enrollments.all()]
    result["material_count"] = course.materials.count()
    result["assignment_count"] = course.assignments.count()
    return result


def get_lecturers():
    """Staff who can be assigned to teach a course."""
    check_auth_and_permissions(LECTURER_VIEW_ROLES)
    return [{"id": s.id, "name": s.full_name, "department": s.department.name if s.department else None}
            for s in Staff.query.order_by(Staff.last_name, Staff.first_name).all()]


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'name', 'code', 'program_id', 'semester_id', message="Name, code, program, and semester are required")
    program_id = to_int(data['program_id'], 'program')
    semester_id = to_int(data['semester_id'], 'semester')
    lecturer_id = to_int(data.get('lecturer_id'), 'lecturer')
    code = clean(data['code']).upper()
    credits = to_decimal(data.get('credits'), 'credits') or 3
    if credits <= 0:
        raise ActionError("Credits must be greater than zero")
    _resolve_refs(program_id, semester_id, lecturer_id)
    _check_unique(program_id, code, semester_id)

    with transaction("Failed to create course"):
        course = Course(
            name=clean(data['name']), code=code, credits=credits,
            description=clean(data.get('description')),
            program_id=program_id, semester_id=semester_id, lecturer_id=lecturer_id
        )
        db.session.add(course)
        db.session.flush()
        log_action(LogAction.CREATE, Course.__tablename__, course.id, f"Created course {code}")
    return _to_dict(course)


def update(course_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    course = _get_or_404(course_id)
    program_id = to_int(data.get('program_id'), 'program') or course.program_id
    semester_id = to_int(data.get('semester_id'), 'semester') or course.semester_id
    code = (clean(data.get('code')) or course.code).upper()
    lecturer_id = to_int(data.get('lecturer_id'), 'lecturer') if 'lecturer_id' in data else course.lecturer_id
    credits = to_decimal(data.get('credits'), 'credits')
    if credits is not None and credits <= 0:
        raise ActionError("Credits must be greater than zero")
    _resolve_refs(program_id, semester_id, lecturer_id)
    _check_unique(program_id, code, semester_id, exclude_id=course.id)

    with transaction("Failed to update course"):
        course.program_id, course.semester_id, course.code, course.lecturer_id = program_id, semester_id, code, lecturer_id
        if clean(data.get('name')): course.name = clean(data['name'])
        if credits is not None: course.credits = credits
        if 'description' in data: course.description = clean(data['description'])
        log_action(LogAction.UPDATE, Course.__tablename__, course.id, f"Updated course {code}")
    return _to_dict(course)


def delete(course_id):
    check_auth_and_permissions(MANAGE_ROLES)
    course = _get_or_404(course_id)
    if course.enrollments.count():
        raise ActionError("Cannot delete course with enrollments")
    if course.materials.count() or course.assignments.count():
        raise ActionError("Cannot delete course with materials or assignments")

    with transaction("Failed to delete course"):
        code = course.code
        db.session.delete(course)
        log_action(LogAction.DELETE, Course.__tablename__, course_id, f"Deleted course {code}")
    return {"success": True}
