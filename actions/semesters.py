# actions/semesters.py
# Semester CRUD with date-range validation, plus per-semester student/course listings.

from datetime import date

from sqlalchemy import or_, and_

from models import db, Semester, Course, Enrollment, Student, FeeStructure, Invoice, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, REGISTRAR, ALL_ROLES
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, parse_date, require, iso, transaction

MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = ALL_ROLES


def _to_dict(semester, with_counts=True):
    result = {
        "id": semester.id,
        "name": semester.name,
        "start_date": iso(semester.start_date),
        "end_date": iso(semester.end_date),
    }
    if with_counts:
        result["course_count"] = semester.courses.count()
        result["student_count"] = db.session.query(db.func.count(db.distinct(Enrollment.student_id))).filter(Enrollment.semester_id == semester.id).scalar()
    return result


def _get_or_404(semester_id):
    semester = db.session.get(Semester, semester_id)
    if not semester:
        raise NotFoundError("Semester not found")
    return semester


def _check_dates(start_date, end_date, exclude_id=None):
    """Semesters may not share a start or end date or intersect another semester."""
    if start_date >= end_date:
        raise ActionError("End date must be after start date")
    query = Semester.query.filter(or_(
        and_(Semester.start_date < end_date, Semester.end_date > start_date),
        Semester.start_date == start_date,
        Semester.end_date == end_date
    ))
    if exclude_id:
        query = query.filter(Semester.id != exclude_id)
    overlapping = query.first()
    if overlapping:
        raise ActionError(f'Semester dates overlap with "{overlapping.name}"')


def _check_name(name, exclude_id=None):
    query = Semester.query.filter(db.func.lower(Semester.name) == name.lower())
    if exclude_id:
        query = query.filter(Semester.id != exclude_id)
    if query.first():
        raise ActionError("Semester with this name already exists")


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(s) for s in Semester.query.order_by(Semester.start_date.desc()).all()]


def get_by_id(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(semester_id))


def get_current():
    """The semester whose date range contains today, if any."""
    check_auth_and_permissions(VIEW_ROLES)
    today = date.today()
    semester = Semester.query.filter(Semester.start_date <= today, Semester.end_date >= today).first()
    return _to_dict(semester) if semester else None


def get_details(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    semester = _get_or_404(semester_id)
    result = _to_dict(semester)
    result["courses"] = get_courses(semester_id)
    result["students"] = get_students(semester_id)
    return result


def get_students(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    _get_or_404(semester_id)
    students = Student.query.join(Enrollment, Enrollment.student_id == Student.id).filter(
        Enrollment.semester_id == semester_id
    ).distinct().order_by(Student.last_name, Student.first_name).all()
    return [{
        "id": s.id,
        "name": s.full_name,
        "email": s.email,
        "registration_number": s.registration_number,
        "program": s.program.name if s.program else None,
    } for s in students]


def get_courses(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    _get_or_404(semester_id)
    courses = Course.query.filter_by(semester_id=semester_id).order_by(Course.code).all()
    return [{
        "id": c.id,
        "code": c.code,
        "name": c.name,
        "program": c.program.name if c.program else None,
        "lecturer": c.lecturer.full_name if c.lecturer else None,
        "enrollment_count": c.enrollments.count(),
    } for c in courses]


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'name', 'start_date', 'end_date', message="Name, start date, and end date are required")
    name = clean(data['name'])
    start_date = parse_date(data['start_date'], 'start date')
    end_date = parse_date(data['end_date'], 'end date')
    _check_dates(start_date, end_date)
    _check_name(name)

    with transaction("Failed to create semester"):
        semester = Semester(name=name, start_date=start_date, end_date=end_date)
        db.session.add(semester)
        db.session.flush()
        log_action(LogAction.CREATE, Semester.__tablename__, semester.id, f"Created semester {name}")
    return _to_dict(semester)


def update(semester_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    semester = _get_or_404(semester_id)
    name = clean(data.get('name')) or semester.name
    start_date = parse_date(data.get('start_date'), 'start date') or semester.start_date
    end_date = parse_date(data.get('end_date'), 'end date') or semester.end_date
    _check_dates(start_date, end_date, exclude_id=semester.id)
    _check_name(name, exclude_id=semester.id)

    with transaction("Failed to update semester"):
        semester.name, semester.start_date, semester.end_date = name, start_date, end_date
        log_action(LogAction.UPDATE, Semester.__tablename__, semester.id, f"Updated semester {name}")
    return _to_dict(semester)


def delete(semester_id):
    check_auth_and_permissions(MANAGE_ROLES)
    semester = _get_or_404(semester_id)
    blocked = (
        semester.courses.count()
        or semester.enrollments.count()
        or FeeStructure.query.filter_by(semester_id=semester.id).count()
        or Invoice.query.filter_by(semester_id=semester.id).count()
        or Student.query.filter_by(current_semester_id=semester.id).count()
    )
    if blocked:
        raise ActionError("Cannot delete semester with courses, enrollments, students, fee structures, or invoices")

    with transaction("Failed to delete semester"):
        name = semester.name
        db.session.delete(semester)
        log_action(LogAction.DELETE, Semester.__tablename__, semester_id, f"Deleted semester {name}")
    return {"success": True}
