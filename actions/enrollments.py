# actions/enrollments.py
# Student x course x semester registrations.

from datetime import date

from models import db, Enrollment, Student, Course, Semester, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, REGISTRAR, HOD, LECTURER
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import to_int, parse_date, iso, money, require, transaction

MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = [ADMIN, REGISTRAR, HOD, LECTURER]


def _to_dict(enrollment):
    grade = enrollment.grade
    return {
        "id": enrollment.id,
        "enrollment_date": iso(enrollment.enrollment_date),
        "student": {
            "id": enrollment.student.id,
            "name": enrollment.student.full_name,
            "registration_number": enrollment.student.registration_number,
        },
        "course": {"id": enrollment.course.id, "code": enrollment.course.code, "name": enrollment.course.name},
        "semester": {"id": enrollment.semester.id, "name": enrollment.semester.name},
        "grade": {"id": grade.id, "total_score": money(grade.total_score), "letter_grade": grade.letter_grade} if grade else None,
    }


def _get_or_404(enrollment_id):
    enrollment = db.session.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    return enrollment


def _resolve_refs(student_id, course_id, semester_id):
    if not db.session.get(Student, student_id):
        raise NotFoundError("Student not found")
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found")
    if not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")
    return course


def _check_unique(student_id, course_id, semester_id, exclude_id=None):
    query = Enrollment.query.filter_by(student_id=student_id, course_id=course_id, semester_id=semester_id)
    if exclude_id:
        query = query.filter(Enrollment.id != exclude_id)
    if query.first():
        raise ActionError("Student is already enrolled in this course for this semester")


def get_all(student_id=None, course_id=None, semester_id=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = Enrollment.query
    if student_id: query = query.filter(Enrollment.student_id == student_id)
    if course_id: query = query.filter(Enrollment.course_id == course_id)
    if semester_id: query = query.filter(Enrollment.semester_id == semester_id)
    return [_to_dict(e) for e in query.order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc()).all()]


def get_by_id(enrollment_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(enrollment_id))


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'student_id', 'course_id', message="Student and course are required")
    student_id = to_int(data['student_id'], 'student')
    course_id = to_int(data['course_id'], 'course')
    course = db.session.get(Course, course_id)
    # A course runs in exactly one semester, so that is the default
    semester_id = to_int(data.get('semester_id'), 'semester') or (course.semester_id if course else None)
    _resolve_refs(student_id, course_id, semester_id)
    _check_unique(student_id, course_id, semester_id)

    with transaction("Failed to create enrollment"):
        enrollment = Enrollment(
            student_id=student_id, course_id=course_id, semester_id=semester_id,
            enrollment_date=parse_date(data.get('enrollment_date'), 'enrollment date') or date.today()
        )
        db.session.add(enrollment)
        db.session.flush()
        log_action(LogAction.CREATE, Enrollment.__tablename__, enrollment.id,
                   f"Enrolled student {student_id} in course {enrollment.course.code}")
    return _to_dict(enrollment)


def update(enrollment_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    enrollment = _get_or_404(enrollment_id)
    student_id = to_int(data.get('student_id'), 'student') or enrollment.student_id
    course_id = to_int(data.get('course_id'), 'course') or enrollment.course_id
    semester_id = to_int(data.get('semester_id'), 'semester') or enrollment.semester_id
    _resolve_refs(student_id, course_id, semester_id)
    _check_unique(student_id, course_id, semester_id, exclude_id=enrollment.id)

    with transaction("Failed to update enrollment"):
        enrollment.student_id, enrollment.course_id, enrollment.semester_id = student_id, course_id, semester_id
        enrollment_date = parse_date(data.get('enrollment_date'), 'enrollment date')
        if enrollment_date:
            enrollment.enrollment_date = enrollment_date
        log_action(LogAction.UPDATE, Enrollment.__tablename__, enrollment.id, f"Updated enrollment {enrollment.id}")
    return _to_dict(enrollment)


def delete(enrollment_id):
    """Removes an enrollment; its grade goes with it."""
    check_auth_and_permissions(MANAGE_ROLES)
    enrollment = _get_or_404(enrollment_id)
    with transaction("Failed to delete enrollment"):
        db.session.delete(enrollment)
        log_action(LogAction.DELETE, Enrollment.__tablename__, enrollment_id, f"Deleted enrollment {enrollment_id}")
    return {"success": True}
