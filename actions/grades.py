# actions/grades.py
# Grades per enrollment: CAT + exam scores, letter grade and grade points.

from decimal import Decimal

from models import db, Grade, Enrollment, Student, Course, Semester, LogAction
from utils.auth import check_auth_and_permissions, has_role, ADMIN, REGISTRAR, HOD, LECTURER, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.helpers import to_decimal, to_int, clean, money, transaction

MANAGE_ROLES = [ADMIN, LECTURER]
DELETE_ROLES = [ADMIN]
VIEW_ROLES = [ADMIN, REGISTRAR, LECTURER, HOD]
STUDENT_VIEW_ROLES = VIEW_ROLES + [STUDENT]

# (minimum total, letter, grade points)
GRADE_SCALE = [
    (80, 'A', Decimal('5.00')),
    (70, 'B', Decimal('4.00')),
    (60, 'C', Decimal('3.00')),
    (50, 'D', Decimal('2.00')),
    (40, 'E', Decimal('1.00')),
]


def calculate_grade_letter(total_score):
    """Returns (letter, gpa) for a total score; None in, (None, None) out."""
    if total_score is None:
        return None, None
    for minimum, letter, points in GRADE_SCALE:
        if total_score >= minimum:
            return letter, points
    return 'F', Decimal('0.00')


def _score(value, field):
    score = to_decimal(value, field)
    if score is not None and not (0 <= score <= 100):
        raise ActionError("CAT Score and Exam Score must be numbers between 0 and 100.")
    return score


def _apply_scores(grade, cat_score, exam_score, letter_grade=None, gpa=None):
    grade.cat_score, grade.exam_score = cat_score, exam_score
    grade.total_score = cat_score + exam_score if cat_score is not None and exam_score is not None else None
    derived_letter, derived_gpa = calculate_grade_letter(grade.total_score)
    grade.letter_grade = clean(letter_grade) or derived_letter
    grade.gpa = to_decimal(gpa, 'gpa') if gpa not in (None, '') else derived_gpa


def _to_dict(grade):
    enrollment = grade.enrollment
    return {
        "id": grade.id,
        "enrollment_id": enrollment.id,
        "cat_score": money(grade.cat_score) if grade.cat_score is not None else None,
        "exam_score": money(grade.exam_score) if grade.exam_score is not None else None,
        "total_score": money(grade.total_score) if grade.total_score is not None else None,
        "letter_grade": grade.letter_grade,
        "gpa": money(grade.gpa) if grade.gpa is not None else None,
        "student": {
            "id": enrollment.student.id,
            "name": enrollment.student.full_name,
            "registration_number": enrollment.student.registration_number,
        },
        "course": {"id": enrollment.course.id, "code": enrollment.course.code, "name": enrollment.course.name},
        "semester": {"id": enrollment.semester.id, "name": enrollment.semester.name},
    }


def _base_query():
    return Grade.query.join(Enrollment, Grade.enrollment_id == Enrollment.id)


def _get_or_404(grade_id):
    grade = db.session.get(Grade, grade_id)
    if not grade:
        raise NotFoundError("Grade not found")
    return grade


def _check_student_access(user, student_id):
    if has_role(user, STUDENT) and (not user.student_profile or user.student_profile.id != student_id):
        raise ForbiddenError("Forbidden: Students may only view their own grades.")


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(g) for g in _base_query().order_by(Grade.id.desc()).all()]


def get_by_semester(semester_id):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(g) for g in _base_query().filter(Enrollment.semester_id == semester_id).order_by(Grade.id).all()]


def get_by_course(course_id, semester_id=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = _base_query().filter(Enrollment.course_id == course_id)
    if semester_id:
        query = query.filter(Enrollment.semester_id == semester_id)
    return [_to_dict(g) for g in query.order_by(Grade.id).all()]


def get_by_student(student_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    _check_student_access(user, student_id)
    query = _base_query().join(Semester, Enrollment.semester_id == Semester.id).filter(Enrollment.student_id == student_id)
    return [_to_dict(g) for g in query.order_by(Semester.start_date).all()]


def get_by_id(grade_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(grade_id))


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    enrollment_id = to_int(data.get('enrollment_id'), 'enrollment')
    if not enrollment_id:
        raise ActionError("Enrollment is required")
    enrollment = db.session.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    if enrollment.grade:
        raise ActionError("A grade already exists for this enrollment. Please update it instead.")
    cat_score = _score(data.get('cat_score'), 'CAT score')
    exam_score = _score(data.get('exam_score'), 'exam score')

    with transaction("Failed to create grade"):
        grade = Grade(enrollment_id=enrollment.id)
        _apply_scores(grade, cat_score, exam_score, data.get('letter_grade'), data.get('gpa'))
        db.session.add(grade)
        db.session.flush()
        log_action(LogAction.CREATE, Grade.__tablename__, grade.id,
                   f"Recorded grade {grade.letter_grade} for {enrollment.student.full_name} in {enrollment.course.code}")
    return _to_dict(grade)


def update(grade_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    grade = _get_or_404(grade_id)
    cat_score = _score(data['cat_score'], 'CAT score') if 'cat_score' in data else grade.cat_score
    exam_score = _score(data['exam_score'], 'exam score') if 'exam_score' in data else grade.exam_score

    with transaction("Failed to update grade"):
        _apply_scores(grade, cat_score, exam_score, data.get('letter_grade'), data.get('gpa'))
        log_action(LogAction.UPDATE, Grade.__tablename__, grade.id, f"Updated grade to {grade.letter_grade}")
    return _to_dict(grade)


def delete(grade_id):
    check_auth_and_permissions(DELETE_ROLES)
    grade = _get_or_404(grade_id)
    with transaction("Failed to delete grade"):
        db.session.delete(grade)
        log_action(LogAction.DELETE, Grade.__tablename__, grade_id, f"Deleted grade {grade_id}")
    return {"success": True}


def calculate_student_gpa(student_id):
    """Average grade points across all graded enrollments, rounded to 2 dp."""
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    _check_student_access(user, student_id)
    average = db.session.query(db.func.avg(Grade.gpa)).join(Enrollment, Grade.enrollment_id == Enrollment.id).filter(
        Enrollment.student_id == student_id, Grade.gpa.isnot(None)
    ).scalar()
    return round(float(average), 2) if average is not None else 0.0


def get_own_grades():
    user = check_auth_and_permissions([STUDENT])
    if not user.student_profile:
        raise NotFoundError("Student not found")
    return get_by_student(user.student_profile.id)


def bulk_update_course_grades(course_id, semester_id, grades_data):
    """
    Creates or updates grades for many students of one course in one transaction.

    Entries for students not enrolled in the course/semester are skipped.
    Scores left out of an entry keep their stored values.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    if not db.session.get(Course, course_id):
        raise NotFoundError("Course not found")
    student_ids = [to_int(g.get('student_id'), 'student') for g in grades_data]
    if not student_ids:
        return []
    enrollments = Enrollment.query.filter(
        Enrollment.course_id == course_id,
        Enrollment.semester_id == semester_id,
        Enrollment.student_id.in_(student_ids)
    ).all()
    enrollment_map = {e.student_id: e for e in enrollments}

    results = []
    with transaction("Failed to bulk update grades"):
        for item in grades_data:
            enrollment = enrollment_map.get(to_int(item.get('student_id'), 'student'))
            if not enrollment:
                continue
            grade = enrollment.grade or Grade(enrollment_id=enrollment.id)
            cat_score = _score(item['cat_score'], 'CAT score') if 'cat_score' in item else grade.cat_score
            exam_score = _score(item['exam_score'], 'exam score') if 'exam_score' in item else grade.exam_score
            _apply_scores(grade, cat_score, exam_score, item.get('letter_grade'), item.get('gpa'))
            if grade.id is None:
                db.session.add(grade)
            results.append(grade)
        db.session.flush()
        log_action(LogAction.UPDATE, Grade.__tablename__, course_id,
                   f"Bulk updated {len(results)} grades for course {course_id} in semester {semester_id}")
    return [_to_dict(g) for g in results]


def get_course_enrollments_without_grades(course_id, semester_id):
    check_auth_and_permissions(MANAGE_ROLES)
    enrollments = Enrollment.query.outerjoin(Grade, Grade.enrollment_id == Enrollment.id).join(
        Student, Enrollment.student_id == Student.id
    ).filter(
        Enrollment.course_id == course_id,
        Enrollment.semester_id == semester_id,
        Grade.id.is_(None)
    ).order_by(Student.last_name, Student.first_name).all()
    return [{
        "id": e.id,
        "student": {
            "id": e.student.id,
            "first_name": e.student.first_name,
            "last_name": e.student.last_name,
            "registration_number": e.student.registration_number,
        },
    } for e in enrollments]
