# actions/assignments.py
# Lecturer-owned assignments, student submissions, and submission grading.

from datetime import datetime

from models import db, Assignment, AssignmentSubmission, Course, Enrollment, LogAction
from utils.auth import check_auth_and_permissions, get_staff_profile, get_student_profile, ADMIN, LECTURER, HOD, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, to_decimal, parse_datetime, iso, money, transaction
from utils.storage import upload_file, delete_file, get_public_url

LECTURER_ROLES = [LECTURER, HOD, ADMIN]
STUDENT_ROLES = [STUDENT]


def _to_dict(assignment):
    return {
        "id": assignment.id,
        "title": assignment.title,
        "description": assignment.description,
        "file_url": get_public_url(assignment.file_url),
        "due_date": iso(assignment.due_date),
        "assigned_date": iso(assignment.assigned_date),
        "course": {"id": assignment.course.id, "name": assignment.course.name, "code": assignment.course.code},
        "submission_count": assignment.submissions.count(),
    }


def _submission_to_dict(submission):
    return {
        "id": submission.id,
        "assignment_id": submission.assignment_id,
        "file_url": get_public_url(submission.file_url),
        "submitted_at": iso(submission.submitted_at),
        "remarks": submission.remarks,
        "grade": money(submission.grade) if submission.grade is not None else None,
        "student": {
            "id": submission.student.id,
            "first_name": submission.student.first_name,
            "last_name": submission.student.last_name,
            "registration_number": submission.student.registration_number,
        },
    }


def _own_assignment(assignment_id, staff):
    assignment = Assignment.query.filter_by(id=assignment_id, assigned_by_id=staff.id).first()
    if not assignment:
        raise NotFoundError("Assignment not found or unauthorized")
    return assignment


# --- Lecturer side ---

def get_lecturer_assignments():
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    assignments = Assignment.query.filter_by(assigned_by_id=staff.id).order_by(Assignment.due_date.desc()).all()
    return [_to_dict(a) for a in assignments]


def get_assignment_with_submissions(assignment_id):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    assignment = _own_assignment(assignment_id, staff)
    result = _to_dict(assignment)
    result["submissions"] = [_submission_to_dict(s) for s in
                             assignment.submissions.order_by(AssignmentSubmission.submitted_at.desc()).all()]
    return result


def get_lecturer_submissions(course_id=None):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    query = AssignmentSubmission.query.join(Assignment).filter(Assignment.assigned_by_id == staff.id)
    if course_id:
        query = query.filter(Assignment.course_id == course_id)
    return [_submission_to_dict(s) for s in query.order_by(AssignmentSubmission.submitted_at.desc()).all()]


def get_submission_statistics():
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    query = AssignmentSubmission.query.join(Assignment).filter(Assignment.assigned_by_id == staff.id)
    total = query.count()
    graded = query.filter(AssignmentSubmission.grade.isnot(None)).count()
    average = db.session.query(db.func.avg(AssignmentSubmission.grade)).join(Assignment).filter(
        Assignment.assigned_by_id == staff.id, AssignmentSubmission.grade.isnot(None)
    ).scalar()
    return {
        "total_submissions": total,
        "graded": graded,
        "pending": total - graded,
        "average_grade": round(float(average), 2) if average is not None else None,
    }


def create(data, file_storage=None):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    course_id = to_int(data.get('course_id'), 'course')
    title = clean(data.get('title'))
    due_date = parse_datetime(data.get('due_date'), 'due date')
    if not course_id or not title or not due_date:
        raise ActionError("Course, title, and due date are required")
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found")

    file_url = upload_file(file_storage, 'assignments') if file_storage and file_storage.filename else None
    with transaction("Failed to create assignment"):
        assignment = Assignment(course_id=course.id, assigned_by_id=staff.id, title=title,
                                description=clean(data.get('description')), file_url=file_url, due_date=due_date)
        db.session.add(assignment)
        db.session.flush()
        log_action(LogAction.CREATE, Assignment.__tablename__, assignment.id, f"Created assignment '{title}' for {course.code}")
    return _to_dict(assignment)


def update(assignment_id, data, file_storage=None):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    assignment = _own_assignment(assignment_id, staff)
    due_date = parse_datetime(data.get('due_date'), 'due date')
    old_file = None
    new_file = None
    if file_storage and file_storage.filename:
        new_file = upload_file(file_storage, 'assignments')
        old_file = assignment.file_url

    with transaction("Failed to update assignment"):
        if clean(data.get('title')): assignment.title = clean(data['title'])
        if 'description' in data: assignment.description = clean(data['description'])
        if due_date: assignment.due_date = due_date
        if new_file: assignment.file_url = new_file
        log_action(LogAction.UPDATE, Assignment.__tablename__, assignment.id, f"Updated assignment '{assignment.title}'")
    if old_file:
        delete_file(old_file)
    return _to_dict(assignment)


def delete(assignment_id):
    """Deletes an assignment with its submissions and removes the stored files."""
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    assignment = _own_assignment(assignment_id, staff)
    files = [assignment.file_url] + [s.file_url for s in assignment.submissions.all()]
    with transaction("Failed to delete assignment"):
        title = assignment.title
        db.session.delete(assignment)
        log_action(LogAction.DELETE, Assignment.__tablename__, assignment_id, f"Deleted assignment '{title}'")
    for url in files:
        delete_file(url)
    return {"success": True}


def grade_submission(submission_id, grade, remarks=None):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    submission = AssignmentSubmission.query.join(Assignment).filter(
        AssignmentSubmission.id == submission_id,
        Assignment.assigned_by_id == staff.id
    ).first()
    if not submission:
        raise NotFoundError("Submission not found or unauthorized")
    grade = to_decimal(grade, 'grade')
    if grade is None or not (0 <= grade <= 100):
        raise ActionError("Grade must be a number between 0 and 100")

    with transaction("Failed to grade submission"):
        submission.grade = grade
        submission.remarks = clean(remarks)
        log_action(LogAction.UPDATE, AssignmentSubmission.__tablename__, submission.id,
                   f"Graded submission {submission.id}: {grade}")
    return _submission_to_dict(submission)


# --- Student side ---

def get_student_assignments():
    """Assignments for every course the logged-in student is enrolled in."""
    student = get_student_profile(check_auth_and_permissions(STUDENT_ROLES))
    course_ids = [e.course_id for e in student.enrollments.all()]
    if not course_ids:
        return []
    assignments = Assignment.query.filter(Assignment.course_id.in_(course_ids)).order_by(Assignment.due_date).all()
    submitted = {s.assignment_id: s for s in AssignmentSubmission.query.filter_by(student_id=student.id).all()}
    results = []
    for assignment in assignments:
        item = _to_dict(assignment)
        submission = submitted.get(assignment.id)
        item["submission"] = _submission_to_dict(submission) if submission else None
        results.append(item)
    return results


def submit(assignment_id, file_storage):
    """Uploads (or replaces) the logged-in student's submission for an assignment."""
    student = get_student_profile(check_auth_and_permissions(STUDENT_ROLES))
    assignment = db.session.get(Assignment, assignment_id)
    if not assignment:
        raise NotFoundError("Assignment not found")
    if not Enrollment.query.filter_by(student_id=student.id, course_id=assignment.course_id).first():
        raise ActionError("You are not enrolled in this course")
    if not file_storage or not file_storage.filename:
        raise ActionError("A submission file is required")
    existing = AssignmentSubmission.query.filter_by(assignment_id=assignment.id, student_id=student.id).first()
    if existing and existing.grade is not None:
        raise ActionError("This submission has already been graded")

    file_url = upload_file(file_storage, 'submissions')
    old_file = existing.file_url if existing else None
    with transaction("Failed to submit assignment"):
        submission = existing or AssignmentSubmission(assignment_id=assignment.id, student_id=student.id)
        submission.file_url = file_url
        submission.submitted_at = datetime.utcnow()
        db.session.add(submission)
        db.session.flush()
        log_action(LogAction.CREATE if not existing else LogAction.UPDATE, AssignmentSubmission.__tablename__,
                   submission.id, f"Submitted assignment '{assignment.title}'")
    if old_file:
        delete_file(old_file)
    return _submission_to_dict(submission)
