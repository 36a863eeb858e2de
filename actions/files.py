# actions/files.py
# Signed download links for stored files, resolved from the row that owns the file.

from models import db, Assignment, AssignmentSubmission, CourseMaterial, Enrollment, Staff, Student
from utils.auth import check_auth_and_permissions, has_role, ALL_ROLES, ADMIN, HOD, STUDENT
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.storage import get_presigned_url, key_from_url
from actions import assignments, materials, staff as staff_actions, students as student_actions

ITEM_MODELS = {
    'assignments': Assignment,
    'materials': CourseMaterial,
    'submissions': AssignmentSubmission,
    'staff': Staff,
    'students': Student,
}

# Profile documents need a field name; everything else has a single file_url
DOCUMENT_FIELDS = {
    'staff': staff_actions.DOCUMENT_FIELDS,
    'students': student_actions.DOCUMENT_FIELDS,
}


def _is_enrolled(user, course_id):
    student = user.student_profile
    return bool(student and Enrollment.query.filter_by(student_id=student.id, course_id=course_id).first())


def _can_download(user, item_type, item):
    if item_type in ('assignments', 'materials'):
        if has_role(user, STUDENT):
            return _is_enrolled(user, item.course_id)
        return has_role(user, *assignments.LECTURER_ROLES)
    if item_type == 'submissions':
        if has_role(user, ADMIN, HOD):
            return True
        if user.student_profile and item.student_id == user.student_profile.id:
            return True
        return bool(user.staff_profile and item.assignment.assigned_by_id == user.staff_profile.id)
    if item_type == 'staff':
        return has_role(user, *staff_actions.MANAGE_ROLES) or item.user_id == user.id
    return has_role(user, *student_actions.MANAGE_ROLES) or item.user_id == user.id


def get_download_url(item_type, item_id, field=None):
    """
    Returns a short-lived signed URL for the file attached to a record.

    Args:
        item_type (str): one of ITEM_MODELS.
        item_id (int): the record's id.
        field (str): which document, for staff and student records.
    """
    user = check_auth_and_permissions(ALL_ROLES)
    model = ITEM_MODELS.get(item_type)
    if not model:
        raise NotFoundError(f"Unknown file type: {item_type}")
    item = db.session.get(model, item_id)
    if not item:
        raise NotFoundError("Item not found")

    if item_type in DOCUMENT_FIELDS:
        if field not in DOCUMENT_FIELDS[item_type]:
            raise ActionError(f"Invalid document field: {field}")
    else:
        field = 'file_url'
    file_url = getattr(item, field)
    if not _can_download(user, item_type, item):
        raise ForbiddenError("Forbidden: you do not have access to this file")
    if not file_url:
        raise ActionError("File not found for the requested item")

    if item_type == 'materials' and has_role(user, STUDENT):
        materials.record_view(item.id, 'downloaded')
    return get_presigned_url(key_from_url(file_url))
