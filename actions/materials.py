# actions/materials.py
# Course materials uploaded by lecturers, and the record of which students opened them.

from models import db, CourseMaterial, Course, MaterialView, LogAction
from utils.auth import check_auth_and_permissions, get_staff_profile, get_student_profile, has_role, ADMIN, LECTURER, HOD, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, iso, transaction
from utils.storage import upload_file, delete_file, get_public_url

LECTURER_ROLES = [LECTURER, HOD, ADMIN]
VIEW_ROLES = LECTURER_ROLES + [STUDENT]

MATERIAL_TYPES = ['document', 'slides', 'video', 'link', 'other']
INTERACTION_TYPES = ['viewed', 'downloaded']


def _to_dict(material):
    return {
        "id": material.id,
        "title": material.title,
        "type": material.type,
        "file_url": get_public_url(material.file_url),
        "uploaded_at": iso(material.uploaded_at),
        "course": {"id": material.course.id, "name": material.course.name, "code": material.course.code},
        "uploaded_by": material.uploaded_by.full_name if material.uploaded_by else None,
    }


def get_my_course_materials():
    """Materials the logged-in lecturer has uploaded, newest first."""
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    materials = CourseMaterial.query.filter_by(uploaded_by_id=staff.id).order_by(CourseMaterial.uploaded_at.desc()).all()
    return [_to_dict(m) for m in materials]


def _view_to_dict(view):
    material, student = view.material, view.student
    return {
        "id": view.id,
        "interaction_type": view.interaction_type,
        "viewed_at": iso(view.viewed_at),
        "material": {"id": material.id, "title": material.title, "type": material.type},
        "student": {"id": student.id, "first_name": student.first_name, "last_name": student.last_name,
                    "registration_number": student.registration_number},
        "course": {"id": material.course.id, "name": material.course.name, "code": material.course.code},
    }


def _check_enrolled(student, course_id):
    if not student or not student.enrollments.filter_by(course_id=course_id).first():
        raise ActionError("You are not enrolled in this course")


def _visible_to(query, user):
    # Admin sees every material; everyone else only their own uploads
    if has_role(user, ADMIN):
        return query
    return query.filter(CourseMaterial.uploaded_by_id == get_staff_profile(user).id)


def get_by_course(course_id):
    """
    Materials of one course, newest first.

    Students must be enrolled, and each item tells them whether they have
    opened it before.
    """
    user = check_auth_and_permissions(VIEW_ROLES)
    student = None
    if has_role(user, STUDENT):
        student = user.student_profile
        _check_enrolled(student, course_id)
    materials = CourseMaterial.query.filter_by(course_id=course_id).order_by(CourseMaterial.uploaded_at.desc()).all()
    if not student:
        return [_to_dict(m) for m in materials]
    viewed = {v.material_id for v in MaterialView.query.filter_by(student_id=student.id).all()}
    return [dict(_to_dict(m), viewed=m.id in viewed) for m in materials]


def record_view(material_id, interaction_type='viewed'):
    """
    Records that the logged-in student opened or downloaded a material.

    A 'viewed' entry is kept once per student and material; every download
    is recorded.
    """
    student = get_student_profile(check_auth_and_permissions([STUDENT]))
    if interaction_type not in INTERACTION_TYPES:
        raise ActionError(f"Invalid interaction type: {interaction_type}")
    material = db.session.get(CourseMaterial, material_id)
    if not material:
        raise NotFoundError("Material not found")
    _check_enrolled(student, material.course_id)
    if interaction_type == 'viewed' and material.views.filter_by(student_id=student.id, interaction_type='viewed').first():
        return {"success": True, "recorded": False}

    with transaction("Failed to record material view"):
        db.session.add(MaterialView(material_id=material.id, student_id=student.id, interaction_type=interaction_type))
    return {"success": True, "recorded": True}


def get_material_views(course_id=None):
    """Every view of the caller's materials, most recent first."""
    user = check_auth_and_permissions(LECTURER_ROLES)
    query = _visible_to(MaterialView.query.join(CourseMaterial), user)
    if course_id:
        query = query.filter(CourseMaterial.course_id == course_id)
    return [_view_to_dict(v) for v in query.order_by(MaterialView.viewed_at.desc(), MaterialView.id.desc()).all()]


def get_material_view_stats(course_id=None):
    """Per-material totals for the caller's materials, including ones nobody has opened."""
    user = check_auth_and_permissions(LECTURER_ROLES)
    query = db.session.query(
        CourseMaterial.id,
        CourseMaterial.title,
        CourseMaterial.type,
        db.func.count(MaterialView.id).label('total_views'),
        db.func.count(db.distinct(MaterialView.student_id)).label('unique_students'),
        db.func.max(MaterialView.viewed_at).label('last_viewed')
    ).outerjoin(MaterialView, MaterialView.material_id == CourseMaterial.id)
    query = _visible_to(query, user)
    if course_id:
        query = query.filter(CourseMaterial.course_id == course_id)
    rows = query.group_by(CourseMaterial.id, CourseMaterial.title, CourseMaterial.type).order_by(CourseMaterial.title).all()
    # Most recently opened first; never-opened materials last
    rows = sorted(rows, key=lambda r: (r.last_viewed is not None, r.last_viewed or 0), reverse=True)
    return [{
        "material_id": r.id,
        "title": r.title,
        "type": r.type,
        "total_views": r.total_views,
        "unique_students": r.unique_students,
        "last_viewed": iso(r.last_viewed),
    } for r in rows]


def upload_material(data, file_storage):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    course_id = to_int(data.get('course_id'), 'course')
    title = clean(data.get('title'))
    if not course_id or not title:
        raise ActionError("Course and title are required")
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found")
    material_type = (clean(data.get('type')) or 'document').lower()
    if material_type not in MATERIAL_TYPES:
        raise ActionError(f"Invalid material type: {material_type}")

    file_url = upload_file(file_storage, 'materials')
    try:
        with transaction("Failed to save course material"):
            material = CourseMaterial(course_id=course.id, uploaded_by_id=staff.id, title=title,
                                      type=material_type, file_url=file_url)
            db.session.add(material)
            db.session.flush()
            log_action(LogAction.CREATE, CourseMaterial.__tablename__, material.id,
                       f"Uploaded material '{title}' to {course.code}")
    except ActionError:
        # Row was not written; the object would be orphaned in the bucket
        delete_file(file_url)
        raise
    return _to_dict(material)


def delete_material(material_id):
    staff = get_staff_profile(check_auth_and_permissions(LECTURER_ROLES))
    material = CourseMaterial.query.filter_by(id=material_id, uploaded_by_id=staff.id).first()
    if not material:
        raise NotFoundError("Material not found or unauthorized")
    file_url = material.file_url
    with transaction("Failed to delete course material"):
        title = material.title
        db.session.delete(material)
        log_action(LogAction.DELETE, CourseMaterial.__tablename__, material_id, f"Deleted material '{title}'")
    delete_file(file_url)
    return {"success": True}
