# actions/students.py
# Student records and their login accounts, search, enrollments and documents.

from sqlalchemy import or_

from models import db, Student, User, Program, Department, Semester, Enrollment, MaterialView, LogAction
from utils.auth import check_auth_and_permissions, resolve_role, ADMIN, REGISTRAR, HOD, LECTURER, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, iso, money, transaction
from utils.storage import upload_file, delete_file

MANAGE_ROLES = [ADMIN, REGISTRAR]
VIEW_ROLES = [ADMIN, REGISTRAR, HOD, LECTURER]

DOCUMENT_FIELDS = ('passport_photo_url', 'id_photo_url', 'certificate_url')
REQUIRED_FIELDS = ('first_name', 'last_name', 'email', 'registration_number', 'student_number')


def _to_dict(student, with_documents=False):
    result = {
        "id": student.id,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "name": student.full_name,
        "email": student.email,
        "registration_number": student.registration_number,
        "student_number": student.student_number,
        "program": {"id": student.program.id, "name": student.program.name, "code": student.program.code} if student.program else None,
        "department": {"id": student.department.id, "name": student.department.name} if student.department else None,
        "current_semester": {"id": student.current_semester.id, "name": student.current_semester.name} if student.current_semester else None,
        "user_id": student.user_id,
        "created_at": iso(student.created_at),
    }
    if with_documents:
        for field in DOCUMENT_FIELDS:
            result[field] = getattr(student, field)
    return result


def _get_or_404(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    return student


def _resolve_refs(program_id, department_id, semester_id):
    if program_id and not db.session.get(Program, program_id):
        raise NotFoundError("Program not found")
    if department_id and not db.session.get(Department, department_id):
        raise NotFoundError("Department not found")
    if semester_id and not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")


def _check_unique(email, registration_number, student_number, exclude_id=None):
    prefix = "Another student" if exclude_id else "Student"
    query = Student.query
    if exclude_id:
        query = query.filter(Student.id != exclude_id)
    if email and query.filter(db.func.lower(Student.email) == email.lower()).first():
        raise ActionError(f"{prefix} with this email already exists")
    if registration_number and query.filter(Student.registration_number == registration_number).first():
        raise ActionError(f"{prefix} with this registration number already exists")
    if student_number and query.filter(Student.student_number == student_number).first():
        raise ActionError(f"{prefix} with this student number already exists")


def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(s) for s in Student.query.order_by(Student.last_name, Student.first_name).all()]


def search(query):
    check_auth_and_permissions(VIEW_ROLES)
    term = f"%{(query or '').strip()}%"
    results = Student.query.filter(or_(
        Student.first_name.ilike(term),
        Student.last_name.ilike(term),
        (Student.first_name + ' ' + Student.last_name).ilike(term),
        Student.email.ilike(term),
        Student.registration_number.ilike(term),
        Student.student_number.ilike(term)
    )).order_by(Student.last_name, Student.first_name).all()
    return [_to_dict(s) for s in results]


def get_by_id(student_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(student_id), with_documents=True)


def get_own_profile():
    """The logged-in student's own record."""
    user = check_auth_and_permissions([STUDENT])
    if not user.student_profile:
        raise NotFoundError("Student not found")
    return _to_dict(user.student_profile, with_documents=True)


def get_enrollments(student_id):
    check_auth_and_permissions(VIEW_ROLES)
    student = _get_or_404(student_id)
    enrollments = student.enrollments.join(Semester, Enrollment.semester_id == Semester.id).order_by(Semester.start_date.desc()).all()
    return [{
        "id": e.id,
        "enrollment_date": iso(e.enrollment_date),
        "course": {"id": e.course.id, "code": e.course.code, "name": e.course.name, "credits": money(e.course.credits)},
        "semester": {"id": e.semester.id, "name": e.semester.name},
        "grade": {
            "total_score": money(e.grade.total_score) if e.grade.total_score is not None else None,
            "letter_grade": e.grade.letter_grade,
        } if e.grade else None,
    } for e in enrollments]


def create(data):
    """Registers a student and their (passwordless) login account in one transaction."""
    check_auth_and_permissions(MANAGE_ROLES)
    values = {f: clean(data.get(f)) for f in REQUIRED_FIELDS}
    if not all(values.values()):
        raise ActionError("All fields are required")
    values['email'] = values['email'].lower()
    program_id = to_int(data.get('program_id'), 'program')
    department_id = to_int(data.get('department_id'), 'department')
    semester_id = to_int(data.get('current_semester_id'), 'semester')
    _resolve_refs(program_id, department_id, semester_id)
    if not department_id and program_id:
        department_id = db.session.get(Program, program_id).department_id
    _check_unique(values['email'], values['registration_number'], values['student_number'])
    if User.query.filter(db.func.lower(User.email) == values['email']).first():
        raise ActionError("User with this email already exists")
    role = resolve_role(role_name=STUDENT)

    with transaction("Failed to create student"):
        user = User(email=values['email'], role_id=role.id)
        if clean(data.get('password')):
            user.set_password(data['password'])
        db.session.add(user)
        db.session.flush()
        student = Student(
            user_id=user.id, program_id=program_id, department_id=department_id,
            current_semester_id=semester_id, **values
        )
        db.session.add(student)
        db.session.flush()
        log_action(LogAction.CREATE, Student.__tablename__, student.id,
                   f"Created student {student.full_name} ({student.registration_number})")
    return _to_dict(student)


def update(student_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    student = _get_or_404(student_id)
    values = {f: clean(data.get(f)) for f in REQUIRED_FIELDS if clean(data.get(f))}
    if 'email' in values:
        values['email'] = values['email'].lower()
    program_id = to_int(data.get('program_id'), 'program')
    department_id = to_int(data.get('department_id'), 'department')
    semester_id = to_int(data.get('current_semester_id'), 'semester')
    _resolve_refs(program_id, department_id, semester_id)
    _check_unique(values.get('email'), values.get('registration_number'), values.get('student_number'), exclude_id=student.id)
    if 'email' in values and User.query.filter(db.func.lower(User.email) == values['email'], User.id != student.user_id).first():
        raise ActionError("Another user with this email already exists")

    with transaction("Failed to update student"):
        for field, value in values.items():
            setattr(student, field, value)
        if 'email' in values:
            student.user.email = values['email']
        if program_id: student.program_id = program_id
        if department_id: student.department_id = department_id
        if semester_id: student.current_semester_id = semester_id
        log_action(LogAction.UPDATE, Student.__tablename__, student.id, f"Updated student {student.full_name}")
    return _to_dict(student)


def update_documents(student_id, documents=None, files=None):
    """
    Uploads new document files and/or sets URLs, then removes replaced files.

    Args:
        documents (dict): field name -> URL (or None to clear).
        files (dict): field name -> uploaded FileStorage.
    """
    check_auth_and_permissions(MANAGE_ROLES)
    student = _get_or_404(student_id)
    documents = {k: v for k, v in (documents or {}).items() if k in DOCUMENT_FIELDS}
    for field, file_storage in (files or {}).items():
        if field in DOCUMENT_FIELDS and file_storage and file_storage.filename:
            documents[field] = upload_file(file_storage, 'students')
    if not documents:
        raise ActionError("No documents provided")

    replaced = [getattr(student, f) for f, v in documents.items() if getattr(student, f) and getattr(student, f) != v]
    with transaction("Failed to update student documents"):
        for field, value in documents.items():
            setattr(student, field, value)
        log_action(LogAction.UPDATE, Student.__tablename__, student.id, "Updated student documents")
    for old_url in replaced:
        delete_file(old_url)
    return _to_dict(student, with_documents=True)


def delete(student_id):
    check_auth_and_permissions(MANAGE_ROLES)
    student = _get_or_404(student_id)
    if student.enrollments.count():
        raise ActionError("Cannot delete student with enrollments")
    if student.invoices.count() or student.payments.count():
        raise ActionError("Cannot delete student with invoices or payments")
    if student.submissions.count():
        raise ActionError("Cannot delete student with assignment submissions")

    documents = [getattr(student, f) for f in DOCUMENT_FIELDS if getattr(student, f)]
    with transaction("Failed to delete student"):
        name, user = student.full_name, student.user
        MaterialView.query.filter_by(student_id=student.id).delete()
        db.session.delete(student)
        db.session.flush()
        if user:
            db.session.delete(user)
        log_action(LogAction.DELETE, Student.__tablename__, student_id, f"Deleted student {name}")
    for url in documents:
        delete_file(url)
    return {"success": True}
