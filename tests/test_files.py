"""
Tests for signed download links and who may fetch which file
"""
from datetime import datetime
from unittest.mock import patch

import pytest

from actions import files
from models import db, Assignment, AssignmentSubmission, CourseMaterial, MaterialView
from utils.auth import ADMIN, REGISTRAR, STUDENT
from utils.errors import ActionError, NotFoundError, ForbiddenError
from tests.conftest import make_user, make_staff, make_student, make_enrollment, make_program, make_semester, make_course

SIGNED = 'https://signed.example/object?sig=abc'


@pytest.fixture
def presign():
    with patch('actions.files.get_presigned_url', return_value=SIGNED) as presign:
        yield presign


@pytest.fixture
def coursework(campus):
    """A material and an assignment with one submission, all in the campus course"""
    course, lecturer = campus['course'], campus['lecturer']
    student = make_student(campus['program'])
    make_enrollment(student, course)
    material = CourseMaterial(course_id=course.id, uploaded_by_id=lecturer.id, title='Notes',
                              file_url='https://files.test/materials/notes.pdf')
    assignment = Assignment(course_id=course.id, assigned_by_id=lecturer.id, title='Essay',
                            file_url='https://files.test/assignments/brief.pdf', due_date=datetime(2025, 2, 1))
    db.session.add_all([material, assignment])
    db.session.flush()
    submission = AssignmentSubmission(assignment_id=assignment.id, student_id=student.id,
                                      file_url='https://files.test/submissions/essay.pdf')
    db.session.add(submission)
    db.session.commit()
    return {'student': student, 'material': material, 'assignment': assignment, 'submission': submission}


class TestCourseFiles:
    """Materials and assignment briefs"""

    def test_enrolled_student_downloads_material(self, login_as, coursework, presign):
        student = login_as(coursework['student'].user).student_profile

        assert files.get_download_url('materials', coursework['material'].id) == SIGNED
        presign.assert_called_once_with('materials/notes.pdf')
        view = MaterialView.query.one()
        assert (view.student_id, view.interaction_type) == (student.id, 'downloaded')

    def test_outsider_is_refused(self, campus, login_as, coursework, presign):
        login_as(make_student(campus['program']).user)
        with pytest.raises(ForbiddenError):
            files.get_download_url('assignments', coursework['assignment'].id)
        presign.assert_not_called()

    def test_lecturer_downloads_brief(self, campus, login_as, coursework, presign):
        login_as(campus['lecturer'].user)
        files.get_download_url('assignments', coursework['assignment'].id)
        presign.assert_called_once_with('assignments/brief.pdf')
        assert MaterialView.query.count() == 0

    def test_accountant_is_refused(self, login_as, coursework, presign):
        login_as(make_user('Accountant'))
        with pytest.raises(ForbiddenError):
            files.get_download_url('materials', coursework['material'].id)


class TestSubmissionFiles:
    """Submissions belong to their student and the assigning lecturer"""

    def test_owner_and_lecturer(self, campus, login_as, coursework, presign):
        login_as(coursework['student'].user)
        files.get_download_url('submissions', coursework['submission'].id)
        login_as(campus['lecturer'].user)
        files.get_download_url('submissions', coursework['submission'].id)
        assert presign.call_count == 2

    def test_classmate_is_refused(self, campus, login_as, coursework, presign):
        classmate = make_student(campus['program'])
        make_enrollment(classmate, campus['course'])
        login_as(classmate.user)
        with pytest.raises(ForbiddenError):
            files.get_download_url('submissions', coursework['submission'].id)

    def test_other_lecturer_is_refused(self, login_as, coursework, presign):
        login_as(make_staff('Lecturer').user)
        with pytest.raises(ForbiddenError):
            files.get_download_url('submissions', coursework['submission'].id)


class TestProfileDocuments:
    """Staff and student documents"""

    @pytest.fixture
    def member(self, ctx):
        member = make_staff('Lecturer')
        member.national_id_photo_url = 'https://files.test/staff/national-id.jpg'
        db.session.commit()
        return member

    def test_student_cannot_read_staff_documents(self, login_as, member, presign):
        login_as(make_student().user)
        with pytest.raises(ForbiddenError):
            files.get_download_url('staff', member.id, 'national_id_photo_url')
        presign.assert_not_called()

    def test_registrar_and_owner_can(self, login_as, member, presign):
        login_as(make_user(REGISTRAR))
        assert files.get_download_url('staff', member.id, 'national_id_photo_url') == SIGNED
        login_as(member.user)
        assert files.get_download_url('staff', member.id, 'national_id_photo_url') == SIGNED
        presign.assert_called_with('staff/national-id.jpg')

    def test_other_staff_cannot(self, login_as, member, presign):
        login_as(make_staff('Lecturer').user)
        with pytest.raises(ForbiddenError):
            files.get_download_url('staff', member.id, 'national_id_photo_url')

    def test_student_reads_only_own_documents(self, ctx, login_as, presign):
        student, other = make_student(), make_student()
        for s in (student, other):
            s.certificate_url = f'students/cert-{s.id}.pdf'
        db.session.commit()

        login_as(student.user)
        files.get_download_url('students', student.id, 'certificate_url')
        presign.assert_called_once_with(f'students/cert-{student.id}.pdf')
        with pytest.raises(ForbiddenError):
            files.get_download_url('students', other.id, 'certificate_url')

    def test_document_field_is_required(self, admin, member, presign):
        with pytest.raises(ActionError, match="Invalid document field"):
            files.get_download_url('staff', member.id)
        with pytest.raises(ActionError, match="Invalid document field"):
            files.get_download_url('staff', member.id, 'password_hash')

    def test_missing_file(self, admin, member, presign):
        with pytest.raises(ActionError, match="File not found for the requested item"):
            files.get_download_url('staff', member.id, 'passport_photo_url')


class TestLookups:
    """Unknown types and rows"""

    def test_unknown_type(self, admin, presign):
        with pytest.raises(NotFoundError, match="Unknown file type"):
            files.get_download_url('payroll', 1)

    def test_unknown_item(self, admin, presign):
        with pytest.raises(NotFoundError, match="Item not found"):
            files.get_download_url('materials', 999)

    def test_requires_login(self, ctx):
        with pytest.raises(ActionError):
            files.get_download_url('materials', 1)


class TestDownloadRoute:
    """The /files endpoint"""

    @pytest.fixture
    def people(self, app):
        with app.app_context():
            member = make_staff('Lecturer')
            member.national_id_photo_url = 'staff/national-id.jpg'
            db.session.commit()
            return {'staff_id': member.id, ADMIN: make_user(ADMIN).email, STUDENT: make_student(make_program()).email}

    def login(self, client, email):
        return client.post('/login', data={'email': email, 'password': 'password123'})

    def test_student_is_refused_staff_document(self, client, people, presign):
        self.login(client, people[STUDENT])
        response = client.get(f"/files/staff/{people['staff_id']}?field=national_id_photo_url")
        assert response.status_code == 403
        assert 'Forbidden' in response.get_json()['error']
        presign.assert_not_called()

    def test_admin_is_redirected_to_signed_url(self, client, people, presign):
        self.login(client, people[ADMIN])
        response = client.get(f"/files/staff/{people['staff_id']}?field=national_id_photo_url")
        assert response.status_code == 302
        assert response.headers['Location'] == SIGNED

    def test_raw_keys_are_not_served(self, client, people, presign):
        self.login(client, people[ADMIN])
        assert client.get('/files/staff/national-id.jpg').status_code == 404

    def test_opening_a_material_records_a_view(self, app, client, presign):
        with app.app_context():
            program, semester, lecturer = make_program(), make_semester(), make_staff('Lecturer')
            course = make_course(program, semester, lecturer=lecturer)
            student = make_student(program)
            make_enrollment(student, course)
            material = CourseMaterial(course_id=course.id, uploaded_by_id=lecturer.id, title='Notes',
                                      file_url='materials/notes.pdf')
            db.session.add(material)
            db.session.commit()
            material_id, email = material.id, student.email

        self.login(client, email)
        response = client.get(f'/student/materials/{material_id}')
        assert response.headers['Location'].endswith(f'/files/materials/{material_id}')

        response = client.get(f'/files/materials/{material_id}')
        assert response.headers['Location'] == SIGNED
        with app.app_context():
            assert sorted(v.interaction_type for v in MaterialView.query.all()) == ['downloaded', 'viewed']
