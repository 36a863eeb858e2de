"""
Tests for assignments, submissions and course materials
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from actions import assignments, materials
from models import db, Assignment, AssignmentSubmission, CourseMaterial, MaterialView
from utils.errors import ActionError, NotFoundError
from tests.conftest import make_staff, make_student, make_enrollment, make_upload


@pytest.fixture
def storage():
    """Replaces the bucket calls made by the teaching actions"""
    keys = iter(f"uploads/file-{n}.pdf" for n in range(100))
    with patch('actions.assignments.upload_file', side_effect=lambda f, folder: f"{folder}/{next(keys)}") as a_up, \
            patch('actions.assignments.delete_file') as a_del, \
            patch('actions.materials.upload_file', side_effect=lambda f, folder: f"{folder}/{next(keys)}") as m_up, \
            patch('actions.materials.delete_file') as m_del:
        yield {'upload': a_up, 'delete': a_del, 'material_upload': m_up, 'material_delete': m_del}


@pytest.fixture
def lecturer(campus, login_as):
    return login_as(campus['lecturer'].user)


def due_in(days=7):
    return (datetime.utcnow() + timedelta(days=days)).strftime('%Y-%m-%dT%H:%M')


class TestLecturerAssignments:
    """The lecturer side of assignments"""

    def test_create_with_attachment(self, campus, lecturer, storage):
        result = assignments.create(
            {'course_id': campus['course'].id, 'title': 'Essay 1', 'due_date': due_in()},
            make_upload('brief.pdf')
        )

        assert result['title'] == 'Essay 1'
        assert result['file_url'].startswith('https://files.test/assignments/')
        assert result['submission_count'] == 0
        assert storage['upload'].call_args.args[1] == 'assignments'

    def test_required_fields(self, campus, lecturer, storage):
        with pytest.raises(ActionError, match="Course, title, and due date are required"):
            assignments.create({'course_id': campus['course'].id, 'title': 'No due date'})

    def test_unknown_course(self, campus, lecturer, storage):
        with pytest.raises(NotFoundError, match="Course not found"):
            assignments.create({'course_id': 999, 'title': 'Lost', 'due_date': due_in()})

    def test_admin_without_staff_record(self, admin, campus):
        with pytest.raises(NotFoundError, match="Staff record not found"):
            assignments.get_lecturer_assignments()

    def test_other_lecturers_cannot_touch(self, campus, login_as, storage):
        login_as(campus['lecturer'].user)
        created = assignments.create({'course_id': campus['course'].id, 'title': 'Mine', 'due_date': due_in()})

        login_as(make_staff('Lecturer').user)
        with pytest.raises(NotFoundError, match="Assignment not found or unauthorized"):
            assignments.delete(created['id'])
        assert assignments.get_lecturer_assignments() == []

    def test_update_replaces_file(self, campus, lecturer, storage):
        created = assignments.create(
            {'course_id': campus['course'].id, 'title': 'Lab', 'due_date': due_in()}, make_upload('v1.pdf')
        )
        old_key = db.session.get(Assignment, created['id']).file_url

        result = assignments.update(created['id'], {'title': 'Lab (revised)'}, make_upload('v2.pdf'))

        assert result['title'] == 'Lab (revised)'
        storage['delete'].assert_called_once_with(old_key)

    def test_delete_removes_submission_files(self, campus, lecturer, storage):
        created = assignments.create({'course_id': campus['course'].id, 'title': 'Quiz', 'due_date': due_in()})
        student = make_student(campus['program'])
        db.session.add(AssignmentSubmission(assignment_id=created['id'], student_id=student.id, file_url='submissions/a.pdf'))
        db.session.commit()

        assignments.delete(created['id'])

        assert db.session.get(Assignment, created['id']) is None
        assert AssignmentSubmission.query.count() == 0
        storage['delete'].assert_any_call('submissions/a.pdf')


class TestSubmissions:
    """Students submit, lecturers grade"""

    @pytest.fixture
    def assignment(self, campus, login_as, storage):
        login_as(campus['lecturer'].user)
        return assignments.create({'course_id': campus['course'].id, 'title': 'Project', 'due_date': due_in()})

    @pytest.fixture
    def student(self, campus):
        student = make_student(campus['program'])
        make_enrollment(student, campus['course'])
        return student

    def test_submit_and_grade(self, campus, login_as, assignment, student, storage):
        login_as(student.user)
        submission = assignments.submit(assignment['id'], make_upload('work.pdf'))
        assert submission['grade'] is None
        assert storage['upload'].call_args.args[1] == 'submissions'

        listed = assignments.get_student_assignments()
        assert listed[0]['submission']['id'] == submission['id']

        login_as(campus['lecturer'].user)
        graded = assignments.grade_submission(submission['id'], '78.5', 'Good work')
        assert graded['grade'] == 78.5
        assert graded['remarks'] == 'Good work'

        stats = assignments.get_submission_statistics()
        assert stats == {'total_submissions': 1, 'graded': 1, 'pending': 0, 'average_grade': 78.5}

    def test_resubmit_replaces_file(self, login_as, assignment, student, storage):
        login_as(student.user)
        first = assignments.submit(assignment['id'], make_upload('draft.pdf'))
        first_key = db.session.get(AssignmentSubmission, first['id']).file_url

        second = assignments.submit(assignment['id'], make_upload('final.pdf'))

        assert second['id'] == first['id']
        storage['delete'].assert_called_once_with(first_key)

    def test_cannot_resubmit_after_grading(self, campus, login_as, assignment, student, storage):
        login_as(student.user)
        submission = assignments.submit(assignment['id'], make_upload('work.pdf'))
        login_as(campus['lecturer'].user)
        assignments.grade_submission(submission['id'], 60)

        login_as(student.user)
        with pytest.raises(ActionError, match="already been graded"):
            assignments.submit(assignment['id'], make_upload('late.pdf'))

    def test_must_be_enrolled(self, campus, login_as, assignment, storage):
        outsider = make_student(campus['program'])
        login_as(outsider.user)
        with pytest.raises(ActionError, match="You are not enrolled in this course"):
            assignments.submit(assignment['id'], make_upload('work.pdf'))

    def test_file_required(self, login_as, assignment, student, storage):
        login_as(student.user)
        with pytest.raises(ActionError, match="A submission file is required"):
            assignments.submit(assignment['id'], None)

    def test_grade_out_of_range(self, campus, login_as, assignment, student, storage):
        login_as(student.user)
        submission = assignments.submit(assignment['id'], make_upload('work.pdf'))
        login_as(campus['lecturer'].user)
        with pytest.raises(ActionError, match="between 0 and 100"):
            assignments.grade_submission(submission['id'], 101)


class TestMaterials:
    """Course materials"""

    def test_upload_and_list(self, campus, lecturer, storage):
        result = materials.upload_material(
            {'course_id': campus['course'].id, 'title': 'Week 1 slides', 'type': 'Slides'}, make_upload('w1.pptx')
        )
        assert result['type'] == 'slides'
        assert result['uploaded_by'] == campus['lecturer'].full_name
        assert [m['id'] for m in materials.get_my_course_materials()] == [result['id']]

    def test_invalid_type(self, campus, lecturer, storage):
        with pytest.raises(ActionError, match="Invalid material type"):
            materials.upload_material({'course_id': campus['course'].id, 'title': 'X', 'type': 'poster'}, make_upload())
        storage['material_upload'].assert_not_called()

    def test_required_fields(self, campus, lecturer, storage):
        with pytest.raises(ActionError, match="Course and title are required"):
            materials.upload_material({'course_id': campus['course'].id}, make_upload())

    def test_students_need_enrollment(self, campus, login_as, storage):
        login_as(campus['lecturer'].user)
        materials.upload_material({'course_id': campus['course'].id, 'title': 'Notes'}, make_upload())

        enrolled = make_student(campus['program'])
        make_enrollment(enrolled, campus['course'])
        login_as(enrolled.user)
        assert len(materials.get_by_course(campus['course'].id)) == 1

        login_as(make_student(campus['program']).user)
        with pytest.raises(ActionError, match="You are not enrolled in this course"):
            materials.get_by_course(campus['course'].id)

    def test_delete_own_only(self, campus, login_as, storage):
        login_as(campus['lecturer'].user)
        created = materials.upload_material({'course_id': campus['course'].id, 'title': 'Notes'}, make_upload())

        login_as(make_staff('Lecturer').user)
        with pytest.raises(NotFoundError, match="Material not found or unauthorized"):
            materials.delete_material(created['id'])

        login_as(campus['lecturer'].user)
        materials.delete_material(created['id'])
        assert db.session.get(CourseMaterial, created['id']) is None
        storage['material_delete'].assert_called_once()


class TestMaterialViews:
    """Which students opened which materials"""

    @pytest.fixture
    def material(self, campus, login_as, storage):
        login_as(campus['lecturer'].user)
        return materials.upload_material({'course_id': campus['course'].id, 'title': 'Reading list'}, make_upload())

    @pytest.fixture
    def student(self, campus):
        student = make_student(campus['program'])
        make_enrollment(student, campus['course'])
        return student

    def test_viewed_is_recorded_once(self, login_as, material, student):
        login_as(student.user)
        assert materials.get_by_course(material['course']['id'])[0]['viewed'] is False

        assert materials.record_view(material['id']) == {'success': True, 'recorded': True}
        assert materials.record_view(material['id']) == {'success': True, 'recorded': False}

        assert MaterialView.query.filter_by(student_id=student.id).count() == 1
        assert materials.get_by_course(material['course']['id'])[0]['viewed'] is True

    def test_every_download_is_recorded(self, login_as, material, student):
        login_as(student.user)
        materials.record_view(material['id'], 'downloaded')
        materials.record_view(material['id'], 'downloaded')
        assert MaterialView.query.filter_by(interaction_type='downloaded').count() == 2

    def test_unknown_interaction(self, login_as, material, student):
        login_as(student.user)
        with pytest.raises(ActionError, match="Invalid interaction type"):
            materials.record_view(material['id'], 'liked')

    def test_outsider_cannot_record(self, campus, login_as, material):
        login_as(make_student(campus['program']).user)
        with pytest.raises(ActionError, match="You are not enrolled in this course"):
            materials.record_view(material['id'])
        assert MaterialView.query.count() == 0

    def test_lecturer_sees_views_of_own_materials(self, campus, login_as, material, student):
        login_as(student.user)
        materials.record_view(material['id'])

        login_as(campus['lecturer'].user)
        views = materials.get_material_views()
        assert len(views) == 1
        assert views[0]['interaction_type'] == 'viewed'
        assert views[0]['material']['title'] == 'Reading list'
        assert views[0]['student']['registration_number'] == student.registration_number
        assert views[0]['course']['code'] == campus['course'].code

        login_as(make_staff('Lecturer').user)
        assert materials.get_material_views() == []

    def test_stats_include_unopened_materials(self, campus, login_as, material, student, storage):
        login_as(campus['lecturer'].user)
        unopened = materials.upload_material({'course_id': campus['course'].id, 'title': 'Appendix'}, make_upload())
        other = make_student(campus['program'])
        db.session.add_all([
            MaterialView(material_id=material['id'], student_id=student.id, interaction_type='viewed',
                         viewed_at=datetime(2025, 3, 1, 9, 0)),
            MaterialView(material_id=material['id'], student_id=student.id, interaction_type='downloaded',
                         viewed_at=datetime(2025, 3, 2, 9, 0)),
            MaterialView(material_id=material['id'], student_id=other.id, interaction_type='viewed',
                         viewed_at=datetime(2025, 3, 1, 10, 0)),
        ])
        db.session.commit()

        stats = materials.get_material_view_stats()

        assert [s['material_id'] for s in stats] == [material['id'], unopened['id']]
        assert stats[0]['total_views'] == 3
        assert stats[0]['unique_students'] == 2
        assert stats[0]['last_viewed'] == '2025-03-02T09:00:00'
        assert stats[1] == {'material_id': unopened['id'], 'title': 'Appendix', 'type': 'document',
                            'total_views': 0, 'unique_students': 0, 'last_viewed': None}

    def test_admin_sees_all_stats(self, material, admin):
        assert [s['material_id'] for s in materials.get_material_view_stats()] == [material['id']]

    def test_deleting_material_removes_its_views(self, campus, login_as, material, student):
        login_as(student.user)
        materials.record_view(material['id'])

        login_as(campus['lecturer'].user)
        materials.delete_material(material['id'])
        assert MaterialView.query.count() == 0
