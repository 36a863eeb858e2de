"""
Tests for departments, programs, semesters and courses
"""
from datetime import date

import pytest

from actions import departments, programs, semesters, courses
from forms import DepartmentForm, NONE_CHOICE
from models import db, UserLog, Department, Program
from utils.errors import ActionError, NotFoundError, UnauthorizedError, ForbiddenError
from tests.conftest import (fake, make_user, make_department, make_program, make_semester, make_course,
                            make_staff, make_student, make_enrollment)


class TestDepartments:
    """Department CRUD and head assignment"""

    def test_create_department(self, admin):
        """Creating a department returns its DTO and writes an audit row"""
        result = departments.create({'name': '  Computer Science  '})

        assert result['name'] == 'Computer Science'
        assert result['head'] is None
        assert result['staff_count'] == 0
        log = UserLog.query.filter_by(target_table='department').one()
        assert log.action == 'create'
        assert log.user_id == admin.id

    def test_name_is_required(self, admin):
        with pytest.raises(ActionError, match="Department name is required"):
            departments.create({'name': '   '})

    def test_duplicate_name_is_case_insensitive(self, admin):
        departments.create({'name': 'Physics'})
        with pytest.raises(ActionError, match="already exists"):
            departments.create({'name': 'PHYSICS'})
        assert Department.query.count() == 1

    def test_requires_login(self, ctx):
        with pytest.raises(UnauthorizedError):
            departments.create({'name': 'Chemistry'})

    def test_lecturer_cannot_create(self, ctx, login_as):
        login_as(make_user('Lecturer'))
        with pytest.raises(ForbiddenError):
            departments.create({'name': 'Chemistry'})

    def test_every_role_can_list(self, ctx, login_as):
        make_department('History')
        login_as(make_user('Student'))
        assert [d['name'] for d in departments.get_all()] == ['History']

    def test_assign_head_must_belong_to_department(self, admin):
        department = make_department()
        other = make_department()
        outsider = make_staff('HOD', department=other)
        member = make_staff('HOD', department=department)

        with pytest.raises(ActionError, match="must be a member"):
            departments.assign_head(department.id, outsider.id)

        result = departments.assign_head(department.id, member.id)
        assert result['head']['id'] == member.id

        result = departments.remove_head(department.id)
        assert result['head'] is None

    def test_delete_blocked_by_staff(self, admin):
        department = make_department()
        make_staff('Staff', department=department)
        with pytest.raises(ActionError, match="staff members"):
            departments.delete(department.id)

    def test_delete_blocked_by_programs(self, admin):
        department = make_department()
        make_program(department)
        with pytest.raises(ActionError, match="programs"):
            departments.delete(department.id)

    def test_delete(self, admin):
        department = make_department()
        assert departments.delete(department.id) == {"success": True}
        assert db.session.get(Department, department.id) is None

    def test_missing_department(self, admin):
        with pytest.raises(NotFoundError, match="Department not found"):
            departments.get_by_id(9999)

    def test_new_department_form_has_no_head(self, admin):
        form = DepartmentForm()
        form.load_choices()
        assert 'head_of_department_id' not in form._fields
        assert 'head_of_department_id' not in form.to_data()

    def test_head_choices_are_department_members(self, admin):
        department = make_department()
        member = make_staff('HOD', department=department)
        make_staff('HOD', department=make_department())

        form = DepartmentForm(obj=department)
        form.load_choices()

        assert form.head_of_department_id.choices == [NONE_CHOICE, (member.id, member.full_name)]


class TestPrograms:
    """Program CRUD"""

    def test_create_uppercases_code(self, admin):
        department = make_department()
        result = programs.create({'name': 'Bachelor of Science', 'code': 'bsc', 'department_id': department.id})
        assert result['code'] == 'BSC'
        assert result['duration_semesters'] == 8
        assert result['department']['id'] == department.id

    def test_required_fields(self, admin):
        with pytest.raises(ActionError, match="Name, code, and department are required"):
            programs.create({'name': 'No Code'})

    def test_unknown_department(self, admin):
        with pytest.raises(NotFoundError, match="Department not found"):
            programs.create({'name': 'X', 'code': 'X1', 'department_id': 999})

    def test_duplicate_code(self, admin):
        program = make_program(code='BIT')
        with pytest.raises(ActionError, match="code already exists"):
            programs.create({'name': 'Another', 'code': 'bit', 'department_id': program.department_id})

    def test_non_positive_duration(self, admin):
        department = make_department()
        with pytest.raises(ActionError, match="positive number"):
            programs.create({'name': 'Short', 'code': 'SH', 'department_id': department.id, 'duration_semesters': 0})

    def test_update_keeps_own_code(self, admin):
        program = make_program(code='BCOM')
        result = programs.update(program.id, {'code': 'bcom', 'duration_semesters': 6})
        assert result['code'] == 'BCOM'
        assert result['duration_semesters'] == 6

    def test_delete_blocked_by_students(self, admin):
        program = make_program()
        make_student(program)
        with pytest.raises(ActionError, match="enrolled students"):
            programs.delete(program.id)

    def test_delete(self, admin):
        program = make_program()
        programs.delete(program.id)
        assert db.session.get(Program, program.id) is None


class TestSemesters:
    """Semester dates may not overlap"""

    def test_create(self, admin):
        result = semesters.create({'name': 'January 2026', 'start_date': '2026-01-05', 'end_date': '2026-04-30'})
        assert result['start_date'] == '2026-01-05'
        assert result['course_count'] == 0

    def test_end_before_start(self, admin):
        with pytest.raises(ActionError, match="End date must be after start date"):
            semesters.create({'name': 'Backwards', 'start_date': '2026-05-01', 'end_date': '2026-01-01'})

    def test_overlap_rejected(self, admin):
        make_semester(start=date(2026, 1, 5), days=100, name='Spring')
        with pytest.raises(ActionError, match='overlap with "Spring"'):
            semesters.create({'name': 'Clash', 'start_date': '2026-03-01', 'end_date': '2026-06-30'})

    def test_adjacent_semesters_allowed(self, admin):
        make_semester(start=date(2026, 1, 5), days=100, name='Spring')
        result = semesters.create({'name': 'Summer', 'start_date': '2026-04-16', 'end_date': '2026-08-01'})
        assert result['name'] == 'Summer'

    def test_update_may_keep_own_dates(self, admin):
        semester = make_semester(start=date(2026, 1, 5), days=100, name='Spring')
        result = semesters.update(semester.id, {'name': 'Spring 2026'})
        assert result['name'] == 'Spring 2026'

    def test_invalid_date(self, admin):
        with pytest.raises(ActionError, match="Invalid start date"):
            semesters.create({'name': 'Bad', 'start_date': 'not-a-date', 'end_date': '2026-01-01'})

    def test_delete_blocked_by_courses(self, admin):
        semester = make_semester()
        make_course(make_program(), semester)
        with pytest.raises(ActionError, match="Cannot delete semester"):
            semesters.delete(semester.id)

    def test_students_listing(self, admin, campus):
        student = make_student(campus['program'], campus['semester'])
        make_enrollment(student, campus['course'])
        listed = semesters.get_students(campus['semester'].id)
        assert [s['id'] for s in listed] == [student.id]
        details = semesters.get_details(campus['semester'].id)
        assert details['student_count'] == 1
        assert details['courses'][0]['enrollment_count'] == 1


class TestCourses:
    """Course CRUD"""

    def test_create_defaults_credits(self, admin, campus):
        result = courses.create({
            'name': 'Data Structures', 'code': 'cs201',
            'program_id': campus['program'].id, 'semester_id': campus['semester'].id
        })
        assert result['code'] == 'CS201'
        assert result['credits'] == 3.0
        assert result['lecturer'] is None

    def test_duplicate_in_program_and_semester(self, admin, campus):
        with pytest.raises(ActionError, match="already exists for this program and semester"):
            courses.create({
                'name': 'Copy', 'code': campus['course'].code.lower(),
                'program_id': campus['program'].id, 'semester_id': campus['semester'].id
            })

    def test_unknown_lecturer(self, admin, campus):
        with pytest.raises(NotFoundError, match="Lecturer not found"):
            courses.create({
                'name': 'Networks', 'code': 'NET1', 'lecturer_id': 999,
                'program_id': campus['program'].id, 'semester_id': campus['semester'].id
            })

    def test_zero_credits(self, admin, campus):
        with pytest.raises(ActionError, match="Credits must be greater than zero"):
            courses.update(campus['course'].id, {'credits': '0'})

    def test_unassign_lecturer(self, admin, campus):
        result = courses.update(campus['course'].id, {'lecturer_id': None})
        assert result['lecturer'] is None

    def test_filter_by_lecturer(self, admin, campus):
        make_course(campus['program'], campus['semester'])
        result = courses.get_all(lecturer_id=campus['lecturer'].id)
        assert [c['id'] for c in result] == [campus['course'].id]

    def test_delete_blocked_by_enrollments(self, admin, campus):
        make_enrollment(make_student(campus['program']), campus['course'])
        with pytest.raises(ActionError, match="Cannot delete course with enrollments"):
            courses.delete(campus['course'].id)

    def test_get_lecturers_requires_academic_role(self, ctx, login_as):
        login_as(make_user('Accountant'))
        with pytest.raises(ForbiddenError):
            courses.get_lecturers()
