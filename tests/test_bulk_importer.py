"""
Tests for the Excel student import
"""
import io

import pandas as pd
import pytest

from models import Student, User, UserLog
from utils.bulk_importer import (process_student_upload, build_student_template, STUDENT_COLUMNS, OPTIONAL_COLUMNS,
                                 XLSX_MIMETYPE)
from utils.errors import ActionError, ForbiddenError
from tests.conftest import make_user, make_student, make_upload


def workbook(rows, columns=None):
    output = io.BytesIO()
    pd.DataFrame(rows, columns=columns).to_excel(output, index=False, engine='openpyxl')
    return make_upload('students.xlsx', output.getvalue(), XLSX_MIMETYPE)


def row(campus, **overrides):
    values = {
        'FirstName': 'Amina', 'LastName': 'Hassan', 'Email': 'amina@campus.example',
        'RegistrationNumber': 'REG/100', 'StudentNumber': 'S100',
        'ProgramCode': campus['program'].code.lower(), 'SemesterName': campus['semester'].name,
        'InitialPassword': '',
    }
    values.update(overrides)
    return values


class TestStudentImport:
    """process_student_upload"""

    def test_adds_valid_rows_and_reports_the_rest(self, admin, campus):
        existing = make_student(campus['program'])
        report = process_student_upload(workbook([
            row(campus, InitialPassword='secret99'),
            row(campus, Email=existing.email.upper(), RegistrationNumber='REG/101', StudentNumber='S101'),
            row(campus, Email='b@campus.example', RegistrationNumber='REG/100', StudentNumber='S102'),
            row(campus, Email='c@campus.example', RegistrationNumber='REG/103', StudentNumber='S103', ProgramCode='ZZZ'),
            row(campus, Email='d@campus.example', RegistrationNumber='REG/104', StudentNumber='S104', LastName=None),
        ]))

        assert report['added'] == 1
        assert report['skipped'] == 4
        assert report['errors'] == [
            f"Row 3: Email '{existing.email.lower()}' is already in use.",
            "Row 4: Registration number 'REG/100' already exists.",
            "Row 5: Unknown program code 'ZZZ'.",
            "Row 6: One or more cells are blank.",
        ]

        imported = Student.query.filter_by(registration_number='REG/100').one()
        assert imported.program_id == campus['program'].id
        assert imported.current_semester_id == campus['semester'].id
        assert imported.user.check_password('secret99')
        assert UserLog.query.filter_by(target_table='student').count() == 1

    def test_numeric_student_numbers(self, admin, campus):
        report = process_student_upload(workbook([row(campus, StudentNumber=2025001)]))
        assert report['added'] == 1
        assert Student.query.filter_by(student_number='2025001').count() == 1

    def test_short_password(self, admin, campus):
        report = process_student_upload(workbook([row(campus, InitialPassword='abc')]))
        assert report['added'] == 0
        assert "at least 6 characters" in report['errors'][0]
        assert User.query.filter_by(email='amina@campus.example').first() is None

    def test_missing_columns(self, admin, campus):
        with pytest.raises(ActionError, match="Missing required columns"):
            process_student_upload(workbook([{'FirstName': 'A'}]))

    def test_unreadable_file(self, admin):
        with pytest.raises(ActionError, match="Could not read Excel file"):
            process_student_upload(make_upload('students.xlsx', b'not a workbook', XLSX_MIMETYPE))

    def test_accountant_cannot_import(self, ctx, login_as, campus):
        login_as(make_user('Accountant'))
        with pytest.raises(ForbiddenError):
            process_student_upload(workbook([row(campus)]))


def test_template_has_header_row():
    df = pd.read_excel(io.BytesIO(build_student_template()))
    assert list(df.columns) == STUDENT_COLUMNS + OPTIONAL_COLUMNS
    assert df.empty
