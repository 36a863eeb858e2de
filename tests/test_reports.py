"""
Tests for PDF reports (WeasyPrint replaced by a mock)
"""
from datetime import date
from decimal import Decimal
from unittest.mock import patch, MagicMock

import pytest

from actions import payments
from models import db, DocumentLog, Grade, Payment
from utils import pdf_generator
from utils.errors import ActionError, ForbiddenError
from tests.conftest import make_user, make_student, make_invoice, make_enrollment, make_course, make_semester


@pytest.fixture
def weasy():
    html = MagicMock()
    html.return_value.write_pdf.return_value = b'%PDF-1.7 mock'
    with patch('utils.pdf_generator.HTML', html), patch('utils.pdf_generator.CSS'):
        yield html


def rendered(weasy):
    return weasy.call_args.kwargs['string']


class TestReceipts:
    """Payment receipts"""

    @pytest.fixture
    def payment(self, admin, campus):
        student = make_student(campus['program'])
        invoice = make_invoice(student, campus['semester'], amount='1000.00')
        return payments.record({'invoice_id': invoice.id, 'amount': '250', 'payment_method': 'bank_transfer',
                                'reference_number': 'BNK-77'})

    def test_generates_and_logs(self, weasy, payment):
        assert pdf_generator.generate_receipt(payment['id']) == b'%PDF-1.7 mock'

        html = rendered(weasy)
        assert 'BNK-77' in html
        assert '750.00' in html
        entry = DocumentLog.query.one()
        assert (entry.document_type, entry.target_id) == ('receipt', str(payment['id']))

    def test_student_gets_only_own_receipt(self, weasy, login_as, payment):
        login_as(make_student().user)
        with pytest.raises(ForbiddenError):
            pdf_generator.generate_receipt(payment['id'])

    def test_owner_can_download(self, weasy, login_as, payment):
        owner = db.session.get(Payment, payment['id']).student
        login_as(owner.user)
        assert pdf_generator.generate_receipt(payment['id'])

    def test_render_failure(self, weasy, payment):
        weasy.return_value.write_pdf.side_effect = RuntimeError('cairo missing')
        with pytest.raises(ActionError, match="Failed to generate PDF"):
            pdf_generator.generate_receipt(payment['id'])
        assert DocumentLog.query.count() == 0


class TestLists:
    """Filtered list reports"""

    def test_student_list_filter_description(self, weasy, admin, campus):
        kept = make_student(campus['program'])
        other = make_student()
        pdf_generator.generate_student_list(program_id=str(campus['program'].id))

        html = rendered(weasy)
        assert kept.registration_number in html
        assert other.registration_number not in html
        assert 'Program: ' in html

    def test_names_are_escaped(self, weasy, admin, campus):
        student = make_student(campus['program'])
        student.first_name = '<b>Eve</b>'
        db.session.commit()
        pdf_generator.generate_student_list()
        assert '&lt;b&gt;Eve&lt;/b&gt;' in rendered(weasy)

    def test_invoice_list_balance_only(self, weasy, admin, campus):
        open_invoice = make_invoice(make_student(), campus['semester'], amount='800.00')
        settled = make_invoice(make_student(), campus['semester'], amount='300.00')
        settled.balance = Decimal('0.00')
        db.session.commit()

        pdf_generator.generate_invoice_list(with_balance=True)

        html = rendered(weasy)
        assert open_invoice.student.registration_number in html
        assert settled.student.registration_number not in html
        assert 'With Balance' in html

    def test_invalid_invoice_status(self, weasy, admin):
        with pytest.raises(ActionError, match="Invalid invoice status"):
            pdf_generator.generate_invoice_list(status='archived')

    def test_lecturer_cannot_print_lists(self, weasy, ctx, login_as):
        login_as(make_user('Lecturer'))
        with pytest.raises(ForbiddenError):
            pdf_generator.generate_staff_list()
        weasy.assert_not_called()


class TestTranscripts:
    """Transcripts grouped by semester"""

    def test_build_groups_by_semester_newest_first(self, admin, campus):
        student = make_student(campus['program'])
        later = make_semester(start=date(2025, 9, 1))
        first = make_enrollment(student, campus['course'])
        second = make_enrollment(student, make_course(campus['program'], later))
        make_enrollment(student, make_course(campus['program'], later))
        db.session.add_all([
            Grade(enrollment_id=first.id, total_score=82, letter_grade='A', gpa=Decimal('5.00')),
            Grade(enrollment_id=second.id, total_score=65, letter_grade='C', gpa=Decimal('3.00')),
        ])
        db.session.commit()

        transcript = pdf_generator.build_transcript(student)

        assert [s['semester'].id for s in transcript['semesters']] == [later.id, campus['semester'].id]
        assert len(transcript['semesters'][0]['records']) == 2
        # The ungraded enrollment does not count towards the GPA
        assert transcript['cumulative_gpa'] == 4.0

    def test_no_matching_students(self, weasy, admin):
        with pytest.raises(ActionError, match="No students found matching the criteria"):
            pdf_generator.generate_transcript(student_name='Nobody')

    def test_student_always_gets_own(self, weasy, login_as, campus):
        student = make_student(campus['program'])
        other = make_student(campus['program'])
        login_as(student.user)

        pdf_generator.generate_transcript(student_name=other.last_name)

        html = rendered(weasy)
        assert student.registration_number in html
        assert other.registration_number not in html
        assert DocumentLog.query.one().target_id == str(student.id)
