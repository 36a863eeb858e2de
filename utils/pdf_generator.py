# utils/pdf_generator.py
# Uses WeasyPrint to convert rendered HTML templates into A4 PDF reports.

import logging
from datetime import datetime, time, timedelta

from flask import render_template, current_app
from sqlalchemy import and_, or_
from weasyprint import HTML, CSS

from models import (db, Payment, Invoice, InvoiceStatus, Student, Staff, Program, Department, Semester,
                    Course, Enrollment, FeeStructure)
from utils.audit import log_document
from utils.auth import check_auth_and_permissions, has_role, ADMIN, ACCOUNTANT, REGISTRAR, HOD, STUDENT
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.helpers import clean, to_int, parse_date

logger = logging.getLogger(__name__)

FINANCE_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR]
ACADEMIC_ROLES = [ADMIN, REGISTRAR, HOD]

PORTRAIT = "@page { size: A4; margin: 15mm 10mm; }"
LANDSCAPE = "@page { size: A4 landscape; margin: 15mm 10mm; }"


def _institution():
    cfg = current_app.config
    return {
        "name": cfg.get('INSTITUTION_NAME'),
        "address": cfg.get('INSTITUTION_ADDRESS'),
        "contact": cfg.get('INSTITUTION_CONTACT'),
    }


def _render_pdf(template, landscape=False, **context):
    """
    Renders a report template and converts it to PDF bytes.

    Jinja autoescapes the template, so names and descriptions typed in by
    users are printed as text.
    """
    rendered_html = render_template(
        template,
        institution=_institution(),
        now=datetime.utcnow(),
        **context
    )
    try:
        return HTML(string=rendered_html, base_url='.').write_pdf(
            stylesheets=[CSS(string=LANDSCAPE if landscape else PORTRAIT)]
        )
    except Exception as e:
        logger.error(f"PDF rendering failed for {template}: {e}")
        raise ActionError("Failed to generate PDF")


def _describe(default, parts):
    parts = [p for p in parts if p]
    return ", ".join(parts) if parts else default


def _name_filter(model, name):
    term = f"%{name}%"
    return or_(
        model.first_name.ilike(term),
        model.last_name.ilike(term),
        (model.first_name + ' ' + model.last_name).ilike(term)
    )


def _where(query, conditions):
    return query.filter(and_(*conditions)) if conditions else query


# --- Receipts ---

def generate_receipt(payment_id):
    """
    Generates a payment receipt.

    Args:
        payment_id (int): The payment to print.

    Returns:
        bytes: The generated PDF.
    """
    user = check_auth_and_permissions(FINANCE_ROLES + [STUDENT])
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    if has_role(user, STUDENT) and (not user.student_profile or user.student_profile.id != payment.student_id):
        raise ForbiddenError("Forbidden: Students may only download their own receipts.")

    pdf_bytes = _render_pdf('reports/receipt.html', payment=payment, student=payment.student, invoice=payment.invoice)
    log_document('receipt', payment.id)
    logger.info(f"Generated receipt for payment {payment.id}")
    return pdf_bytes


# --- Lists ---

def generate_student_list(program_id=None, semester_id=None, course_id=None, student_name=None):
    check_auth_and_permissions(ACADEMIC_ROLES)
    program_id = to_int(program_id, 'program')
    semester_id = to_int(semester_id, 'semester')
    course_id = to_int(course_id, 'course')
    student_name = clean(student_name)

    query = Student.query.outerjoin(Program, Student.program_id == Program.id)
    conditions = []
    if program_id: conditions.append(Student.program_id == program_id)
    if semester_id: conditions.append(Student.current_semester_id == semester_id)
    if student_name: conditions.append(_name_filter(Student, student_name))
    if course_id:
        query = query.join(Enrollment, Enrollment.student_id == Student.id)
        conditions.append(Enrollment.course_id == course_id)
    students = _where(query, conditions).distinct().order_by(Student.last_name, Student.first_name).all()

    program = db.session.get(Program, program_id) if program_id else None
    semester = db.session.get(Semester, semester_id) if semester_id else None
    course = db.session.get(Course, course_id) if course_id else None
    description = _describe("All Students", [
        f"Program: {program.name if program else 'Unknown'}" if program_id else None,
        f"Semester: {semester.name if semester else 'Unknown'}" if semester_id else None,
        f"Course: {course.name if course else 'Unknown'}" if course_id else None,
        f"Student: {student_name}" if student_name else None,
    ])

    pdf_bytes = _render_pdf('reports/student_list.html', landscape=True, students=students,
                            filter_description=description)
    log_document('student_list')
    logger.info(f"Generated student list ({len(students)} rows)")
    return pdf_bytes


def generate_staff_list(department_id=None, position=None, staff_name=None):
    check_auth_and_permissions(ACADEMIC_ROLES)
    department_id = to_int(department_id, 'department')
    position = clean(position)
    staff_name = clean(staff_name)

    conditions = []
    if department_id: conditions.append(Staff.department_id == department_id)
    if position: conditions.append(Staff.position.ilike(f"%{position}%"))
    if staff_name: conditions.append(_name_filter(Staff, staff_name))
    query = Staff.query.outerjoin(Department, Staff.department_id == Department.id)
    staff = _where(query, conditions).order_by(Staff.last_name, Staff.first_name).all()

    department = db.session.get(Department, department_id) if department_id else None
    description = _describe("All Staff", [
        f"Department: {department.name if department else 'Unknown'}" if department_id else None,
        f"Position: {position}" if position else None,
        f"Name: {staff_name}" if staff_name else None,
    ])

    pdf_bytes = _render_pdf('reports/staff_list.html', staff=staff, filter_description=description)
    log_document('staff_list')
    logger.info(f"Generated staff list ({len(staff)} rows)")
    return pdf_bytes


def generate_invoice_list(student_name=None, with_balance=False, due_from=None, due_to=None, status=None):
    check_auth_and_permissions(FINANCE_ROLES)
    student_name = clean(student_name)
    due_from = parse_date(due_from, 'from date')
    due_to = parse_date(due_to, 'to date')
    status_value = None
    if clean(status):
        try:
            status_value = InvoiceStatus(str(status).lower())
        except ValueError:
            raise ActionError(f"Invalid invoice status: {status}")

    conditions = []
    if student_name: conditions.append(_name_filter(Student, student_name))
    if with_balance: conditions.append(Invoice.balance > 0)
    if due_from: conditions.append(Invoice.due_date >= due_from)
    if due_to: conditions.append(Invoice.due_date <= due_to)
    if status_value: conditions.append(Invoice.status == status_value)
    query = Invoice.query.join(Student, Invoice.student_id == Student.id)
    invoices = _where(query, conditions).order_by(Invoice.due_date.desc(), Invoice.id.desc()).all()

    description = _describe("All Invoices", [
        f"Student: {student_name}" if student_name else None,
        "With Balance" if with_balance else None,
        f"Due: {due_from or '...'} - {due_to or '...'}" if due_from or due_to else None,
        f"Status: {status_value.value}" if status_value else None,
    ])
    totals = {
        "amount_due": sum((i.amount_due for i in invoices), 0),
        "amount_paid": sum((i.amount_paid for i in invoices), 0),
        "balance": sum((i.balance for i in invoices), 0),
    }

    pdf_bytes = _render_pdf('reports/invoice_list.html', invoices=invoices, totals=totals,
                            filter_description=description)
    log_document('invoice_list')
    logger.info(f"Generated invoice list ({len(invoices)} rows)")
    return pdf_bytes


def generate_payment_list(student_name=None, payment_method=None, date_from=None, date_to=None):
    check_auth_and_permissions(FINANCE_ROLES)
    student_name = clean(student_name)
    payment_method = clean(payment_method)
    date_from = parse_date(date_from, 'from date')
    date_to = parse_date(date_to, 'to date')

    conditions = []
    if payment_method: conditions.append(Payment.payment_method == payment_method.lower())
    if student_name: conditions.append(_name_filter(Student, student_name))
    if date_from: conditions.append(Payment.transaction_date >= datetime.combine(date_from, time.min))
    if date_to: conditions.append(Payment.transaction_date < datetime.combine(date_to + timedelta(days=1), time.min))
    query = Payment.query.join(Student, Payment.student_id == Student.id)
    payments = _where(query, conditions).order_by(Payment.transaction_date.desc()).all()

    description = _describe("All Payments", [
        f"Method: {payment_method}" if payment_method else None,
        f"Student: {student_name}" if student_name else None,
        f"Date: {date_from or '...'} - {date_to or '...'}" if date_from or date_to else None,
    ])

    pdf_bytes = _render_pdf('reports/payment_list.html', payments=payments,
                            total=sum((p.amount for p in payments), 0), filter_description=description)
    log_document('payment_list')
    logger.info(f"Generated payment list ({len(payments)} rows)")
    return pdf_bytes


def generate_fee_structure_list(program_id=None, semester_id=None):
    check_auth_and_permissions(FINANCE_ROLES + [STUDENT])
    program_id = to_int(program_id, 'program')
    semester_id = to_int(semester_id, 'semester')

    conditions = []
    if program_id: conditions.append(FeeStructure.program_id == program_id)
    if semester_id: conditions.append(FeeStructure.semester_id == semester_id)
    query = FeeStructure.query.join(Program).join(Semester)
    fee_structures = _where(query, conditions).order_by(Semester.start_date.desc(), Program.name).all()

    program = db.session.get(Program, program_id) if program_id else None
    semester = db.session.get(Semester, semester_id) if semester_id else None
    description = _describe("All Fee Structures", [
        f"Program: {program.name if program else 'Unknown'}" if program_id else None,
        f"Semester: {semester.name if semester else 'Unknown'}" if semester_id else None,
    ])

    pdf_bytes = _render_pdf('reports/fee_structures.html', fee_structures=fee_structures,
                            filter_description=description)
    log_document('fee_structure_list')
    return pdf_bytes


# --- Transcripts ---

def build_transcript(student):
    """Groups a student's enrollments by semester (newest first) with a cumulative GPA."""
    enrollments = student.enrollments.join(Semester, Enrollment.semester_id == Semester.id) \
        .join(Course, Enrollment.course_id == Course.id) \
        .order_by(Semester.start_date.desc(), Course.name).all()

    semesters = []
    by_semester = {}
    for enrollment in enrollments:
        if enrollment.semester_id not in by_semester:
            by_semester[enrollment.semester_id] = {"semester": enrollment.semester, "records": []}
            semesters.append(by_semester[enrollment.semester_id])
        by_semester[enrollment.semester_id]["records"].append(enrollment)

    graded = [e.grade.gpa for e in enrollments if e.grade and e.grade.gpa is not None]
    cumulative_gpa = round(float(sum(graded)) / len(graded), 2) if graded else 0.0
    return {"student": student, "semesters": semesters, "cumulative_gpa": cumulative_gpa}


def generate_transcript(program_id=None, course_id=None, student_name=None):
    """
    Generates transcripts for every student matching the filters.
    A logged-in student always gets only their own transcript.
    """
    user = check_auth_and_permissions(ACADEMIC_ROLES + [STUDENT])
    program_id = to_int(program_id, 'program')
    course_id = to_int(course_id, 'course')
    student_name = clean(student_name)

    query = Student.query
    conditions = []
    if has_role(user, STUDENT):
        if not user.student_profile:
            raise NotFoundError("Student not found")
        conditions.append(Student.id == user.student_profile.id)
    else:
        if program_id: conditions.append(Student.program_id == program_id)
        if student_name: conditions.append(_name_filter(Student, student_name))
        if course_id:
            query = query.join(Enrollment, Enrollment.student_id == Student.id)
            conditions.append(Enrollment.course_id == course_id)
    students = _where(query, conditions).distinct().order_by(Student.last_name, Student.first_name).all()
    if not students:
        raise ActionError("No students found matching the criteria")

    program = db.session.get(Program, program_id) if program_id else None
    course = db.session.get(Course, course_id) if course_id else None
    description = _describe("All Students", [
        f"Program: {program.name if program else 'Unknown'}" if program_id else None,
        f"Course: {course.name if course else 'Unknown'}" if course_id else None,
        f"Student: {student_name}" if student_name else None,
    ])

    transcripts = [build_transcript(s) for s in students]
    pdf_bytes = _render_pdf('reports/transcript.html', transcripts=transcripts, filter_description=description)
    log_document('transcript', students[0].id if len(students) == 1 else None)
    logger.info(f"Generated {len(transcripts)} transcript(s)")
    return pdf_bytes
