# utils/analytics.py
# Functions to query the DB and structure data for the dashboards and Chart.js.

from datetime import date

from sqlalchemy.sql import func

from models import (db, Student, Staff, Course, Program, Department, Enrollment, Grade, Invoice, Payment,
                    InvoiceStatus, Semester)
from utils.auth import check_auth_and_permissions, STAFF_ROLES
from utils.helpers import money


def get_dashboard_counts():
    """Headline numbers for the staff dashboard."""
    check_auth_and_permissions(STAFF_ROLES)
    today = date.today()
    current = Semester.query.filter(Semester.start_date <= today, Semester.end_date >= today).first()
    return {
        "student_count": Student.query.count(),
        "staff_count": Staff.query.count(),
        "course_count": Course.query.count(),
        "program_count": Program.query.count(),
        "department_count": Department.query.count(),
        "current_semester": current.name if current else None,
        "outstanding_balance": money(db.session.query(func.coalesce(func.sum(Invoice.balance), 0)).scalar()),
    }


def get_enrollments_per_course(semester_id=None):
    """Number of enrolled students per course code."""
    check_auth_and_permissions(STAFF_ROLES)
    query = db.session.query(
        Course.code,
        func.count(Enrollment.id).label('enrolled')
    ).outerjoin(Enrollment, Enrollment.course_id == Course.id)
    if semester_id:
        query = query.filter(Course.semester_id == semester_id)
    rows = query.group_by(Course.code).order_by(Course.code).all()
    return {'labels': [row.code for row in rows], 'data': [row.enrolled for row in rows]}


def get_students_per_program():
    check_auth_and_permissions(STAFF_ROLES)
    rows = db.session.query(
        Program.code,
        func.count(Student.id).label('students')
    ).outerjoin(Student, Student.program_id == Program.id).group_by(Program.code).order_by(Program.code).all()
    return {'labels': [row.code for row in rows], 'data': [row.students for row in rows]}


def get_grade_distribution(course_id=None):
    """Counts of each letter grade, A through F."""
    check_auth_and_permissions(STAFF_ROLES)
    query = db.session.query(Grade.letter_grade, func.count(Grade.id)).join(Enrollment)
    if course_id:
        query = query.filter(Enrollment.course_id == course_id)
    counts = dict(query.group_by(Grade.letter_grade).all())
    labels = ['A', 'B', 'C', 'D', 'E', 'F']
    return {'labels': labels, 'data': [counts.get(letter, 0) for letter in labels]}


def get_payment_method_breakdown():
    check_auth_and_permissions(STAFF_ROLES)
    rows = db.session.query(
        Payment.payment_method,
        func.sum(Payment.amount).label('total')
    ).group_by(Payment.payment_method).order_by(func.sum(Payment.amount).desc()).all()
    return {'labels': [row.payment_method for row in rows], 'data': [money(row.total) for row in rows]}


def get_invoice_status_breakdown():
    check_auth_and_permissions(STAFF_ROLES)
    counts = dict(db.session.query(Invoice.status, func.count(Invoice.id)).group_by(Invoice.status).all())
    return {
        'labels': [s.value for s in InvoiceStatus],
        'data': [counts.get(s, 0) for s in InvoiceStatus]
    }
