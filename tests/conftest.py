"""
Campus Admin - Test Configuration and Fixtures
"""
import os
import io
from datetime import date, timedelta
from decimal import Decimal

import pytest
from faker import Faker
from flask_login import login_user, logout_user
from werkzeug.datastructures import FileStorage

# Set testing environment before the app module reads its config
os.environ['APP_ENV'] = 'testing'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'

from app import app as flask_app
from models import (db, Role, User, Department, Program, Semester, Course, Staff, Student, Enrollment,
                    FeeStructure, Invoice, InvoiceStatus)
from utils.auth import ADMIN, STUDENT
from utils.csv_tools import seed_roles

fake = Faker()


@pytest.fixture
def app():
    """Fresh in-memory schema with the role table seeded"""
    with flask_app.app_context():
        db.create_all()
        seed_roles()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """A request context for calling action functions directly"""
    with app.test_request_context():
        yield
        logout_user()
        db.session.rollback()


@pytest.fixture
def client(app):
    return app.test_client()


# --- Factories ---

def make_user(role_name, password='password123', email=None):
    role = Role.query.filter_by(name=role_name).one()
    user = User(email=email or fake.unique.email(), role_id=role.id)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def make_department(name=None):
    department = Department(name=name or f"{fake.unique.word().title()} Department")
    db.session.add(department)
    db.session.commit()
    return department


def make_staff(role_name, department=None, position=None, password='password123'):
    user = make_user(role_name, password=password)
    staff = Staff(
        user_id=user.id,
        department_id=department.id if department else None,
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        email=user.email,
        position=position or role_name
    )
    db.session.add(staff)
    db.session.commit()
    return staff


def make_program(department=None, code=None):
    department = department or make_department()
    program = Program(
        department_id=department.id,
        name=f"Bachelor of {fake.unique.job()}",
        code=code or fake.unique.bothify('P###').upper(),
        duration_semesters=8
    )
    db.session.add(program)
    db.session.commit()
    return program


def make_semester(start=None, days=120, name=None):
    start = start or date(2025, 1, 6)
    semester = Semester(name=name or fake.unique.bothify('Semester ##??'), start_date=start,
                        end_date=start + timedelta(days=days))
    db.session.add(semester)
    db.session.commit()
    return semester


def make_course(program, semester, lecturer=None, code=None, credits=3):
    course = Course(
        program_id=program.id,
        semester_id=semester.id,
        lecturer_id=lecturer.id if lecturer else None,
        name=fake.catch_phrase(),
        code=code or fake.unique.bothify('CS###').upper(),
        credits=credits
    )
    db.session.add(course)
    db.session.commit()
    return course


def make_student(program=None, semester=None, password='password123'):
    user = make_user(STUDENT, password=password)
    student = Student(
        user_id=user.id,
        program_id=program.id if program else None,
        department_id=program.department_id if program else None,
        current_semester_id=semester.id if semester else None,
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        email=user.email,
        registration_number=fake.unique.bothify('REG/####/25'),
        student_number=fake.unique.numerify('S######')
    )
    db.session.add(student)
    db.session.commit()
    return student


def make_enrollment(student, course):
    enrollment = Enrollment(student_id=student.id, course_id=course.id, semester_id=course.semester_id)
    db.session.add(enrollment)
    db.session.commit()
    return enrollment


def make_fee_structure(program, semester, amount='50000.00'):
    fee_structure = FeeStructure(program_id=program.id, semester_id=semester.id, total_amount=Decimal(amount))
    db.session.add(fee_structure)
    db.session.commit()
    return fee_structure


def make_invoice(student, semester, amount='1000.00', due_date=None):
    amount = Decimal(amount)
    invoice = Invoice(
        student_id=student.id, semester_id=semester.id, amount_due=amount, amount_paid=Decimal('0.00'),
        balance=amount, due_date=due_date or date.today() + timedelta(days=30), status=InvoiceStatus.UNPAID
    )
    db.session.add(invoice)
    db.session.commit()
    return invoice


def make_upload(filename='document.pdf', content=b'%PDF-1.4 test', mimetype='application/pdf'):
    return FileStorage(stream=io.BytesIO(content), filename=filename, content_type=mimetype)


# --- Login helpers ---

@pytest.fixture
def login_as(ctx):
    """Logs a user in for the current request context; returns the user"""
    def _login(user):
        login_user(user)
        return user
    return _login


@pytest.fixture
def admin(ctx, login_as):
    return login_as(make_user(ADMIN))


@pytest.fixture
def campus(ctx):
    """A small campus: one department, program, semester and course with a lecturer"""
    department = make_department()
    program = make_program(department)
    semester = make_semester()
    lecturer = make_staff('Lecturer', department=department, position='Lecturer')
    course = make_course(program, semester, lecturer=lecturer)
    return {
        'department': department,
        'program': program,
        'semester': semester,
        'lecturer': lecturer,
        'course': course,
    }
