# models.py
# This file defines the database schema for the whole campus.

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import Enum, UniqueConstraint
import enum
from datetime import date, datetime

db = SQLAlchemy()

# --- Enums ---

class InvoiceStatus(enum.Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

class SalaryStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

class LogAction(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

# --- Accounts ---

class Role(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)

    users = db.relationship('User', back_populates='role', lazy=True)

    def __repr__(self):
        return f"<Role {self.name}>"

class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256))
    role_id = db.Column(db.Integer, db.ForeignKey('role.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    role = db.relationship('Role', back_populates='users')
    staff_profile = db.relationship('Staff', back_populates='user', uselist=False)
    student_profile = db.relationship('Student', back_populates='user', uselist=False)

    @property
    def role_name(self):
        return self.role.name if self.role else None

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        # Accounts created by staff/student registration have no password yet
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.email} ({self.role_name})>"

class UserLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True, index=True)
    action = db.Column(db.String(20), nullable=False)
    target_table = db.Column(db.String(100), nullable=False)
    target_id = db.Column(db.String(50))
    description = db.Column(db.Text)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = db.relationship('User')

    def __repr__(self):
        return f"<UserLog {self.action} {self.target_table}#{self.target_id}>"

class DocumentLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    document_type = db.Column(db.String(50), nullable=False)
    target_id = db.Column(db.String(50))
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    generated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship('User')

    def __repr__(self):
        return f"<DocumentLog {self.document_type} by {self.user_id}>"

# --- Academic Structure ---

class Department(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    # staff.department_id points back here, so this side is created after both tables
    head_of_department_id = db.Column(db.Integer, db.ForeignKey('staff.id', use_alter=True, name='fk_department_head'), nullable=True)

    staff = db.relationship('Staff', back_populates='department', foreign_keys='Staff.department_id', lazy='dynamic')
    head = db.relationship('Staff', foreign_keys=[head_of_department_id], post_update=True)
    programs = db.relationship('Program', back_populates='department', lazy='dynamic')

    def __repr__(self):
        return f"<Department {self.name}>"

class Staff(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey('department.id'), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    id_number = db.Column(db.String(50), unique=True, nullable=True)
    position = db.Column(db.String(100))
    employment_documents_url = db.Column(db.String(500))
    national_id_photo_url = db.Column(db.String(500))
    academic_certificates_url = db.Column(db.String(500))
    passport_photo_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship('User', back_populates='staff_profile')
    department = db.relationship('Department', back_populates='staff', foreign_keys=[department_id])
    courses = db.relationship('Course', back_populates='lecturer', lazy='dynamic')
    salaries = db.relationship('StaffSalary', back_populates='staff', lazy='dynamic')
    materials = db.relationship('CourseMaterial', back_populates='uploaded_by', lazy='dynamic')
    assignments = db.relationship('Assignment', back_populates='assigned_by', lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Staff {self.full_name}>"

class Program(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey('department.id'), nullable=False)
    name = db.Column(db.String(150), unique=True, nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    duration_semesters = db.Column(db.Integer, nullable=False, default=8)

    department = db.relationship('Department', back_populates='programs')
    courses = db.relationship('Course', back_populates='program', lazy='dynamic')
    students = db.relationship('Student', back_populates='program', lazy='dynamic')
    fee_structures = db.relationship('FeeStructure', back_populates='program', lazy='dynamic')

    def __repr__(self):
        return f"<Program {self.code}>"

class Semester(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    courses = db.relationship('Course', back_populates='semester', lazy='dynamic')
    enrollments = db.relationship('Enrollment', back_populates='semester', lazy='dynamic')

    def __repr__(self):
        return f"<Semester {self.name}>"

class Course(db.Model):
    __table_args__ = (UniqueConstraint('program_id', 'code', 'semester_id', name='uq_course_program_code_semester'),)

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('program.id'), nullable=False)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=False)
    lecturer_id = db.Column(db.Integer, db.ForeignKey('staff.id'), nullable=True)
    name = db.Column(db.String(150), nullable=False)
    code = db.Column(db.String(20), nullable=False)
    credits = db.Column(db.Numeric(4, 2), nullable=False, default=3)
    description = db.Column(db.Text)

    program = db.relationship('Program', back_populates='courses')
    semester = db.relationship('Semester', back_populates='courses')
    lecturer = db.relationship('Staff', back_populates='courses')
    enrollments = db.relationship('Enrollment', back_populates='course', lazy='dynamic')
    materials = db.relationship('CourseMaterial', back_populates='course', lazy='dynamic')
    assignments = db.relationship('Assignment', back_populates='course', lazy='dynamic')

    def __repr__(self):
        return f"<Course {self.code}>"

# --- Students ---

class Student(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('program.id'), nullable=True)
    department_id = db.Column(db.Integer, db.ForeignKey('department.id'), nullable=True)
    current_semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    registration_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    student_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    passport_photo_url = db.Column(db.String(500))
    id_photo_url = db.Column(db.String(500))
    certificate_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship('User', back_populates='student_profile')
    program = db.relationship('Program', back_populates='students')
    department = db.relationship('Department')
    current_semester = db.relationship('Semester')
    enrollments = db.relationship('Enrollment', back_populates='student', lazy='dynamic')
    invoices = db.relationship('Invoice', back_populates='student', lazy='dynamic')
    payments = db.relationship('Payment', back_populates='student', lazy='dynamic')
    submissions = db.relationship('AssignmentSubmission', back_populates='student', lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Student {self.full_name} ({self.registration_number})>"

class Enrollment(db.Model):
    __table_args__ = (UniqueConstraint('student_id', 'course_id', 'semester_id', name='uq_enrollment_student_course_semester'),)

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=False)
    enrollment_date = db.Column(db.Date, nullable=False, default=date.today)

    student = db.relationship('Student', back_populates='enrollments')
    course = db.relationship('Course', back_populates='enrollments')
    semester = db.relationship('Semester', back_populates='enrollments')
    grade = db.relationship('Grade', back_populates='enrollment', uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Enrollment student={self.student_id} course={self.course_id}>"

class Grade(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey('enrollment.id'), unique=True, nullable=False)
    cat_score = db.Column(db.Numeric(5, 2))
    exam_score = db.Column(db.Numeric(5, 2))
    total_score = db.Column(db.Numeric(5, 2))
    letter_grade = db.Column(db.String(2))
    gpa = db.Column(db.Numeric(3, 2))

    enrollment = db.relationship('Enrollment', back_populates='grade')

    def __repr__(self):
        return f"<Grade enrollment={self.enrollment_id}: {self.total_score} {self.letter_grade}>"

# --- Finance ---

class FeeStructure(db.Model):
    __table_args__ = (UniqueConstraint('program_id', 'semester_id', name='uq_fee_structure_program_semester'),)

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('program.id'), nullable=False)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=False)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    description = db.Column(db.Text)

    program = db.relationship('Program', back_populates='fee_structures')
    semester = db.relationship('Semester')
    invoices = db.relationship('Invoice', back_populates='fee_structure', lazy='dynamic')

    def __repr__(self):
        return f"<FeeStructure program={self.program_id} semester={self.semester_id}>"

class Invoice(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=False)
    fee_structure_id = db.Column(db.Integer, db.ForeignKey('fee_structure.id'), nullable=True)
    amount_due = db.Column(db.Numeric(10, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    balance = db.Column(db.Numeric(10, 2), nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    issued_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.UNPAID)

    student = db.relationship('Student', back_populates='invoices')
    semester = db.relationship('Semester')
    fee_structure = db.relationship('FeeStructure', back_populates='invoices')
    payments = db.relationship('Payment', back_populates='invoice', lazy='dynamic')

    def __repr__(self):
        return f"<Invoice {self.id} {self.status.value}: {self.balance}>"

class Payment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoice.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_method = db.Column(db.String(50), nullable=False)
    transaction_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    reference_number = db.Column(db.String(100), unique=True, nullable=True)

    invoice = db.relationship('Invoice', back_populates='payments')
    student = db.relationship('Student', back_populates='payments')

    def __repr__(self):
        return f"<Payment {self.reference_number}: {self.amount}>"

class StaffSalary(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey('staff.id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text)
    status = db.Column(Enum(SalaryStatus), nullable=False, default=SalaryStatus.PENDING)

    staff = db.relationship('Staff', back_populates='salaries')

    def __repr__(self):
        return f"<StaffSalary staff={self.staff_id} {self.amount} ({self.status.value})>"

# --- Teaching ---

class CourseMaterial(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey('staff.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(50), nullable=False, default='document')
    file_url = db.Column(db.String(500), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    course = db.relationship('Course', back_populates='materials')
    uploaded_by = db.relationship('Staff', back_populates='materials')
    views = db.relationship('MaterialView', back_populates='material', lazy='dynamic', cascade="all, delete-orphan")

    def __repr__(self):
        return f"<CourseMaterial {self.title}>"


class MaterialView(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey('course_material.id', ondelete='CASCADE'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    interaction_type = db.Column(db.String(50), nullable=False, default='viewed')  # 'viewed' or 'downloaded'
    viewed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    material = db.relationship('CourseMaterial', back_populates='views')
    student = db.relationship('Student')

    def __repr__(self):
        return f"<MaterialView material={self.material_id} student={self.student_id} {self.interaction_type}>"

class Assignment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey('staff.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    file_url = db.Column(db.String(500))
    due_date = db.Column(db.DateTime, nullable=False)
    assigned_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    course = db.relationship('Course', back_populates='assignments')
    assigned_by = db.relationship('Staff', back_populates='assignments')
    submissions = db.relationship('AssignmentSubmission', back_populates='assignment', lazy='dynamic', cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Assignment {self.title}>"

class AssignmentSubmission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey('assignment.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    file_url = db.Column(db.String(500), nullable=False)
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    remarks = db.Column(db.Text)
    grade = db.Column(db.Numeric(5, 2))

    assignment = db.relationship('Assignment', back_populates='submissions')
    student = db.relationship('Student', back_populates='submissions')

    def __repr__(self):
        return f"<AssignmentSubmission assignment={self.assignment_id} student={self.student_id}>"
