# forms.py
# WTForms used by the HTML pages. Actions re-validate everything they receive.

from datetime import date

from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed
from wtforms import StringField, PasswordField, SubmitField, SelectField, IntegerField, DecimalField, TextAreaField
from wtforms.fields import DateField, DateTimeLocalField, FileField
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional

from models import Department, Program, Semester, Staff, Student, Course, Enrollment, Invoice, FeeStructure, Role
from actions.payments import PAYMENT_METHODS
from actions.materials import MATERIAL_TYPES

NONE_CHOICE = (0, '-- None --')
DOCUMENT_TYPES = ['pdf', 'png', 'jpg', 'jpeg', 'doc', 'docx']


def _choices(query, label, blank=False):
    choices = [(row.id, label(row)) for row in query.all()]
    return [NONE_CHOICE] + choices if blank else choices


class EntityForm(FlaskForm):
    """Base for the admin CRUD forms; subclasses fill their select boxes in load_choices()."""

    def load_choices(self):
        pass

    def to_data(self):
        data = {}
        for name, field in self._fields.items():
            if name in ('csrf_token', 'submit') or isinstance(field, FileField):
                continue
            value = field.data
            # 0 is the "-- None --" option of optional selects
            if isinstance(field, SelectField) and field.coerce is int and value == 0:
                value = None
            data[name] = value
        return data


# --- Auth ---

class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])
    submit = SubmitField('Login')


# --- Academic structure ---

class DepartmentForm(EntityForm):
    name = StringField('Department Name', validators=[DataRequired(), Length(min=2, max=150)])
    head_of_department_id = SelectField('Head of Department', coerce=int, validators=[Optional()])
    submit = SubmitField('Save Department')

    def __init__(self, *args, obj=None, **kwargs):
        super().__init__(*args, obj=obj, **kwargs)
        self._department_id = obj.id if obj is not None else None
        # A new department has no members yet, so nobody can head it
        if obj is None:
            del self.head_of_department_id

    def load_choices(self):
        if 'head_of_department_id' in self._fields:
            members = Staff.query.filter_by(department_id=self._department_id).order_by(Staff.last_name)
            self.head_of_department_id.choices = _choices(members, lambda s: s.full_name, blank=True)


class ProgramForm(EntityForm):
    name = StringField('Program Name', validators=[DataRequired(), Length(min=2, max=150)])
    code = StringField('Program Code', validators=[DataRequired(), Length(min=2, max=20)])
    department_id = SelectField('Department', coerce=int, validators=[DataRequired()])
    duration_semesters = IntegerField('Duration (semesters)', default=8, validators=[Optional(), NumberRange(min=1, max=20)])
    submit = SubmitField('Save Program')

    def load_choices(self):
        self.department_id.choices = _choices(Department.query.order_by(Department.name), lambda d: d.name)


class SemesterForm(EntityForm):
    name = StringField('Semester Name', validators=[DataRequired(), Length(min=2, max=100)])
    start_date = DateField('Start Date', validators=[DataRequired()])
    end_date = DateField('End Date', validators=[DataRequired()])
    submit = SubmitField('Save Semester')


class CourseForm(EntityForm):
    name = StringField('Course Name', validators=[DataRequired(), Length(min=2, max=150)])
    code = StringField('Course Code', validators=[DataRequired(), Length(min=2, max=20)])
    program_id = SelectField('Program', coerce=int, validators=[DataRequired()])
    semester_id = SelectField('Semester', coerce=int, validators=[DataRequired()])
    lecturer_id = SelectField('Lecturer', coerce=int, validators=[Optional()])
    credits = DecimalField('Credits', default=3, places=2, validators=[Optional(), NumberRange(min=0)])
    description = TextAreaField('Description', validators=[Optional()])
    submit = SubmitField('Save Course')

    def load_choices(self):
        self.program_id.choices = _choices(Program.query.order_by(Program.code), lambda p: f"{p.code} - {p.name}")
        self.semester_id.choices = _choices(Semester.query.order_by(Semester.start_date.desc()), lambda s: s.name)
        self.lecturer_id.choices = _choices(Staff.query.order_by(Staff.last_name), lambda s: s.full_name, blank=True)


# --- People ---

class StaffForm(EntityForm):
    first_name = StringField('First Name', validators=[DataRequired(), Length(max=100)])
    last_name = StringField('Last Name', validators=[DataRequired(), Length(max=100)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    id_number = StringField('ID Number', validators=[Optional(), Length(max=50)])
    position = StringField('Position', validators=[DataRequired(), Length(max=100)])
    department_id = SelectField('Department', coerce=int, validators=[Optional()])
    role_id = SelectField('Role', coerce=int, validators=[Optional()])
    password = PasswordField('Initial Password', validators=[Optional(), Length(min=6)])
    submit = SubmitField('Save Staff Member')

    def load_choices(self):
        self.department_id.choices = _choices(Department.query.order_by(Department.name), lambda d: d.name, blank=True)
        self.role_id.choices = _choices(Role.query.filter(Role.name != 'Student').order_by(Role.name), lambda r: r.name, blank=True)


class StudentForm(EntityForm):
    first_name = StringField('First Name', validators=[DataRequired(), Length(max=100)])
    last_name = StringField('Last Name', validators=[DataRequired(), Length(max=100)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    registration_number = StringField('Registration Number', validators=[DataRequired(), Length(max=50)])
    student_number = StringField('Student Number', validators=[DataRequired(), Length(max=50)])
    program_id = SelectField('Program', coerce=int, validators=[Optional()])
    current_semester_id = SelectField('Current Semester', coerce=int, validators=[Optional()])
    password = PasswordField('Initial Password', validators=[Optional(), Length(min=6)])
    submit = SubmitField('Save Student')

    def load_choices(self):
        self.program_id.choices = _choices(Program.query.order_by(Program.code), lambda p: f"{p.code} - {p.name}", blank=True)
        self.current_semester_id.choices = _choices(Semester.query.order_by(Semester.start_date.desc()), lambda s: s.name, blank=True)


class EnrollmentForm(EntityForm):
    student_id = SelectField('Student', coerce=int, validators=[DataRequired()])
    course_id = SelectField('Course', coerce=int, validators=[DataRequired()])
    semester_id = SelectField('Semester', coerce=int, validators=[Optional()])
    enrollment_date = DateField('Enrollment Date', default=date.today, validators=[Optional()])
    submit = SubmitField('Save Enrollment')

    def load_choices(self):
        self.student_id.choices = _choices(Student.query.order_by(Student.last_name), lambda s: f"{s.registration_number} - {s.full_name}")
        self.course_id.choices = _choices(Course.query.order_by(Course.code), lambda c: f"{c.code} - {c.name}")
        self.semester_id.choices = _choices(Semester.query.order_by(Semester.start_date.desc()), lambda s: s.name, blank=True)


class GradeForm(EntityForm):
    enrollment_id = SelectField('Enrollment', coerce=int, validators=[DataRequired()])
    cat_score = DecimalField('CAT Score (0-100)', places=2, validators=[DataRequired(), NumberRange(min=0, max=100)])
    exam_score = DecimalField('Exam Score (0-100)', places=2, validators=[DataRequired(), NumberRange(min=0, max=100)])
    submit = SubmitField('Save Grade')

    def load_choices(self):
        enrollments = Enrollment.query.join(Student).join(Course).order_by(Course.code, Student.last_name)
        self.enrollment_id.choices = _choices(enrollments, lambda e: f"{e.course.code} - {e.student.full_name}")


# --- Finance ---

class FeeStructureForm(EntityForm):
    program_id = SelectField('Program', coerce=int, validators=[DataRequired()])
    semester_id = SelectField('Semester', coerce=int, validators=[DataRequired()])
    total_amount = DecimalField('Total Amount', places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    description = TextAreaField('Description', validators=[Optional()])
    submit = SubmitField('Save Fee Structure')

    def load_choices(self):
        self.program_id.choices = _choices(Program.query.order_by(Program.code), lambda p: f"{p.code} - {p.name}")
        self.semester_id.choices = _choices(Semester.query.order_by(Semester.start_date.desc()), lambda s: s.name)


class InvoiceForm(EntityForm):
    student_id = SelectField('Student', coerce=int, validators=[DataRequired()])
    semester_id = SelectField('Semester', coerce=int, validators=[DataRequired()])
    fee_structure_id = SelectField('Fee Structure', coerce=int, validators=[Optional()])
    amount_due = DecimalField('Amount Due (blank = fee structure total)', places=2, validators=[Optional(), NumberRange(min=0.01)])
    due_date = DateField('Due Date', validators=[DataRequired()])
    submit = SubmitField('Save Invoice')

    def load_choices(self):
        self.student_id.choices = _choices(Student.query.order_by(Student.last_name), lambda s: f"{s.registration_number} - {s.full_name}")
        self.semester_id.choices = _choices(Semester.query.order_by(Semester.start_date.desc()), lambda s: s.name)
        self.fee_structure_id.choices = _choices(
            FeeStructure.query.join(Program).order_by(Program.code),
            lambda f: f"{f.program.code} / {f.semester.name} ({f.total_amount:,.2f})", blank=True
        )


class PaymentForm(EntityForm):
    invoice_id = SelectField('Invoice', coerce=int, validators=[DataRequired()])
    amount = DecimalField('Amount', places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    payment_method = SelectField('Method', choices=[(m, m.replace('_', ' ').title()) for m in PAYMENT_METHODS], validators=[DataRequired()])
    reference_number = StringField('Reference Number', validators=[Optional(), Length(max=100)])
    submit = SubmitField('Record Payment')

    def load_choices(self):
        invoices = Invoice.query.join(Student).filter(Invoice.balance > 0).order_by(Student.last_name)
        self.invoice_id.choices = _choices(invoices, lambda i: f"#{i.id} {i.student.full_name} - balance {i.balance:,.2f}")


class SalaryForm(EntityForm):
    staff_id = SelectField('Staff Member', coerce=int, validators=[DataRequired()])
    amount = DecimalField('Amount', places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    payment_date = DateField('Payment Date', default=date.today, validators=[DataRequired()])
    # edits are pre-filled from the model, where status is a SalaryStatus
    status = SelectField('Status', choices=[('pending', 'Pending'), ('paid', 'Paid'), ('cancelled', 'Cancelled')],
                         coerce=lambda v: getattr(v, 'value', v))
    description = TextAreaField('Description', validators=[Optional()])
    submit = SubmitField('Save Salary Record')

    def load_choices(self):
        self.staff_id.choices = _choices(Staff.query.order_by(Staff.last_name), lambda s: f"{s.full_name} ({s.position or '-'})")


# --- Teaching ---

class AssignmentForm(EntityForm):
    course_id = SelectField('Course', coerce=int, validators=[DataRequired()])
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description', validators=[Optional()])
    due_date = DateTimeLocalField('Due Date', format='%Y-%m-%dT%H:%M', validators=[DataRequired()])
    file = FileField('Attachment', validators=[Optional(), FileAllowed(DOCUMENT_TYPES, 'Documents only!')])
    submit = SubmitField('Save Assignment')

    def load_choices(self, staff=None):
        query = Course.query.filter_by(lecturer_id=staff.id) if staff else Course.query
        self.course_id.choices = _choices(query.order_by(Course.code), lambda c: f"{c.code} - {c.name}")


class MaterialForm(EntityForm):
    course_id = SelectField('Course', coerce=int, validators=[DataRequired()])
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    type = SelectField('Type', choices=[(t, t.title()) for t in MATERIAL_TYPES])
    file = FileField('File', validators=[DataRequired(), FileAllowed(DOCUMENT_TYPES + ['pptx', 'mp4'], 'Unsupported file type!')])
    submit = SubmitField('Upload Material')

    def load_choices(self, staff=None):
        query = Course.query.filter_by(lecturer_id=staff.id) if staff else Course.query
        self.course_id.choices = _choices(query.order_by(Course.code), lambda c: f"{c.code} - {c.name}")


class SubmissionForm(FlaskForm):
    file = FileField('Your Work', validators=[DataRequired(), FileAllowed(DOCUMENT_TYPES, 'Documents only!')])
    submit = SubmitField('Submit')


class SubmissionGradeForm(FlaskForm):
    grade = DecimalField('Grade (0-100)', places=2, validators=[DataRequired(), NumberRange(min=0, max=100)])
    remarks = TextAreaField('Remarks', validators=[Optional()])
    submit = SubmitField('Save Grade')


# --- Uploads ---

class DocumentUploadForm(FlaskForm):
    file = FileField('Document', validators=[DataRequired(), FileAllowed(DOCUMENT_TYPES, 'Documents and images only!')])
    field = SelectField('Document Type')
    submit = SubmitField('Upload Document')


class StudentUploadForm(FlaskForm):
    student_file = FileField('Students Excel File', validators=[DataRequired(), FileAllowed(['xlsx'], 'Excel files only!')])
    submit_students = SubmitField('Upload Students')
