# app.py
# Main Flask application file for the Campus Admin system.

import os
import logging

from flask import (
    Flask, render_template, redirect, url_for, flash, request,
    abort, jsonify, Response
)
from flask_login import (
    LoginManager, login_user, logout_user,
    current_user, login_required
)
from flask_wtf.csrf import CSRFProtect

from config import get_config
from models import (
    db, User, Department, Program, Semester, Course, Staff, Student, Enrollment, Grade,
    FeeStructure, Invoice, Payment, StaffSalary
)
from forms import (
    LoginForm, DepartmentForm, ProgramForm, SemesterForm, CourseForm, StaffForm, StudentForm,
    EnrollmentForm, GradeForm, FeeStructureForm, InvoiceForm, PaymentForm, SalaryForm,
    AssignmentForm, MaterialForm, SubmissionForm, SubmissionGradeForm, DocumentUploadForm, StudentUploadForm
)
from actions import (
    departments, programs, semesters, courses, staff, students, enrollments, grades,
    fee_structures, invoices, payments, salaries, assignments, materials, files, user_logs
)
# Import utilities
from utils import analytics, pdf_generator
from utils.auth import role_required, has_role, ADMIN, REGISTRAR, STUDENT, STAFF_ROLES
from utils.errors import ActionError
from utils.csv_tools import load_data_from_csv
from utils.bulk_importer import process_student_upload, build_student_template, XLSX_MIMETYPE

# --- APP CONFIGURATION ---

app = Flask(__name__)
app.config.from_object(get_config())

logging.basicConfig(
    level=app.config['LOG_LEVEL'],
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize extensions
db.init_app(app)
csrf = CSRFProtect(app)
login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = 'login'
login_manager.login_message = "You must be logged in to access this page."
login_manager.login_message_category = "danger"

# --- HELPER FUNCTIONS ---

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


def pdf_response(pdf_bytes, filename):
    return Response(pdf_bytes, mimetype="application/pdf",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


@app.template_filter('dig')
def dig(value, path):
    """Looks up a dotted path like 'program.code' in nested dicts."""
    for key in path.split('.'):
        if value is None:
            return None
        value = value.get(key)
    return value


# Each admin CRUD page: actions module, form, model (for pre-filling edits), table columns.
ENTITIES = {
    'departments': {
        'title': 'Departments', 'module': departments, 'form': DepartmentForm, 'model': Department,
        'columns': [('Name', 'name'), ('Head', 'head.name'), ('Staff', 'staff_count'), ('Programs', 'program_count')],
    },
    'programs': {
        'title': 'Programs', 'module': programs, 'form': ProgramForm, 'model': Program,
        'columns': [('Code', 'code'), ('Name', 'name'), ('Department', 'department.name'),
                    ('Semesters', 'duration_semesters'), ('Courses', 'course_count'), ('Students', 'student_count')],
    },
    'semesters': {
        'title': 'Semesters', 'module': semesters, 'form': SemesterForm, 'model': Semester,
        'columns': [('Name', 'name'), ('Start', 'start_date'), ('End', 'end_date'),
                    ('Courses', 'course_count'), ('Students', 'student_count')],
    },
    'courses': {
        'title': 'Courses', 'module': courses, 'form': CourseForm, 'model': Course,
        'columns': [('Code', 'code'), ('Name', 'name'), ('Program', 'program.code'), ('Semester', 'semester.name'),
                    ('Lecturer', 'lecturer.name'), ('Credits', 'credits'), ('Enrolled', 'enrollment_count')],
    },
    'staff': {
        'title': 'Staff', 'module': staff, 'form': StaffForm, 'model': Staff, 'documents': True,
        'columns': [('Name', 'name'), ('Email', 'email'), ('Position', 'position'),
                    ('Department', 'department.name'), ('Role', 'user.role.name')],
    },
    'students': {
        'title': 'Students', 'module': students, 'form': StudentForm, 'model': Student, 'documents': True,
        'columns': [('Reg. Number', 'registration_number'), ('Name', 'name'), ('Email', 'email'),
                    ('Program', 'program.code'), ('Semester', 'current_semester.name')],
    },
    'enrollments': {
        'title': 'Enrollments', 'module': enrollments, 'form': EnrollmentForm, 'model': Enrollment,
        'columns': [('Student', 'student.name'), ('Reg. Number', 'student.registration_number'),
                    ('Course', 'course.code'), ('Semester', 'semester.name'), ('Date', 'enrollment_date'),
                    ('Grade', 'grade.letter_grade')],
    },
    'grades': {
        'title': 'Grades', 'module': grades, 'form': GradeForm, 'model': Grade,
        'columns': [('Student', 'student.name'), ('Course', 'course.code'), ('Semester', 'semester.name'),
                    ('CAT', 'cat_score'), ('Exam', 'exam_score'), ('Total', 'total_score'),
                    ('Grade', 'letter_grade'), ('GPA', 'gpa')],
    },
    'fee_structures': {
        'title': 'Fee Structures', 'module': fee_structures, 'form': FeeStructureForm, 'model': FeeStructure,
        'columns': [('Program', 'program.code'), ('Semester', 'semester.name'), ('Amount', 'total_amount'),
                    ('Description', 'description'), ('Invoices', 'invoice_count')],
    },
    'invoices': {
        'title': 'Invoices', 'module': invoices, 'form': InvoiceForm, 'model': Invoice,
        'columns': [('#', 'id'), ('Student', 'student.name'), ('Semester', 'semester.name'), ('Due', 'due_date'),
                    ('Amount', 'amount_due'), ('Paid', 'amount_paid'), ('Balance', 'balance'), ('Status', 'status')],
    },
    'payments': {
        'title': 'Payments', 'module': payments, 'form': PaymentForm, 'model': Payment, 'create': 'record',
        'receipt': True,
        'columns': [('#', 'id'), ('Date', 'transaction_date'), ('Student', 'student.name'), ('Invoice', 'invoice.id'),
                    ('Method', 'payment_method'), ('Reference', 'reference_number'), ('Amount', 'amount')],
    },
    'salaries': {
        'title': 'Payroll', 'module': salaries, 'form': SalaryForm, 'model': StaffSalary,
        'columns': [('Staff', 'staff.name'), ('Department', 'staff.department'), ('Date', 'payment_date'),
                    ('Amount', 'amount'), ('Status', 'status'), ('Description', 'description')],
    },
}


def get_entity(name):
    entity = ENTITIES.get(name)
    if not entity:
        abort(404)
    if not has_role(current_user, *entity['module'].MANAGE_ROLES):
        abort(403)
    return entity


def build_form(entity, obj=None):
    form = entity['form'](obj=obj)
    form.load_choices()
    return form


# --- DATABASE INITIALIZATION ---

@app.cli.command("init-db")
def init_db_command():
    print("Dropping and recreating database...")
    db.drop_all()
    db.create_all()
    print("Loading data from CSV files...")
    load_data_from_csv()
    print("Database initialized successfully!")


if not app.config.get('TESTING') and app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite:///'):
    db_path = app.config['SQLALCHEMY_DATABASE_URI'][len('sqlite:///'):]
    with app.app_context():
        if db_path != ':memory:' and not os.path.exists(db_path):
            logger.info("Database not found. Creating and initializing...")
            db.create_all()
            load_data_from_csv()

# --- ERROR HANDLERS ---

@app.errorhandler(403)
def forbidden(error): return render_template('errors/403.html'), 403
@app.errorhandler(404)
def not_found(error): return render_template('errors/404.html'), 404
@app.errorhandler(500)
def internal_server(error):
    db.session.rollback()
    return render_template('errors/500.html'), 500

@app.errorhandler(ActionError)
def action_error(error):
    """Uncaught action failures from JSON/PDF endpoints."""
    db.session.rollback()
    return jsonify({"error": error.message}), error.status_code


@app.after_request
def set_response_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    if response.mimetype in ('text/html', 'application/json'):
        # Pages always show the state after the latest mutation
        response.headers['Cache-Control'] = 'no-store'
    return response

# --- AUTHENTICATION ---

@app.route('/')
def index():
    if current_user.is_authenticated: return redirect(url_for('dashboard'))
    return redirect(url_for('login'))

@app.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated: return redirect(url_for('dashboard'))
    form = LoginForm()
    if form.validate_on_submit():
        user = User.query.filter(db.func.lower(User.email) == form.email.data.strip().lower()).first()
        if user and user.check_password(form.password.data):
            login_user(user, remember=True)
            logger.info(f"User {user.id} logged in")
            flash(f'Welcome back, {user.email}!', 'success')
            return redirect(url_for('dashboard'))
        logger.warning(f"Failed login for {form.email.data}")
        flash('Invalid email or password.', 'danger')
    return render_template('login.html', form=form)

@app.route('/api/login', methods=['POST'])
@csrf.exempt
def api_login():
    payload = request.get_json(silent=True) or {}
    user = User.query.filter(db.func.lower(User.email) == (payload.get('email') or '').strip().lower()).first()
    if not user or not user.check_password(payload.get('password') or ''):
        logger.warning(f"Failed login for {payload.get('email')}")
        return jsonify({"error": "Invalid credentials"}), 401
    login_user(user)
    logger.info(f"User {user.id} logged in")
    return jsonify({"id": user.id, "email": user.email, "role": user.role_name})

@app.route('/logout')
@login_required
def logout():
    logout_user()
    flash('You have been logged out.', 'info')
    return redirect(url_for('login'))

# --- DASHBOARDS ---

@app.route('/dashboard')
@login_required
def dashboard():
    if has_role(current_user, STUDENT): return redirect(url_for('student_dashboard'))
    if not has_role(current_user, *STAFF_ROLES): abort(403)
    stats = analytics.get_dashboard_counts()
    charts = {
        "enrollments": analytics.get_enrollments_per_course(),
        "programs": analytics.get_students_per_program(),
        "grades": analytics.get_grade_distribution(),
    }
    manageable = {name: e['title'] for name, e in ENTITIES.items() if has_role(current_user, *e['module'].MANAGE_ROLES)}
    return render_template('dashboard.html', stats=stats, charts=charts, manageable=manageable)

@app.route('/dashboard/student')
@login_required
@role_required(STUDENT)
def student_dashboard():
    try:
        profile = students.get_own_profile()
        own_grades = grades.get_own_grades()
        gpa = grades.calculate_student_gpa(profile['id'])
        own_invoices = invoices.get_by_student(profile['id'])
        own_payments = payments.get_by_student(profile['id'])
    except ActionError as e:
        flash(e.message, 'danger')
        return render_template('errors/403.html'), 403
    return render_template('student/dashboard.html', profile=profile, grades=own_grades, gpa=gpa,
                           invoices=own_invoices, payments=own_payments)

# --- ADMIN CRUD PAGES ---

@app.route('/manage/<entity_name>', methods=['GET', 'POST'])
@login_required
def manage(entity_name):
    entity = get_entity(entity_name)
    form = build_form(entity)
    if form.validate_on_submit():
        create = getattr(entity['module'], entity.get('create', 'create'))
        try:
            create(form.to_data())
            flash(f"{entity['title']}: record saved successfully!", 'success')
            return redirect(url_for('manage', entity_name=entity_name))
        except ActionError as e:
            flash(e.message, 'danger')
    try:
        items = entity['module'].get_all()
    except ActionError as e:
        flash(e.message, 'danger')
        items = []
    return render_template('admin/manage.html', entity=entity, entity_name=entity_name, form=form, items=items)

@app.route('/manage/<entity_name>/<int:item_id>/edit', methods=['GET', 'POST'])
@login_required
def manage_edit(entity_name, item_id):
    entity = get_entity(entity_name)
    obj = db.session.get(entity['model'], item_id)
    if not obj: abort(404)
    form = build_form(entity, obj=obj)
    if form.validate_on_submit():
        try:
            entity['module'].update(item_id, form.to_data())
            flash(f"{entity['title']}: record updated.", 'success')
            return redirect(url_for('manage', entity_name=entity_name))
        except ActionError as e:
            flash(e.message, 'danger')
    document_form = None
    if entity.get('documents'):
        document_form = DocumentUploadForm()
        document_form.field.choices = [(f, f.replace('_url', '').replace('_', ' ').title()) for f in entity['module'].DOCUMENT_FIELDS]
    return render_template('admin/edit.html', entity=entity, entity_name=entity_name, form=form, item=obj,
                           document_form=document_form)

@app.route('/manage/<entity_name>/<int:item_id>/delete', methods=['POST'])
@login_required
def manage_delete(entity_name, item_id):
    entity = get_entity(entity_name)
    try:
        entity['module'].delete(item_id)
        flash(f"{entity['title']}: record deleted.", 'success')
    except ActionError as e:
        flash(e.message, 'danger')
    return redirect(url_for('manage', entity_name=entity_name))

@app.route('/manage/<entity_name>/<int:item_id>/documents', methods=['POST'])
@login_required
def manage_documents(entity_name, item_id):
    entity = get_entity(entity_name)
    if not entity.get('documents'): abort(404)
    form = DocumentUploadForm()
    form.field.choices = [(f, f) for f in entity['module'].DOCUMENT_FIELDS]
    if form.validate_on_submit():
        try:
            entity['module'].update_documents(item_id, files={form.field.data: form.file.data})
            flash('Document uploaded.', 'success')
        except ActionError as e:
            flash(e.message, 'danger')
    else:
        flash('Please choose a document to upload.', 'warning')
    return redirect(url_for('manage_edit', entity_name=entity_name, item_id=item_id))

@app.route('/manage/invoices/issue/<int:fee_structure_id>', methods=['POST'])
@login_required
def issue_invoices(fee_structure_id):
    get_entity('invoices')
    try:
        count = invoices.issue_for_fee_structure(fee_structure_id, request.form.get('due_date'))
        flash(f"Issued {count} invoice(s).", 'success')
    except ActionError as e:
        flash(e.message, 'danger')
    return redirect(url_for('manage', entity_name='invoices'))

@app.route('/manage/salaries/<int:salary_id>/paid', methods=['POST'])
@login_required
def mark_salary_paid(salary_id):
    get_entity('salaries')
    try:
        salaries.mark_paid(salary_id)
        flash('Salary marked as paid.', 'success')
    except ActionError as e:
        flash(e.message, 'danger')
    return redirect(url_for('manage', entity_name='salaries'))

# --- BULK DATA ROUTES ---

@app.route('/admin/bulk_manage', methods=['GET', 'POST'])
@login_required
@role_required(ADMIN, REGISTRAR)
def admin_bulk_manage():
    student_form = StudentUploadForm()
    report = None
    if student_form.validate_on_submit():
        try:
            report = process_student_upload(student_form.student_file.data)
            flash(f"Student import complete! Added: {report['added']}, Skipped: {report['skipped']}.", "success")
            if report['errors']: flash("Some rows were skipped (see details below).", "warning")
        except ActionError as e:
            flash(f"An error occurred during student import: {e.message}", "danger")
    return render_template('admin/bulk_manage.html', student_form=student_form, report=report)

@app.route('/admin/bulk/download/students_template')
@login_required
@role_required(ADMIN, REGISTRAR)
def download_template():
    return Response(build_student_template(), mimetype=XLSX_MIMETYPE,
                    headers={"Content-Disposition": "attachment;filename=students_template.xlsx"})

@app.route('/admin/logs')
@login_required
@role_required(ADMIN)
def admin_logs():
    filters = {k: request.args.get(k) for k in ('user_id', 'action', 'target_table', 'date_from', 'date_to')}
    try:
        logs = user_logs.get_all(limit=500, **filters)
        summary = user_logs.get_summary()
    except ActionError as e:
        flash(e.message, 'danger')
        logs, summary = [], None
    return render_template('admin/logs.html', logs=logs, summary=summary, filters=filters)

# --- LECTURER PAGES ---

@app.route('/lecturer/assignments', methods=['GET', 'POST'])
@login_required
@role_required(*assignments.LECTURER_ROLES)
def lecturer_assignments():
    form = AssignmentForm()
    form.load_choices(current_user.staff_profile)
    if form.validate_on_submit():
        try:
            assignments.create(form.to_data(), form.file.data)
            flash('Assignment created.', 'success')
            return redirect(url_for('lecturer_assignments'))
        except ActionError as e:
            flash(e.message, 'danger')
    try:
        items = assignments.get_lecturer_assignments()
        stats = assignments.get_submission_statistics()
    except ActionError as e:
        flash(e.message, 'danger')
        items, stats = [], None
    return render_template('lecturer/assignments.html', form=form, assignments=items, stats=stats)

@app.route('/lecturer/assignments/<int:assignment_id>')
@login_required
@role_required(*assignments.LECTURER_ROLES)
def lecturer_assignment_detail(assignment_id):
    try:
        assignment = assignments.get_assignment_with_submissions(assignment_id)
    except ActionError as e:
        flash(e.message, 'danger')
        return redirect(url_for('lecturer_assignments'))
    return render_template('lecturer/assignment_detail.html', assignment=assignment, grade_form=SubmissionGradeForm())

@app.route('/lecturer/assignments/<int:assignment_id>/delete', methods=['POST'])
@login_required
@role_required(*assignments.LECTURER_ROLES)
def lecturer_delete_assignment(assignment_id):
    try:
        assignments.delete(assignment_id)
        flash('Assignment deleted.', 'success')
    except ActionError as e:
        flash(e.message, 'danger')
    return redirect(url_for('lecturer_assignments'))

@app.route('/lecturer/submissions/<int:submission_id>/grade', methods=['POST'])
@login_required
@role_required(*assignments.LECTURER_ROLES)
def lecturer_grade_submission(submission_id):
    form = SubmissionGradeForm()
    if form.validate_on_submit():
        try:
            result = assignments.grade_submission(submission_id, form.grade.data, form.remarks.data)
            flash('Submission graded.', 'success')
            return redirect(url_for('lecturer_assignment_detail', assignment_id=result['assignment_id']))
        except ActionError as e:
            flash(e.message, 'danger')
    else:
        flash('Grade must be a number between 0 and 100.', 'danger')
    return redirect(request.referrer or url_for('lecturer_assignments'))

@app.route('/lecturer/materials', methods=['GET', 'POST'])
@login_required
@role_required(*materials.LECTURER_ROLES)
def lecturer_materials():
    form = MaterialForm()
    form.load_choices(current_user.staff_profile)
    if form.validate_on_submit():
        try:
            materials.upload_material(form.to_data(), form.file.data)
            flash('Material uploaded.', 'success')
            return redirect(url_for('lecturer_materials'))
        except ActionError as e:
            flash(e.message, 'danger')
    try:
        items = materials.get_my_course_materials()
        stats = {s['material_id']: s for s in materials.get_material_view_stats()}
    except ActionError as e:
        flash(e.message, 'danger')
        items, stats = [], {}
    return render_template('lecturer/materials.html', form=form, materials=items, stats=stats)

@app.route('/lecturer/materials/<int:material_id>/delete', methods=['POST'])
@login_required
@role_required(*materials.LECTURER_ROLES)
def lecturer_delete_material(material_id):
    try:
        materials.delete_material(material_id)
        flash('Material deleted.', 'success')
    except ActionError as e:
        flash(e.message, 'danger')
    return redirect(url_for('lecturer_materials'))

# --- STUDENT PAGES ---

@app.route('/student/assignments')
@login_required
@role_required(STUDENT)
def student_assignments():
    try:
        items = assignments.get_student_assignments()
    except ActionError as e:
        flash(e.message, 'danger')
        items = []
    return render_template('student/assignments.html', assignments=items, form=SubmissionForm())

@app.route('/student/assignments/<int:assignment_id>/submit', methods=['POST'])
@login_required
@role_required(STUDENT)
def student_submit_assignment(assignment_id):
    form = SubmissionForm()
    if form.validate_on_submit():
        try:
            assignments.submit(assignment_id, form.file.data)
            flash('Assignment submitted.', 'success')
        except ActionError as e:
            flash(e.message, 'danger')
    else:
        flash('Please attach a document to submit.', 'warning')
    return redirect(url_for('student_assignments'))

@app.route('/student/courses/<int:course_id>/materials')
@login_required
@role_required(STUDENT)
def student_course_materials(course_id):
    return jsonify(materials.get_by_course(course_id))

@app.route('/student/materials/<int:material_id>')
@login_required
@role_required(STUDENT)
def student_open_material(material_id):
    materials.record_view(material_id)
    return redirect(url_for('download_file', item_type='materials', item_id=material_id))

# --- FILES ---

@app.route('/files/<item_type>/<int:item_id>')
@login_required
def download_file(item_type, item_id):
    return redirect(files.get_download_url(item_type, item_id, request.args.get('field')))

# --- PDF REPORTING & ANALYTICS API ---

REPORTS = {
    'students': (pdf_generator.generate_student_list, ('program_id', 'semester_id', 'course_id', 'student_name')),
    'staff': (pdf_generator.generate_staff_list, ('department_id', 'position', 'staff_name')),
    'invoices': (pdf_generator.generate_invoice_list, ('student_name', 'with_balance', 'due_from', 'due_to', 'status')),
    'payments': (pdf_generator.generate_payment_list, ('student_name', 'payment_method', 'date_from', 'date_to')),
    'transcripts': (pdf_generator.generate_transcript, ('program_id', 'course_id', 'student_name')),
    'fee_structures': (pdf_generator.generate_fee_structure_list, ('program_id', 'semester_id')),
}

@app.route('/reports')
@login_required
def reports_index():
    return render_template('reports.html', programs=Program.query.order_by(Program.code).all(),
                           semesters=Semester.query.order_by(Semester.start_date.desc()).all(),
                           departments=Department.query.order_by(Department.name).all())

@app.route('/reports/<report_type>.pdf')
@login_required
def download_report(report_type):
    if report_type not in REPORTS: abort(404)
    generate, params = REPORTS[report_type]
    kwargs = {p: request.args.get(p) for p in params}
    if 'with_balance' in kwargs:
        kwargs['with_balance'] = kwargs['with_balance'] in ('1', 'true', 'on')
    pdf_bytes = generate(**kwargs)
    return pdf_response(pdf_bytes, f"{report_type}_report.pdf")

@app.route('/reports/receipt/<int:payment_id>.pdf')
@login_required
def download_receipt(payment_id):
    return pdf_response(pdf_generator.generate_receipt(payment_id), f"receipt_{payment_id}.pdf")

ANALYTICS = {
    'counts': analytics.get_dashboard_counts,
    'enrollments': analytics.get_enrollments_per_course,
    'programs': analytics.get_students_per_program,
    'grades': analytics.get_grade_distribution,
    'payment_methods': analytics.get_payment_method_breakdown,
    'invoice_status': analytics.get_invoice_status_breakdown,
    'monthly_payroll': salaries.get_monthly_stats,
}

@app.route('/api/analytics/<chart>')
@login_required
def api_analytics(chart):
    if chart not in ANALYTICS: abort(404)
    return jsonify(ANALYTICS[chart]())

# --- RUN APPLICATION ---

if __name__ == '__main__':
    app.run(debug=app.config.get('DEBUG', False))
