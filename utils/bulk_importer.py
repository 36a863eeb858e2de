# utils/bulk_importer.py
# Contains all logic for processing bulk student uploads from Excel.

import io
import logging

import pandas as pd

from models import db, Student, User, Program, Semester, LogAction
from utils.auth import check_auth_and_permissions, resolve_role, ADMIN, REGISTRAR, STUDENT
from utils.audit import log_action
from utils.errors import ActionError
from utils.helpers import transaction

logger = logging.getLogger(__name__)

IMPORT_ROLES = [ADMIN, REGISTRAR]

STUDENT_COLUMNS = ['FirstName', 'LastName', 'Email', 'RegistrationNumber', 'StudentNumber', 'ProgramCode', 'SemesterName']
OPTIONAL_COLUMNS = ['InitialPassword']

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _cell(row, column):
    value = row.get(column)
    if value is None or pd.isna(value):
        return ''
    if isinstance(value, float) and value.is_integer():
        # Excel hands numeric IDs back as floats
        value = int(value)
    return str(value).strip()


def process_student_upload(file_storage):
    """
    Processes an uploaded Excel file to bulk-import students.

    Valid rows are created together in one transaction; invalid rows are
    skipped and reported.

    Returns:
        dict: A report of added, skipped, and error items.
    """
    check_auth_and_permissions(IMPORT_ROLES)
    try:
        df = pd.read_excel(file_storage)
    except Exception as e:
        raise ActionError(f"Could not read Excel file. Error: {e}")

    missing = [col for col in STUDENT_COLUMNS if col not in df.columns]
    if missing:
        raise ActionError(f"Invalid file format. Missing required columns: {missing}")

    existing_emails = {e.lower() for (e,) in db.session.query(User.email)}
    existing_emails |= {e.lower() for (e,) in db.session.query(Student.email)}
    existing_reg_numbers = {r for (r,) in db.session.query(Student.registration_number)}
    existing_student_numbers = {n for (n,) in db.session.query(Student.student_number)}
    programs = {p.code.upper(): p for p in Program.query.all()}
    semesters = {s.name.lower(): s for s in Semester.query.all()}
    role = resolve_role(role_name=STUDENT)

    report = {"added": 0, "skipped": 0, "errors": []}
    pending = []

    for index, row in df.iterrows():
        line = index + 2
        values = {col: _cell(row, col) for col in STUDENT_COLUMNS + OPTIONAL_COLUMNS}

        if not all(values[col] for col in STUDENT_COLUMNS):
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: One or more cells are blank.")
            continue

        email = values['Email'].lower()
        if email in existing_emails:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Email '{email}' is already in use.")
            continue
        if values['RegistrationNumber'] in existing_reg_numbers:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Registration number '{values['RegistrationNumber']}' already exists.")
            continue
        if values['StudentNumber'] in existing_student_numbers:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Student number '{values['StudentNumber']}' already exists.")
            continue

        program = programs.get(values['ProgramCode'].upper())
        if not program:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Unknown program code '{values['ProgramCode']}'.")
            continue
        semester = semesters.get(values['SemesterName'].lower())
        if not semester:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Unknown semester '{values['SemesterName']}'.")
            continue

        password = values['InitialPassword']
        if password and len(password) < 6:
            report["skipped"] += 1
            report["errors"].append(f"Row {line}: Password for '{email}' must be at least 6 characters.")
            continue

        existing_emails.add(email)
        existing_reg_numbers.add(values['RegistrationNumber'])
        existing_student_numbers.add(values['StudentNumber'])
        pending.append((values, email, program, semester, password))

    with transaction("Database error while importing students"):
        for values, email, program, semester, password in pending:
            user = User(email=email, role_id=role.id)
            if password:
                user.set_password(password)
            db.session.add(user)
            db.session.flush()
            student = Student(
                user_id=user.id,
                program_id=program.id,
                department_id=program.department_id,
                current_semester_id=semester.id,
                first_name=values['FirstName'],
                last_name=values['LastName'],
                email=email,
                registration_number=values['RegistrationNumber'],
                student_number=values['StudentNumber']
            )
            db.session.add(student)
            db.session.flush()
            log_action(LogAction.CREATE, Student.__tablename__, student.id,
                       f"Imported student {student.full_name} ({student.registration_number})")
            report["added"] += 1

    logger.info(f"Student import: added {report['added']}, skipped {report['skipped']}")
    return report


def build_student_template():
    """Returns an empty import workbook (bytes) with the expected header row."""
    output = io.BytesIO()
    writer = pd.ExcelWriter(output, engine='xlsxwriter')
    df = pd.DataFrame(columns=STUDENT_COLUMNS + OPTIONAL_COLUMNS)
    df.to_excel(writer, index=False, sheet_name='Students')
    worksheet = writer.sheets['Students']
    worksheet.set_column(0, len(df.columns) - 1, 22)
    writer.close()
    output.seek(0)
    return output.getvalue()
