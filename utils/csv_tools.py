# utils/csv_tools.py
# Utility to load demo data from CSVs into a freshly created database.

import os
import logging
from datetime import datetime

import pandas as pd

from models import db, Role, User, Department, Program, Semester, Course, Staff, Student, FeeStructure
from utils.auth import ALL_ROLES

logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.path.abspath(os.path.dirname(os.path.dirname(__file__))), 'data')


def _read(name, data_dir):
    return pd.read_csv(os.path.join(data_dir, name), dtype=str).fillna('')


def _date(value):
    return datetime.strptime(value, '%Y-%m-%d').date()


def seed_roles():
    """Creates any missing role rows. Safe to call repeatedly."""
    existing = {r.name for r in Role.query.all()}
    for name in ALL_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()
    return {r.name: r for r in Role.query.all()}


def load_data_from_csv(data_dir=DATA_DIR):
    """Loads all demo data from CSV files into the database."""
    try:
        roles = seed_roles()
        logger.info("Roles loaded.")

        # 1. Departments
        for _, row in _read('departments.csv', data_dir).iterrows():
            db.session.add(Department(name=row['name']))
        db.session.commit()
        departments = {d.name: d for d in Department.query.all()}
        logger.info("Departments loaded.")

        # 2. Programs
        for _, row in _read('programs.csv', data_dir).iterrows():
            department = departments.get(row['department'])
            if not department:
                logger.warning(f"Skipping program {row['code']} - department {row['department']} not found.")
                continue
            db.session.add(Program(
                department_id=department.id,
                name=row['name'],
                code=row['code'].upper(),
                duration_semesters=int(row['duration_semesters'] or 8)
            ))
        db.session.commit()
        programs = {p.code: p for p in Program.query.all()}
        logger.info("Programs loaded.")

        # 3. Semesters
        for _, row in _read('semesters.csv', data_dir).iterrows():
            db.session.add(Semester(name=row['name'], start_date=_date(row['start_date']), end_date=_date(row['end_date'])))
        db.session.commit()
        semesters = {s.name: s for s in Semester.query.all()}
        logger.info("Semesters loaded.")

        # 4. Users (and their profiles)
        for _, row in _read('users.csv', data_dir).iterrows():
            role = roles.get(row['role'])
            if not role:
                logger.warning(f"Skipping user {row['email']} - unknown role {row['role']}.")
                continue
            user = User(email=row['email'].lower(), role_id=role.id)
            user.set_password(row['password'])
            db.session.add(user)
            db.session.flush()

            if row['role'] == 'Student':
                program = programs.get(row['program_code'])
                semester = semesters.get(row['semester'])
                db.session.add(Student(
                    user_id=user.id,
                    program_id=program.id if program else None,
                    department_id=program.department_id if program else None,
                    current_semester_id=semester.id if semester else None,
                    first_name=row['first_name'],
                    last_name=row['last_name'],
                    email=user.email,
                    registration_number=row['registration_number'],
                    student_number=row['student_number']
                ))
            elif row['first_name']:
                department = departments.get(row['department'])
                db.session.add(Staff(
                    user_id=user.id,
                    department_id=department.id if department else None,
                    first_name=row['first_name'],
                    last_name=row['last_name'],
                    email=user.email,
                    id_number=row['id_number'] or None,
                    position=row['position'] or row['role']
                ))
        db.session.commit()
        logger.info("Users, Staff, and Students loaded.")

        lecturers = {s.email: s for s in Staff.query.all()}

        # 5. Courses
        for _, row in _read('courses.csv', data_dir).iterrows():
            program = programs.get(row['program_code'])
            semester = semesters.get(row['semester'])
            if not program or not semester:
                logger.warning(f"Skipping course {row['code']} - missing program or semester.")
                continue
            lecturer = lecturers.get(row['lecturer_email'])
            db.session.add(Course(
                program_id=program.id,
                semester_id=semester.id,
                lecturer_id=lecturer.id if lecturer else None,
                name=row['name'],
                code=row['code'],
                credits=row['credits'] or 3
            ))
        db.session.commit()
        logger.info("Courses loaded.")

        # 6. Fee structures
        for _, row in _read('fee_structures.csv', data_dir).iterrows():
            program = programs.get(row['program_code'])
            semester = semesters.get(row['semester'])
            if program and semester:
                db.session.add(FeeStructure(
                    program_id=program.id,
                    semester_id=semester.id,
                    total_amount=row['total_amount'],
                    description=row['description'] or None
                ))
        db.session.commit()
        logger.info("Fee structures loaded.")

        # 7. Heads of department
        for _, row in _read('departments.csv', data_dir).iterrows():
            head = lecturers.get(row['head_email'])
            if head and head.department_id == departments[row['name']].id:
                departments[row['name']].head_of_department_id = head.id
        db.session.commit()
        logger.info("--- Demo Data Load Complete ---")

    except Exception as e:
        db.session.rollback()
        logger.error(f"An error occurred during data loading: {e}")
        raise
