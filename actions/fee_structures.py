# actions/fee_structures.py
# Per program + semester fee amounts that invoices are issued from.

from sqlalchemy import or_

from models import db, FeeStructure, Program, Semester, LogAction
from utils.auth import check_auth_and_permissions, ADMIN, ACCOUNTANT, REGISTRAR, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, to_decimal, money, require, transaction

MANAGE_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR]
VIEW_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR, STUDENT]


def _to_dict(fee_structure):
    return {
        "id": fee_structure.id,
        "total_amount": money(fee_structure.total_amount),
        "description": fee_structure.description,
        "program": {"id": fee_structure.program.id, "name": fee_structure.program.name, "code": fee_structure.program.code},
        "semester": {"id": fee_structure.semester.id, "name": fee_structure.semester.name},
        "invoice_count": fee_structure.invoices.count(),
    }


def _get_or_404(fee_structure_id):
    fee_structure = db.session.get(FeeStructure, fee_structure_id)
    if not fee_structure:
        raise NotFoundError("Fee structure not found")
    return fee_structure


def _amount(value):
    amount = to_decimal(value, 'amount')
    if amount is None or amount <= 0:
        raise ActionError("Total amount must be greater than zero")
    return amount


def _check_unique(program_id, semester_id, exclude_id=None):
    query = FeeStructure.query.filter_by(program_id=program_id, semester_id=semester_id)
    if exclude_id:
        query = query.filter(FeeStructure.id != exclude_id)
    if query.first():
        raise ActionError("A fee structure already exists for this program and semester")


def _resolve_refs(program_id, semester_id):
    if not db.session.get(Program, program_id):
        raise NotFoundError("Program not found")
    if not db.session.get(Semester, semester_id):
        raise NotFoundError("Semester not found")


def get_all(program_id=None, semester_id=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = FeeStructure.query.join(Program).join(Semester)
    if program_id: query = query.filter(FeeStructure.program_id == program_id)
    if semester_id: query = query.filter(FeeStructure.semester_id == semester_id)
    return [_to_dict(f) for f in query.order_by(Semester.start_date.desc(), Program.name).all()]


def search(query):
    check_auth_and_permissions(VIEW_ROLES)
    term = f"%{(query or '').strip()}%"
    results = FeeStructure.query.join(Program).join(Semester).filter(or_(
        Program.name.ilike(term),
        Program.code.ilike(term),
        Semester.name.ilike(term),
        FeeStructure.description.ilike(term)
    )).order_by(Semester.start_date.desc(), Program.name).all()
    return [_to_dict(f) for f in results]


def get_by_id(fee_structure_id):
    check_auth_and_permissions(VIEW_ROLES)
    return _to_dict(_get_or_404(fee_structure_id))


def create(data):
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'program_id', 'semester_id', 'total_amount', message="Program, semester, and total amount are required")
    program_id = to_int(data['program_id'], 'program')
    semester_id = to_int(data['semester_id'], 'semester')
    amount = _amount(data['total_amount'])
    _resolve_refs(program_id, semester_id)
    _check_unique(program_id, semester_id)

    with transaction("Failed to create fee structure"):
        fee_structure = FeeStructure(program_id=program_id, semester_id=semester_id, total_amount=amount,
                                     description=clean(data.get('description')))
        db.session.add(fee_structure)
        db.session.flush()
        log_action(LogAction.CREATE, FeeStructure.__tablename__, fee_structure.id,
                   f"Created fee structure of {amount} for {fee_structure.program.code} / {fee_structure.semester.name}")
    return _to_dict(fee_structure)


def update(fee_structure_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    fee_structure = _get_or_404(fee_structure_id)
    program_id = to_int(data.get('program_id'), 'program') or fee_structure.program_id
    semester_id = to_int(data.get('semester_id'), 'semester') or fee_structure.semester_id
    amount = _amount(data['total_amount']) if clean(data.get('total_amount')) is not None else None
    _resolve_refs(program_id, semester_id)
    _check_unique(program_id, semester_id, exclude_id=fee_structure.id)

    with transaction("Failed to update fee structure"):
        fee_structure.program_id, fee_structure.semester_id = program_id, semester_id
        if amount is not None: fee_structure.total_amount = amount
        if 'description' in data: fee_structure.description = clean(data['description'])
        log_action(LogAction.UPDATE, FeeStructure.__tablename__, fee_structure.id, "Updated fee structure")
    return _to_dict(fee_structure)


def delete(fee_structure_id):
    check_auth_and_permissions(MANAGE_ROLES)
    fee_structure = _get_or_404(fee_structure_id)
    if fee_structure.invoices.count():
        raise ActionError("Cannot delete fee structure that is referenced by invoices")

    with transaction("Failed to delete fee structure"):
        db.session.delete(fee_structure)
        log_action(LogAction.DELETE, FeeStructure.__tablename__, fee_structure_id, "Deleted fee structure")
    return {"success": True}
