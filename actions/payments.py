# actions/payments.py
# Fee payments against invoices. Every write re-derives the invoice totals.

from decimal import Decimal

from models import db, Payment, Invoice, LogAction
from actions.invoices import recalculate
from utils.auth import check_auth_and_permissions, has_role, ADMIN, ACCOUNTANT, REGISTRAR, STUDENT
from utils.audit import log_action
from utils.errors import ActionError, NotFoundError, ForbiddenError
from utils.helpers import clean, to_int, to_decimal, parse_datetime, iso, money, require, transaction

MANAGE_ROLES = [ADMIN, ACCOUNTANT]
VIEW_ROLES = [ADMIN, ACCOUNTANT, REGISTRAR]
STUDENT_VIEW_ROLES = VIEW_ROLES + [STUDENT]

PAYMENT_METHODS = ['cash', 'bank_transfer', 'mpesa', 'card', 'cheque']


def _to_dict(payment):
    return {
        "id": payment.id,
        "amount": money(payment.amount),
        "payment_method": payment.payment_method,
        "transaction_date": iso(payment.transaction_date),
        "reference_number": payment.reference_number,
        "student": {
            "id": payment.student.id,
            "name": payment.student.full_name,
            "registration_number": payment.student.registration_number,
        },
        "invoice": {
            "id": payment.invoice.id,
            "amount_due": money(payment.invoice.amount_due),
            "balance": money(payment.invoice.balance),
            "status": payment.invoice.status.value,
            "semester": payment.invoice.semester.name,
        },
    }


def _get_or_404(payment_id):
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def _amount(value):
    amount = to_decimal(value, 'amount')
    if amount is None or amount <= 0:
        raise ActionError("Payment amount must be greater than zero")
    return amount


def _method(value):
    method = (clean(value) or '').lower().replace(' ', '_')
    if method not in PAYMENT_METHODS:
        raise ActionError(f"Invalid payment method. Choose one of: {', '.join(PAYMENT_METHODS)}")
    return method


def _check_reference(reference_number, exclude_id=None):
    if not reference_number:
        return
    query = Payment.query.filter_by(reference_number=reference_number)
    if exclude_id:
        query = query.filter(Payment.id != exclude_id)
    if query.first():
        raise ActionError("A payment with this reference number already exists")


def _check_student_access(user, student_id):
    if has_role(user, STUDENT) and (not user.student_profile or user.student_profile.id != student_id):
        raise ForbiddenError("Forbidden: Students may only view their own payments.")


def _ordered(query):
    return query.order_by(Payment.transaction_date.desc(), Payment.id.desc())


# --- Queries ---

def get_all():
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(p) for p in _ordered(Payment.query).all()]


def get_by_student(student_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    _check_student_access(user, student_id)
    return [_to_dict(p) for p in _ordered(Payment.query.filter_by(student_id=student_id)).all()]


def get_by_invoice(invoice_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    _check_student_access(user, invoice.student_id)
    return [_to_dict(p) for p in _ordered(Payment.query.filter_by(invoice_id=invoice_id)).all()]


def get_by_id(payment_id):
    user = check_auth_and_permissions(STUDENT_VIEW_ROLES)
    payment = _get_or_404(payment_id)
    _check_student_access(user, payment.student_id)
    return _to_dict(payment)


def get_recent(limit=10):
    check_auth_and_permissions(VIEW_ROLES)
    return [_to_dict(p) for p in _ordered(Payment.query).limit(limit).all()]


def get_summary():
    check_auth_and_permissions(VIEW_ROLES)
    count, total = db.session.query(db.func.count(Payment.id), db.func.coalesce(db.func.sum(Payment.amount), 0)).one()
    by_method = db.session.query(Payment.payment_method, db.func.sum(Payment.amount)).group_by(Payment.payment_method).all()
    return {
        "total_payments": count,
        "total_revenue": money(total),
        "by_method": {method: money(amount) for method, amount in by_method},
    }


# --- Mutations ---

def record(data):
    """Records a payment and updates its invoice in the same transaction."""
    check_auth_and_permissions(MANAGE_ROLES)
    require(data, 'invoice_id', 'amount', 'payment_method', message="Invoice, amount, and payment method are required")
    invoice = db.session.get(Invoice, to_int(data['invoice_id'], 'invoice'))
    if not invoice:
        raise NotFoundError("Invoice not found")
    amount = _amount(data['amount'])
    if amount > Decimal(str(invoice.balance)):
        raise ActionError(f"Payment amount exceeds the outstanding balance of {money(invoice.balance):.2f}")
    method = _method(data['payment_method'])
    reference_number = clean(data.get('reference_number'))
    _check_reference(reference_number)

    with transaction("Failed to record payment"):
        payment = Payment(
            invoice_id=invoice.id, student_id=invoice.student_id, amount=amount,
            payment_method=method, reference_number=reference_number
        )
        transaction_date = parse_datetime(data.get('transaction_date'), 'transaction date')
        if transaction_date:
            payment.transaction_date = transaction_date
        db.session.add(payment)
        recalculate(invoice)
        log_action(LogAction.CREATE, Payment.__tablename__, payment.id,
                   f"Recorded {method} payment of {amount} on invoice {invoice.id}")
    return _to_dict(payment)


def update(payment_id, data):
    check_auth_and_permissions(MANAGE_ROLES)
    payment = _get_or_404(payment_id)
    invoice = payment.invoice
    amount = _amount(data['amount']) if clean(data.get('amount')) is not None else None
    if amount is not None:
        # The balance already accounts for this payment's current amount
        available = Decimal(str(invoice.balance)) + Decimal(str(payment.amount))
        if amount > available:
            raise ActionError(f"Payment amount exceeds the outstanding balance of {money(available):.2f}")
    method = _method(data['payment_method']) if clean(data.get('payment_method')) else None
    reference_number = clean(data.get('reference_number'))
    _check_reference(reference_number, exclude_id=payment.id)
    transaction_date = parse_datetime(data.get('transaction_date'), 'transaction date')

    with transaction("Failed to update payment"):
        if amount is not None: payment.amount = amount
        if method: payment.payment_method = method
        if reference_number: payment.reference_number = reference_number
        if transaction_date: payment.transaction_date = transaction_date
        recalculate(invoice)
        log_action(LogAction.UPDATE, Payment.__tablename__, payment.id, f"Updated payment {payment.id}")
    return _to_dict(payment)


def delete(payment_id):
    check_auth_and_permissions(MANAGE_ROLES)
    payment = _get_or_404(payment_id)
    invoice = payment.invoice
    with transaction("Failed to delete payment"):
        db.session.delete(payment)
        recalculate(invoice)
        log_action(LogAction.DELETE, Payment.__tablename__, payment_id, f"Deleted payment {payment_id} on invoice {invoice.id}")
    return {"success": True}
