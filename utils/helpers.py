# utils/helpers.py
# Small input-coercion helpers shared by the action modules.

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError

from models import db
from utils.errors import ActionError

logger = logging.getLogger(__name__)


def clean(value):
    """Strips strings and turns blanks into None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def require(data, *fields, message=None):
    missing = [f for f in fields if clean(data.get(f)) is None]
    if missing:
        raise ActionError(message or f"Missing required fields: {', '.join(missing)}")


def to_decimal(value, field='amount'):
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        raise ActionError(f"Invalid {field}: {value}")


def to_int(value, field='id'):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ActionError(f"Invalid {field}: {value}")


def parse_date(value, field='date'):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ActionError(f"Invalid {field}: {value}")


def parse_datetime(value, field='date'):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ActionError(f"Invalid {field}: {value}")


def money(value):
    return float(value) if value is not None else 0.0


def iso(value):
    return value.isoformat() if value is not None else None


@contextmanager
def transaction(failure_message):
    """
    Commits everything queued inside the block in one go.

    A database error rolls the whole block back and surfaces as an
    ActionError. Any other exception rolls back and propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except ActionError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"{failure_message}: {e}")
        raise ActionError(f"{failure_message}.")
    except Exception:
        db.session.rollback()
        raise
