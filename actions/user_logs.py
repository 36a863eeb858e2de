# actions/user_logs.py
# Read-only access to the audit trail for administrators.

from datetime import datetime, time, timedelta, date

from models import db, UserLog, User, LogAction
from utils.auth import check_auth_and_permissions, ADMIN
from utils.errors import ActionError, NotFoundError
from utils.helpers import clean, to_int, parse_date, iso

VIEW_ROLES = [ADMIN]


def _to_dict(log):
    return {
        "id": log.id,
        "action": log.action,
        "target_table": log.target_table,
        "target_id": log.target_id,
        "description": log.description,
        "timestamp": iso(log.timestamp),
        "user": {"id": log.user.id, "email": log.user.email, "role": log.user.role_name} if log.user else None,
    }


def _action(value):
    try:
        return LogAction(str(value).lower()).value
    except ValueError:
        raise ActionError(f"Invalid log action: {value}")


def get_all(user_id=None, action=None, target_table=None, date_from=None, date_to=None, limit=None):
    check_auth_and_permissions(VIEW_ROLES)
    query = UserLog.query
    if user_id: query = query.filter(UserLog.user_id == to_int(user_id, 'user'))
    if clean(action): query = query.filter(UserLog.action == _action(action))
    if clean(target_table): query = query.filter(UserLog.target_table == clean(target_table))
    start = parse_date(date_from, 'from date')
    end = parse_date(date_to, 'to date')
    if start: query = query.filter(UserLog.timestamp >= datetime.combine(start, time.min))
    # Inclusive of the whole end day
    if end: query = query.filter(UserLog.timestamp < datetime.combine(end + timedelta(days=1), time.min))
    query = query.order_by(UserLog.timestamp.desc(), UserLog.id.desc())
    if limit:
        query = query.limit(to_int(limit, 'limit'))
    return [_to_dict(log) for log in query.all()]


def get_by_user(user_id):
    check_auth_and_permissions(VIEW_ROLES)
    if not db.session.get(User, user_id):
        raise NotFoundError("User not found")
    logs = UserLog.query.filter_by(user_id=user_id).order_by(UserLog.timestamp.desc()).all()
    return [_to_dict(log) for log in logs]


def get_by_id(log_id):
    check_auth_and_permissions(VIEW_ROLES)
    log = db.session.get(UserLog, log_id)
    if not log:
        raise NotFoundError("Log entry not found")
    return _to_dict(log)


def get_summary():
    check_auth_and_permissions(VIEW_ROLES)
    per_action = dict(db.session.query(UserLog.action, db.func.count(UserLog.id)).group_by(UserLog.action).all())
    today_start = datetime.combine(date.today(), time.min)
    return {
        "total": UserLog.query.count(),
        "by_action": {a.value: per_action.get(a.value, 0) for a in LogAction},
        "today": UserLog.query.filter(UserLog.timestamp >= today_start).count(),
    }
