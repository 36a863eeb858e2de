# utils/audit.py
# Append-only audit trail: who changed which row, and who generated which document.

import logging
from flask import request, has_request_context

from models import db, UserLog, DocumentLog, LogAction
from utils.auth import get_auth_user

logger = logging.getLogger(__name__)


def log_action(action, target_table, target_id, description=None):
    """
    Queues a user_log row on the current session.

    The row is committed together with the change it describes, so a
    rolled-back mutation leaves no audit entry behind.
    """
    if isinstance(action, LogAction):
        action = action.value
    user = get_auth_user()
    entry = UserLog(
        user_id=user.id if user else None,
        action=action,
        target_table=target_table,
        target_id=str(target_id) if target_id is not None else None,
        description=description
    )
    db.session.add(entry)
    logger.info(f"{action} {target_table}#{target_id} by user {entry.user_id}: {description}")
    return entry


def log_document(document_type, target_id=None):
    """Records a generated or viewed document and commits it straight away."""
    user = get_auth_user()
    ip_address, user_agent = None, None
    if has_request_context():
        ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
        user_agent = (request.headers.get('User-Agent') or '')[:255] or None
    entry = DocumentLog(
        user_id=user.id if user else None,
        document_type=document_type,
        target_id=str(target_id) if target_id is not None else None,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.session.add(entry)
    db.session.commit()
    return entry
