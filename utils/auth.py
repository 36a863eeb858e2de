# utils/auth.py
# Role names, the permission check used by every action, and the route guard.

from functools import wraps
from flask import abort
from flask_login import current_user

from models import db, Role
from utils.errors import UnauthorizedError, ForbiddenError, NotFoundError

# --- Roles ---

ADMIN = 'Admin'
REGISTRAR = 'Registrar'
HOD = 'HOD'
ACCOUNTANT = 'Accountant'
LECTURER = 'Lecturer'
STAFF = 'Staff'
STUDENT = 'Student'

ALL_ROLES = [ADMIN, REGISTRAR, HOD, ACCOUNTANT, LECTURER, STAFF, STUDENT]
STAFF_ROLES = [ADMIN, REGISTRAR, HOD, ACCOUNTANT, LECTURER, STAFF]


def _normalise(role_name):
    return (role_name or '').strip().lower()


def get_auth_user():
    """Returns the logged-in user, or None outside an authenticated request."""
    if current_user and current_user.is_authenticated:
        return current_user
    return None


def check_auth_and_permissions(allowed_roles):
    user = get_auth_user()
    if not user:
        raise UnauthorizedError("Unauthorized: You must be logged in to perform this action.")
    if _normalise(user.role_name) not in {_normalise(r) for r in allowed_roles}:
        raise ForbiddenError(f"Forbidden: Your role ({user.role_name}) does not have permission to perform this action.")
    return user


def has_role(user, *roles):
    return user is not None and _normalise(user.role_name) in {_normalise(r) for r in roles}


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated or not has_role(current_user, *roles):
                abort(403)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def resolve_role(role_id=None, role_name=None):
    """Looks a role up by id, falling back to a case-insensitive name match."""
    role = None
    if role_id:
        role = db.session.get(Role, int(role_id))
    elif role_name:
        role = Role.query.filter(db.func.lower(Role.name) == _normalise(role_name)).first()
    if not role:
        raise NotFoundError("Role not found")
    return role


def get_staff_profile(user):
    if not user or not user.staff_profile:
        raise NotFoundError("Staff record not found")
    return user.staff_profile


def get_student_profile(user):
    if not user or not user.student_profile:
        raise NotFoundError("Student not found")
    return user.student_profile
