from functools import wraps

from flask import abort, session

from ..app import db
from ..constants import ROLE_ORGANIZATION, ROLE_SYSADMIN, ROLE_VENDOR
from ..models import User


def session_user() -> User | None:
    user_id = session.get("user_id")
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = session_user()
        if not user:
            abort(401, description="Authentication required")
        return fn(*args, **kwargs, current_user=user)

    return wrapper


def role_required(*roles: str):
    """Allow users holding one of ``roles``; sysadmin passes every check."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = session_user()
            if not user:
                abort(401, description="Authentication required")
            if user.role != ROLE_SYSADMIN and user.role not in roles:
                abort(403, description="Insufficient permissions")
            return fn(*args, **kwargs, current_user=user)

        return wrapper

    return decorator


def sysadmin_required(fn):
    return role_required(ROLE_SYSADMIN)(fn)


def organization_member_required(fn):
    """Organization users only, with the organization id injected."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = session_user()
        if not user:
            abort(401, description="Authentication required")
        if user.role not in (ROLE_ORGANIZATION, ROLE_SYSADMIN):
            abort(403, description="Insufficient permissions")
        if not user.organization_id:
            abort(403, description="No organization linked to this account")
        return fn(
            *args, **kwargs, current_user=user, org_id=user.organization_id
        )

    return wrapper


def vendor_member_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = session_user()
        if not user:
            abort(401, description="Authentication required")
        if user.role not in (ROLE_VENDOR, ROLE_SYSADMIN):
            abort(403, description="Insufficient permissions")
        if not user.vendor_id:
            abort(403, description="No vendor linked to this account")
        return fn(*args, **kwargs, current_user=user, vendor_id=user.vendor_id)

    return wrapper
