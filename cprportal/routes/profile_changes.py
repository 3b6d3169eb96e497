from flask import Blueprint, jsonify

from ..app import db
from ..constants import (
    API_PREFIX,
    ROLE_HR,
    ROLE_INSTRUCTOR,
    ROLE_ORGANIZATION,
    ROLE_SYSADMIN,
)
from ..models import User
from ..services import profile_changes
from ..shared.errors import PortalNotFoundError, PortalValidationError
from ..shared.payload import clean_str, json_body, to_int
from ..shared.rbac import role_required

bp = Blueprint("profile_changes", __name__, url_prefix=f"{API_PREFIX}/profile-changes")


def _target_user(payload: dict, current_user: User) -> User:
    raw = payload.get("target_user_id")
    if current_user.role not in (ROLE_HR, ROLE_SYSADMIN):
        if raw not in (None, ""):
            raise PortalValidationError("Only HR may request changes for another user")
        return current_user
    if raw in (None, ""):
        raise PortalValidationError("target_user_id is required")
    target = db.session.get(User, to_int(raw, "target_user_id"))
    if not target:
        raise PortalNotFoundError("User not found")
    return target


@bp.post("")
@role_required(ROLE_INSTRUCTOR, ROLE_ORGANIZATION, ROLE_HR)
def request_change(current_user):
    payload = json_body()
    change = profile_changes.request_change(
        _target_user(payload, current_user),
        clean_str(payload.get("field_name")),
        clean_str(payload.get("new_value")),
        current_user,
    )
    return jsonify({"ok": True, "change": change.to_dict()}), 201


@bp.get("")
@role_required(ROLE_INSTRUCTOR, ROLE_ORGANIZATION, ROLE_HR)
def my_changes(current_user):
    changes = profile_changes.changes_for(current_user.id)
    return jsonify({"ok": True, "changes": [c.to_dict() for c in changes]})
