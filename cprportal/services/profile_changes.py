"""Profile change requests held for HR review before touching the user row."""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..app import db
from ..constants import PROFILE_CHANGE_FIELDS, ROLE_INSTRUCTOR, ROLE_ORGANIZATION
from ..models import ProfileChange, User
from ..shared.errors import (
    PortalConflictError,
    PortalNotFoundError,
    PortalValidationError,
)
from ..shared.mail_utils import normalize_email
from ..shared.time import now_utc

CHANGE_TYPES = {ROLE_INSTRUCTOR: "instructor", ROLE_ORGANIZATION: "organization"}


class ProfileChangeValidationError(PortalValidationError):
    """Raised when a profile change request is malformed or already settled."""


def _checked_email(value: str, user: User) -> str:
    email = normalize_email(value)
    if not email:
        raise ProfileChangeValidationError("new_value must be a valid email address")
    clash = (
        db.session.query(User.id)
        .filter(func.lower(User.email) == email, User.id != user.id)
        .first()
    )
    if clash:
        raise PortalConflictError("Email address already exists")
    return email


def request_change(target: User, field: str | None, new_value: str | None, requested_by: User) -> ProfileChange:
    change_type = CHANGE_TYPES.get(target.role)
    if not change_type:
        raise ProfileChangeValidationError(
            "Profile changes apply to instructor and organization accounts only"
        )
    if field not in PROFILE_CHANGE_FIELDS:
        raise ProfileChangeValidationError(
            f"field_name must be one of: {', '.join(PROFILE_CHANGE_FIELDS)}"
        )
    if not new_value:
        raise ProfileChangeValidationError("new_value is required")
    if field == "email":
        new_value = _checked_email(new_value, target)
    pending = (
        db.session.query(ProfileChange.id)
        .filter_by(user_id=target.id, field_name=field, status="pending")
        .first()
    )
    if pending:
        raise PortalConflictError("A change for this field is already pending")
    change = ProfileChange(
        user_id=target.id,
        change_type=change_type,
        field_name=field,
        old_value=getattr(target, field),
        new_value=new_value,
        status="pending",
        requested_by=requested_by.id,
    )
    db.session.add(change)
    db.session.commit()
    current_app.logger.info(
        f"[PROFILE-CHANGE-REQUEST] change={change.id} user={target.id} "
        f"field={field} by={requested_by.id}"
    )
    return change


def get_change(change_id: int) -> ProfileChange:
    change = db.session.get(ProfileChange, change_id)
    if not change:
        raise PortalNotFoundError("Profile change not found")
    return change


def decide(change: ProfileChange, approve: bool, comment: str | None, reviewer: User) -> ProfileChange:
    if change.status != "pending":
        raise ProfileChangeValidationError("Only pending profile changes can be processed")
    if not approve and not comment:
        raise ProfileChangeValidationError("A comment is required when rejecting")
    if approve:
        user = change.user
        value = change.new_value
        if change.field_name == "email":
            # the address may have been taken since the request was filed
            value = _checked_email(value, user)
        change.old_value = getattr(user, change.field_name)
        setattr(user, change.field_name, value)
    change.status = "approved" if approve else "rejected"
    change.hr_comment = comment
    change.reviewed_by = reviewer.id
    change.reviewed_at = now_utc()
    db.session.commit()
    current_app.logger.info(
        f"[PROFILE-CHANGE-DECISION] change={change.id} status={change.status} hr={reviewer.id}"
    )
    return change


def changes_for(user_id: int) -> list[ProfileChange]:
    return (
        db.session.query(ProfileChange)
        .filter_by(user_id=user_id)
        .order_by(ProfileChange.created_at.desc(), ProfileChange.id.desc())
        .all()
    )
