from flask import Blueprint, current_app, jsonify
from sqlalchemy import func

from ..app import db
from ..constants import API_PREFIX, ROLE_ADMIN
from ..models import ClassType, College
from ..shared.errors import PortalConflictError, PortalNotFoundError, PortalValidationError
from ..shared.payload import json_body, require_str, to_bool
from ..shared.rbac import login_required, role_required

bp = Blueprint("catalog", __name__, url_prefix=API_PREFIX)


@bp.get("/course-types")
@login_required
def list_course_types(current_user):
    types = (
        db.session.query(ClassType)
        .filter(ClassType.is_active.is_(True))
        .order_by(ClassType.name)
        .all()
    )
    return jsonify({"ok": True, "course_types": [t.to_dict() for t in types]})


# ---------------------------------------------------------------- colleges


def _get_college(college_id: int) -> College:
    college = db.session.get(College, college_id)
    if not college:
        raise PortalNotFoundError("College not found")
    return college


def _set_name(college: College, name: str) -> None:
    clash = db.session.query(College.id).filter(func.lower(College.name) == name.lower())
    if college.id is not None:
        clash = clash.filter(College.id != college.id)
    if clash.first():
        raise PortalConflictError("A college with this name already exists")
    college.name = name


@bp.get("/colleges")
@login_required
def list_colleges(current_user):
    colleges = (
        db.session.query(College)
        .filter(College.is_active.is_(True))
        .order_by(College.name)
        .all()
    )
    return jsonify(
        {"ok": True, "colleges": [{"id": c.id, "name": c.name} for c in colleges]}
    )


@bp.get("/colleges/all")
@role_required(ROLE_ADMIN)
def list_all_colleges(current_user):
    colleges = db.session.query(College).order_by(College.name).all()
    return jsonify({"ok": True, "colleges": [c.to_dict() for c in colleges]})


@bp.post("/colleges")
@role_required(ROLE_ADMIN)
def create_college(current_user):
    college = College(is_active=True)
    _set_name(college, require_str(json_body(), "name", "College name"))
    db.session.add(college)
    db.session.commit()
    current_app.logger.info(f"[COLLEGE-CREATE] college={college.id} user={current_user.id}")
    return jsonify({"ok": True, "college": college.to_dict()}), 201


@bp.put("/colleges/<int:college_id>")
@role_required(ROLE_ADMIN)
def update_college(college_id: int, current_user):
    college = _get_college(college_id)
    payload = json_body()
    if "name" not in payload and "is_active" not in payload:
        raise PortalValidationError("Nothing to update")
    if "name" in payload:
        _set_name(college, require_str(payload, "name", "College name"))
    if "is_active" in payload:
        active = to_bool(payload.get("is_active"))
        if active is None:
            raise PortalValidationError("is_active must be true or false")
        college.is_active = active
    db.session.commit()
    return jsonify({"ok": True, "college": college.to_dict()})


@bp.delete("/colleges/<int:college_id>")
@role_required(ROLE_ADMIN)
def delete_college(college_id: int, current_user):
    college = _get_college(college_id)
    name = college.name
    db.session.delete(college)
    db.session.commit()
    current_app.logger.info(f"[COLLEGE-DELETE] college={college_id} name={name}")
    return jsonify({"ok": True, "message": "College deleted"})
