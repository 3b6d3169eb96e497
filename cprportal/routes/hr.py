from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from ..app import db
from ..constants import (
    API_PREFIX,
    PROFILE_CHANGE_STATUSES,
    ROLE_HR,
    ROLE_INSTRUCTOR,
    TIMESHEET_STATUSES,
)
from ..models import CourseRequest, ProfileChange, Timesheet, User
from ..services import profile_changes, timesheets
from ..shared.errors import PortalNotFoundError, json_error
from ..shared.payload import clean_str, json_body, jsonable
from ..shared.rbac import role_required

bp = Blueprint("hr", __name__, url_prefix=f"{API_PREFIX}/hr")

RECENT_COURSES = 10


@bp.get("/dashboard")
@role_required(ROLE_HR)
def dashboard(current_user):
    counts = dict(
        db.session.query(Timesheet.status, func.count(Timesheet.id))
        .group_by(Timesheet.status)
        .all()
    )
    instructors = (
        db.session.query(User)
        .filter(User.role == ROLE_INSTRUCTOR, User.status == "active")
        .count()
    )
    pending_changes = (
        db.session.query(ProfileChange).filter(ProfileChange.status == "pending").count()
    )
    return jsonify(
        {
            "ok": True,
            "timesheets": {status: counts.get(status, 0) for status in TIMESHEET_STATUSES},
            "active_instructors": instructors,
            "pending_profile_changes": pending_changes,
        }
    )


@bp.get("/timesheets")
@role_required(ROLE_HR)
def list_timesheets(current_user):
    query = db.session.query(Timesheet)
    status = request.args.get("status")
    if status:
        if status not in TIMESHEET_STATUSES:
            return json_error("Unknown timesheet status", 400)
        query = query.filter(Timesheet.status == status)
    sheets = query.order_by(Timesheet.week_start_date.desc(), Timesheet.id.desc()).all()
    return jsonify({"ok": True, "timesheets": [s.to_dict() for s in sheets]})


@bp.get("/timesheets/<int:timesheet_id>")
@role_required(ROLE_HR)
def get_timesheet(timesheet_id: int, current_user):
    sheet = timesheets.get_timesheet(timesheet_id)
    return jsonify({"ok": True, "timesheet": sheet.to_dict()})


@bp.post("/timesheets/<int:timesheet_id>/approve")
@role_required(ROLE_HR)
def approve_timesheet(timesheet_id: int, current_user):
    sheet = timesheets.get_timesheet(timesheet_id)
    comment = clean_str(json_body().get("comment"))
    timesheets.decide(sheet, True, comment, current_user)
    return jsonify({"ok": True, "timesheet": sheet.to_dict()})


@bp.post("/timesheets/<int:timesheet_id>/reject")
@role_required(ROLE_HR)
def reject_timesheet(timesheet_id: int, current_user):
    sheet = timesheets.get_timesheet(timesheet_id)
    comment = clean_str(json_body().get("comment"))
    timesheets.decide(sheet, False, comment, current_user)
    return jsonify({"ok": True, "timesheet": sheet.to_dict()})


# ---------------------------------------------------------------- profile changes


@bp.get("/profile-changes")
@role_required(ROLE_HR)
def list_profile_changes(current_user):
    status = request.args.get("status", "pending")
    query = db.session.query(ProfileChange)
    if status != "all":
        if status not in PROFILE_CHANGE_STATUSES:
            return json_error("Unknown profile change status", 400)
        query = query.filter(ProfileChange.status == status)
    changes = query.order_by(ProfileChange.created_at.asc(), ProfileChange.id.asc()).all()
    return jsonify({"ok": True, "changes": [c.to_dict() for c in changes]})


@bp.post("/profile-changes/<int:change_id>/approve")
@role_required(ROLE_HR)
def approve_profile_change(change_id: int, current_user):
    change = profile_changes.get_change(change_id)
    comment = clean_str(json_body().get("comment"))
    profile_changes.decide(change, True, comment, current_user)
    return jsonify({"ok": True, "change": change.to_dict()})


@bp.post("/profile-changes/<int:change_id>/reject")
@role_required(ROLE_HR)
def reject_profile_change(change_id: int, current_user):
    change = profile_changes.get_change(change_id)
    comment = clean_str(json_body().get("comment"))
    profile_changes.decide(change, False, comment, current_user)
    return jsonify({"ok": True, "change": change.to_dict()})


# ---------------------------------------------------------------- people


def _course_stats(instructor_ids: list[int]) -> dict[int, dict]:
    stats = {
        iid: {
            "total_courses": 0,
            "completed_courses": 0,
            "active_courses": 0,
            "last_course_date": None,
        }
        for iid in instructor_ids
    }
    if not instructor_ids:
        return stats
    rows = (
        db.session.query(
            CourseRequest.instructor_id,
            CourseRequest.status,
            func.count(CourseRequest.id),
            func.max(CourseRequest.confirmed_date),
        )
        .filter(CourseRequest.instructor_id.in_(instructor_ids))
        .group_by(CourseRequest.instructor_id, CourseRequest.status)
        .all()
    )
    for instructor_id, status, count, last_date in rows:
        entry = stats[instructor_id]
        entry["total_courses"] += count
        if status == "completed":
            entry["completed_courses"] = count
            entry["last_course_date"] = jsonable(last_date)
        elif status == "confirmed":
            entry["active_courses"] = count
    return stats


@bp.get("/instructors")
@role_required(ROLE_HR)
def list_instructors(current_user):
    query = db.session.query(User).filter(User.role == ROLE_INSTRUCTOR)
    search = clean_str(request.args.get("search"))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(func.coalesce(User.first_name, "")).like(pattern),
                func.lower(func.coalesce(User.last_name, "")).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(User.username).like(pattern),
            )
        )
    instructors = query.order_by(User.last_name, User.first_name, User.id).all()
    stats = _course_stats([u.id for u in instructors])
    return jsonify(
        {
            "ok": True,
            "instructors": [{**u.to_dict(), **stats[u.id]} for u in instructors],
        }
    )


@bp.get("/users/<int:user_id>")
@role_required(ROLE_HR)
def user_detail(user_id: int, current_user):
    user = db.session.get(User, user_id)
    if not user:
        raise PortalNotFoundError("User not found")
    data = user.to_dict()
    data["organization_name"] = user.organization.name if user.organization else None
    body = {
        "ok": True,
        "user": data,
        "profile_changes": [c.to_dict() for c in profile_changes.changes_for(user.id)],
    }
    if user.role == ROLE_INSTRUCTOR:
        courses = (
            db.session.query(CourseRequest)
            .filter(CourseRequest.instructor_id == user.id)
            .order_by(CourseRequest.scheduled_date.desc(), CourseRequest.id.desc())
            .limit(RECENT_COURSES)
            .all()
        )
        body["recent_courses"] = [c.to_dict() for c in courses]
        body["course_stats"] = _course_stats([user.id])[user.id]
    return jsonify(body)
