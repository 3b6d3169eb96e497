from datetime import date

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func

from ..app import db
from ..constants import API_PREFIX, ROLE_ADMIN, ROLE_INSTRUCTOR
from ..models import CourseRequest, InstructorAvailability, User
from ..services import notifications, scheduling
from ..shared.errors import json_error
from ..shared.payload import clean_str, json_body, to_int
from ..shared.rbac import role_required
from ..shared.time import parse_date, parse_time, today

bp = Blueprint("courses", __name__, url_prefix=API_PREFIX)

LIST_ORDER = {
    "pending": (CourseRequest.scheduled_date, CourseRequest.id),
    "confirmed": (CourseRequest.confirmed_date, CourseRequest.confirmed_start_time),
    "completed": (CourseRequest.completed_at.desc(), CourseRequest.id.desc()),
    "cancelled": (CourseRequest.cancelled_at.desc(), CourseRequest.id.desc()),
}


def _list_by_status(status: str):
    query = db.session.query(CourseRequest).filter(CourseRequest.status == status)
    if request.args.get("include_archived") != "1":
        query = query.filter(CourseRequest.archived.is_(False))
    courses = query.order_by(*LIST_ORDER[status]).all()
    return jsonify({"ok": True, "courses": [c.to_dict() for c in courses]})


@bp.get("/courses/pending")
@role_required(ROLE_ADMIN)
def pending_courses(current_user):
    return _list_by_status("pending")


@bp.get("/courses/confirmed")
@role_required(ROLE_ADMIN)
def confirmed_courses(current_user):
    return _list_by_status("confirmed")


@bp.get("/courses/completed")
@role_required(ROLE_ADMIN)
def completed_courses(current_user):
    return _list_by_status("completed")


@bp.get("/courses/cancelled")
@role_required(ROLE_ADMIN)
def cancelled_courses(current_user):
    return _list_by_status("cancelled")


@bp.get("/courses/<int:course_id>")
@role_required(ROLE_ADMIN)
def course_detail(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    return jsonify({"ok": True, "course": course.to_dict(with_students=True)})


@bp.put("/courses/<int:course_id>/schedule")
@role_required(ROLE_ADMIN)
def schedule_course(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    payload = json_body()
    scheduling.reschedule(course, parse_date(payload.get("scheduled_date")))
    current_app.logger.info(
        f"[COURSE-SCHEDULE] course={course.id} date={course.scheduled_date} "
        f"by={current_user.id}"
    )
    return jsonify({"ok": True, "course": course.to_dict()})


@bp.put("/courses/<int:course_id>/assign-instructor")
@role_required(ROLE_ADMIN)
def assign_instructor(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    payload = json_body()
    if payload.get("instructor_id") in (None, ""):
        return json_error("instructor_id is required", 400)
    scheduling.assign_instructor(
        course,
        to_int(payload.get("instructor_id"), "instructor_id"),
        parse_time(payload.get("start_time")),
        parse_time(payload.get("end_time")),
    )
    notifications.course_confirmed(course)
    return jsonify({"ok": True, "course": course.to_dict()})


@bp.put("/courses/<int:course_id>/cancel")
@role_required(ROLE_ADMIN)
def cancel_course(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    payload = json_body()
    scheduling.cancel(course, clean_str(payload.get("reason")))
    return jsonify({"ok": True, "course": course.to_dict()})


@bp.put("/courses/<int:course_id>/ready-for-billing")
@role_required(ROLE_ADMIN)
def ready_for_billing(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    scheduling.mark_ready_for_billing(course)
    current_app.logger.info(f"[COURSE-READY] course={course.id} by={current_user.id}")
    return jsonify({"ok": True, "course": course.to_dict()})


@bp.put("/courses/<int:course_id>/archive")
@role_required(ROLE_ADMIN)
def archive_course(course_id: int, current_user):
    course = scheduling.get_course(course_id)
    scheduling.archive(course)
    return jsonify({"ok": True, "course": course.to_dict()})


# ---------------------------------------------------------------- instructors


def _active_instructors():
    return (
        db.session.query(User)
        .filter(User.role == ROLE_INSTRUCTOR, User.status == "active")
        .order_by(User.last_name, User.first_name, User.username)
        .all()
    )


@bp.get("/instructors")
@role_required(ROLE_ADMIN)
def list_instructors(current_user):
    current_day = today()
    confirmed = dict(
        db.session.query(CourseRequest.instructor_id, func.count(CourseRequest.id))
        .filter(CourseRequest.status == "confirmed")
        .group_by(CourseRequest.instructor_id)
        .all()
    )
    rows = []
    for instructor in _active_instructors():
        upcoming = (
            db.session.query(InstructorAvailability.date)
            .filter(
                InstructorAvailability.instructor_id == instructor.id,
                InstructorAvailability.status == "available",
                InstructorAvailability.date >= current_day,
            )
            .order_by(InstructorAvailability.date)
            .all()
        )
        data = instructor.to_dict()
        data["available_dates"] = [d.isoformat() for (d,) in upcoming]
        data["confirmed_courses"] = confirmed.get(instructor.id, 0)
        rows.append(data)
    return jsonify({"ok": True, "instructors": rows})


@bp.get("/instructors/available/<day>")
@role_required(ROLE_ADMIN)
def available_instructors(day: str, current_user):
    on_date = parse_date(day)
    if not on_date:
        return json_error("Invalid date", 400)
    users = scheduling.available_instructors(on_date)
    return jsonify(
        {"ok": True, "date": on_date.isoformat(), "instructors": [u.to_dict() for u in users]}
    )


def _month_bounds(raw: str | None) -> tuple[date, date] | None:
    if not raw:
        current = today()
        year, month = current.year, current.month
    else:
        try:
            year_text, month_text = raw.split("-", 1)
            year, month = int(year_text), int(month_text)
        except ValueError:
            return None
        if not 1 <= month <= 12 or not 1 <= year <= 9998:
            return None
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


@bp.get("/instructors/workload")
@role_required(ROLE_ADMIN)
def instructor_workload(current_user):
    bounds = _month_bounds(request.args.get("month"))
    if not bounds:
        return json_error("month must be YYYY-MM", 400)
    start, end = bounds
    counts = (
        db.session.query(
            CourseRequest.instructor_id,
            CourseRequest.status,
            func.count(CourseRequest.id),
        )
        .filter(
            CourseRequest.instructor_id.isnot(None),
            CourseRequest.status.in_(["confirmed", "completed"]),
            CourseRequest.confirmed_date >= start,
            CourseRequest.confirmed_date < end,
        )
        .group_by(CourseRequest.instructor_id, CourseRequest.status)
        .all()
    )
    tally: dict[int, dict[str, int]] = {}
    for instructor_id, status, count in counts:
        tally.setdefault(instructor_id, {"confirmed": 0, "completed": 0})[status] = count
    rows = []
    for instructor in _active_instructors():
        entry = tally.get(instructor.id, {"confirmed": 0, "completed": 0})
        rows.append(
            {
                "instructor_id": instructor.id,
                "instructor_name": instructor.full_name,
                "confirmed": entry["confirmed"],
                "completed": entry["completed"],
                "total": entry["confirmed"] + entry["completed"],
            }
        )
    return jsonify({"ok": True, "month": f"{start.year:04d}-{start.month:02d}", "workload": rows})
