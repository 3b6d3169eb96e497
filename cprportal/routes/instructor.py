from flask import Blueprint, current_app, jsonify

from ..app import db
from ..constants import API_PREFIX, ROLE_INSTRUCTOR
from ..models import CourseRequest, InstructorAvailability, Timesheet
from ..services import attendance, payroll, scheduling, timesheets
from ..shared.errors import PortalNotFoundError, json_error
from ..shared.payload import apply_fields, clean_str, json_body, to_money
from ..shared.rbac import role_required
from ..shared.time import parse_date, today

bp = Blueprint("instructor", __name__, url_prefix=f"{API_PREFIX}/instructor")

AVAILABILITY_STATUSES = ("available", "unavailable")


def _my_class(course_id: int, instructor_id: int) -> CourseRequest:
    course = db.session.get(CourseRequest, course_id)
    if not course or course.instructor_id != instructor_id:
        raise PortalNotFoundError("Class not found")
    return course


def _my_classes(instructor_id: int, *statuses: str):
    return (
        db.session.query(CourseRequest)
        .filter(
            CourseRequest.instructor_id == instructor_id,
            CourseRequest.status.in_(statuses),
        )
        .order_by(CourseRequest.confirmed_date, CourseRequest.confirmed_start_time)
        .all()
    )


def _class_list(courses):
    return jsonify({"ok": True, "classes": [c.to_dict() for c in courses]})


@bp.get("/dashboard/stats")
@role_required(ROLE_INSTRUCTOR)
def dashboard_stats(current_user):
    classes = _my_classes(current_user.id, "confirmed", "completed")
    current_day = today()
    completed = [c for c in classes if c.status == "completed"]
    return jsonify(
        {
            "ok": True,
            "upcoming_courses": sum(
                1
                for c in classes
                if c.status == "confirmed"
                and c.confirmed_date
                and c.confirmed_date >= current_day
            ),
            "today_courses": sum(
                1
                for c in classes
                if c.status == "confirmed" and c.confirmed_date == current_day
            ),
            "completed_courses": len(completed),
            "total_courses": len(classes),
            "students_enrolled": sum(c.student_count for c in completed),
            "students_attended": sum(c.attended_count for c in completed),
        }
    )


# ---------------------------------------------------------------- availability


@bp.get("/availability")
@role_required(ROLE_INSTRUCTOR)
def list_availability(current_user):
    rows = (
        db.session.query(InstructorAvailability)
        .filter_by(instructor_id=current_user.id)
        .order_by(InstructorAvailability.date)
        .all()
    )
    return jsonify({"ok": True, "availability": [r.to_dict() for r in rows]})


@bp.post("/availability")
@role_required(ROLE_INSTRUCTOR)
def add_availability(current_user):
    payload = json_body()
    row = scheduling.add_availability(current_user, parse_date(payload.get("date")))
    current_app.logger.info(
        f"[AVAILABILITY-ADD] instructor={current_user.id} date={row.date}"
    )
    return jsonify({"ok": True, "availability": row.to_dict()}), 201


@bp.put("/availability/<day>")
@role_required(ROLE_INSTRUCTOR)
def update_availability(day: str, current_user):
    row = scheduling.get_availability(current_user, parse_date(day))
    status = clean_str(json_body().get("status"))
    if status not in AVAILABILITY_STATUSES:
        return json_error("status must be available or unavailable", 400)
    row.status = status
    db.session.commit()
    return jsonify({"ok": True, "availability": row.to_dict()})


@bp.delete("/availability/<day>")
@role_required(ROLE_INSTRUCTOR)
def remove_availability(day: str, current_user):
    scheduling.remove_availability(current_user, parse_date(day))
    return jsonify({"ok": True, "message": "Availability removed"})


# ---------------------------------------------------------------- classes


@bp.get("/classes")
@role_required(ROLE_INSTRUCTOR)
def list_classes(current_user):
    return _class_list(_my_classes(current_user.id, "confirmed", "completed"))


@bp.get("/classes/active")
@role_required(ROLE_INSTRUCTOR)
def active_classes(current_user):
    return _class_list(_my_classes(current_user.id, "confirmed"))


@bp.get("/classes/completed")
@role_required(ROLE_INSTRUCTOR)
def completed_classes(current_user):
    return _class_list(_my_classes(current_user.id, "completed"))


@bp.get("/classes/today")
@role_required(ROLE_INSTRUCTOR)
def todays_classes(current_user):
    current_day = today()
    classes = [
        c
        for c in _my_classes(current_user.id, "confirmed", "completed")
        if c.confirmed_date == current_day
    ]
    return _class_list(classes)


@bp.get("/classes/<int:course_id>")
@role_required(ROLE_INSTRUCTOR)
def class_detail(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    return jsonify({"ok": True, "class": course.to_dict(with_students=True)})


@bp.get("/classes/<int:course_id>/students")
@role_required(ROLE_INSTRUCTOR)
def class_students(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    return jsonify({"ok": True, "students": [s.to_dict() for s in course.students]})


@bp.post("/classes/<int:course_id>/students")
@role_required(ROLE_INSTRUCTOR)
def add_walk_in(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    try:
        student = attendance.add_student(course, json_body())
        db.session.commit()
    except attendance.AttendanceValidationError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    return jsonify({"ok": True, "student": student.to_dict()}), 201


@bp.put("/classes/<int:course_id>/students/<int:student_id>/attendance")
@role_required(ROLE_INSTRUCTOR)
def mark_attendance(course_id: int, student_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    payload = json_body()
    try:
        student = attendance.mark_student(course, student_id, payload.get("attended"))
        db.session.commit()
    except attendance.AttendanceForbiddenError as exc:
        db.session.rollback()
        return json_error(str(exc), 403)
    except attendance.AttendanceValidationError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    return jsonify({"ok": True, "student": student.to_dict()})


@bp.post("/classes/<int:course_id>/attendance")
@role_required(ROLE_INSTRUCTOR)
def mark_attendance_batch(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    payload = json_body()
    try:
        updated_count = attendance.mark_batch(course, payload.get("students"))
        db.session.commit()
    except attendance.AttendanceForbiddenError as exc:
        db.session.rollback()
        return json_error(str(exc), 403)
    except attendance.AttendanceValidationError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    current_app.logger.info(
        f"[ATTENDANCE] course={course.id} instructor={current_user.id} updated={updated_count}"
    )
    return jsonify(
        {"ok": True, "updated_count": updated_count, "summary": attendance.summary(course)}
    )


@bp.post("/classes/<int:course_id>/complete")
@role_required(ROLE_INSTRUCTOR)
def complete_class(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    payload = json_body()
    scheduling.complete(course, clean_str(payload.get("instructor_comments")))
    return jsonify({"ok": True, "class": course.to_dict()})


@bp.put("/classes/<int:course_id>/notes")
@role_required(ROLE_INSTRUCTOR)
def update_notes(course_id: int, current_user):
    course = _my_class(course_id, current_user.id)
    course.instructor_comments = clean_str(json_body().get("notes"))
    db.session.commit()
    return jsonify({"ok": True, "class": course.to_dict()})


@bp.get("/attendance")
@role_required(ROLE_INSTRUCTOR)
def attendance_overview(current_user):
    classes = _my_classes(current_user.id, "confirmed", "completed")
    return jsonify(
        {"ok": True, "classes": [attendance.summary(c) for c in classes]}
    )


# ---------------------------------------------------------------- timesheets


@bp.get("/timesheets")
@role_required(ROLE_INSTRUCTOR)
def list_timesheets(current_user):
    sheets = (
        db.session.query(Timesheet)
        .filter_by(instructor_id=current_user.id)
        .order_by(Timesheet.week_start_date.desc())
        .all()
    )
    return jsonify({"ok": True, "timesheets": [s.to_dict() for s in sheets]})


@bp.post("/timesheets")
@role_required(ROLE_INSTRUCTOR)
def submit_timesheet(current_user):
    payload = json_body()
    sheet = timesheets.submit(
        current_user,
        parse_date(payload.get("week_start_date")),
        to_money(payload.get("total_hours"), "total_hours"),
        clean_str(payload.get("notes")),
    )
    return jsonify({"ok": True, "timesheet": sheet.to_dict()}), 201


@bp.put("/timesheets/<int:timesheet_id>")
@role_required(ROLE_INSTRUCTOR)
def revise_timesheet(timesheet_id: int, current_user):
    sheet = timesheets.get_timesheet(timesheet_id, instructor_id=current_user.id)
    payload = json_body()
    hours = None
    if "total_hours" in payload:
        hours = to_money(payload.get("total_hours"), "total_hours")
    timesheets.revise(
        sheet, hours, clean_str(payload.get("notes")), touch_notes="notes" in payload
    )
    return jsonify({"ok": True, "timesheet": sheet.to_dict()})


@bp.get("/payment-requests")
@role_required(ROLE_INSTRUCTOR)
def list_payment_requests(current_user):
    return jsonify({"ok": True, **payroll.history(current_user.id)})


# ---------------------------------------------------------------- profile


@bp.get("/profile")
@role_required(ROLE_INSTRUCTOR)
def get_profile(current_user):
    return jsonify({"ok": True, "user": current_user.to_dict()})


@bp.put("/profile")
@role_required(ROLE_INSTRUCTOR)
def update_profile(current_user):
    apply_fields(current_user, json_body(), ("first_name", "last_name", "phone", "mobile"))
    db.session.commit()
    return jsonify({"ok": True, "user": current_user.to_dict()})
