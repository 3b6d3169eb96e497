from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..app import db
from ..models import CourseRequest, Timesheet, User
from ..shared.errors import (
    PortalConflictError,
    PortalNotFoundError,
    PortalValidationError,
)
from ..shared.time import now_utc, week_bounds
from . import payroll

MAX_WEEK_HOURS = Decimal("168")


class TimesheetValidationError(PortalValidationError):
    """Raised when a timesheet is malformed or not in a reviewable state."""


def courses_taught(instructor_id: int, week_start: date) -> int:
    start, end = week_bounds(week_start)
    return (
        db.session.query(CourseRequest)
        .filter(
            CourseRequest.instructor_id == instructor_id,
            CourseRequest.status == "completed",
            CourseRequest.confirmed_date >= start,
            CourseRequest.confirmed_date <= end,
        )
        .count()
    )


def _check_hours(hours: Decimal) -> None:
    if hours < 0 or hours > MAX_WEEK_HOURS:
        raise TimesheetValidationError("Total hours must be between 0 and 168")


def submit(instructor: User, week_start: date | None, hours: Decimal, notes: str | None) -> Timesheet:
    if not week_start:
        raise TimesheetValidationError("week_start_date is required")
    if week_start.weekday() != 0:
        raise TimesheetValidationError("week_start_date must be a Monday")
    _check_hours(hours)
    exists = (
        db.session.query(Timesheet.id)
        .filter_by(instructor_id=instructor.id, week_start_date=week_start)
        .first()
    )
    if exists:
        raise PortalConflictError("A timesheet for this week already exists")
    _, week_end = week_bounds(week_start)
    sheet = Timesheet(
        instructor_id=instructor.id,
        week_start_date=week_start,
        week_end_date=week_end,
        total_hours=hours,
        courses_taught=courses_taught(instructor.id, week_start),
        notes=notes,
        status="pending",
    )
    db.session.add(sheet)
    db.session.commit()
    current_app.logger.info(
        f"[TIMESHEET-SUBMIT] instructor={instructor.id} week={week_start} hours={hours}"
    )
    return sheet


def get_timesheet(timesheet_id: int, instructor_id: int | None = None) -> Timesheet:
    sheet = db.session.get(Timesheet, timesheet_id)
    if not sheet or (instructor_id is not None and sheet.instructor_id != instructor_id):
        raise PortalNotFoundError("Timesheet not found")
    return sheet


def revise(sheet: Timesheet, hours: Decimal | None, notes, touch_notes: bool) -> Timesheet:
    if sheet.status != "pending":
        raise TimesheetValidationError("Only pending timesheets can be edited")
    if hours is not None:
        _check_hours(hours)
        sheet.total_hours = hours
    if touch_notes:
        sheet.notes = notes
    sheet.courses_taught = courses_taught(sheet.instructor_id, sheet.week_start_date)
    db.session.commit()
    return sheet


def decide(sheet: Timesheet, approve: bool, comment: str | None, reviewer: User) -> Timesheet:
    if sheet.status != "pending":
        raise TimesheetValidationError("Only pending timesheets can be processed")
    if not approve and not comment:
        raise TimesheetValidationError("A comment is required when rejecting")
    sheet.status = "approved" if approve else "rejected"
    sheet.hr_comment = comment
    sheet.approved_by = reviewer.id
    sheet.approved_at = now_utc()
    payment_request = payroll.create_for_timesheet(sheet) if approve else None
    db.session.commit()
    current_app.logger.info(
        f"[TIMESHEET-DECISION] timesheet={sheet.id} status={sheet.status} hr={reviewer.id} "
        f"payment_request={payment_request.id if payment_request else None}"
    )
    return sheet
