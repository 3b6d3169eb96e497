"""Course lifecycle: scheduling, instructor assignment and availability."""

from __future__ import annotations

from datetime import date, time

from flask import current_app
from sqlalchemy import and_, select

from ..app import db
from ..constants import ROLE_INSTRUCTOR
from ..models import CourseRequest, InstructorAvailability, User
from ..shared.errors import (
    PortalConflictError,
    PortalNotFoundError,
    PortalValidationError,
)
from ..shared.time import now_utc, today


class SchedulingValidationError(PortalValidationError):
    """Raised when a course cannot move to the requested state."""


def get_course(course_id: int) -> CourseRequest:
    course = db.session.get(CourseRequest, course_id)
    if not course:
        raise PortalNotFoundError("Course not found")
    return course


def _overlaps(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and start_b < end_a


def find_conflict(
    instructor_id: int,
    on_date: date,
    start: time,
    end: time,
    exclude_course_id: int | None = None,
) -> CourseRequest | None:
    query = db.session.query(CourseRequest).filter(
        CourseRequest.instructor_id == instructor_id,
        CourseRequest.status == "confirmed",
        CourseRequest.confirmed_date == on_date,
    )
    if exclude_course_id:
        query = query.filter(CourseRequest.id != exclude_course_id)
    for other in query.all():
        if not other.confirmed_start_time or not other.confirmed_end_time:
            # a confirmed course without times blocks the whole day
            return other
        if _overlaps(start, end, other.confirmed_start_time, other.confirmed_end_time):
            return other
    return None


def assign_instructor(
    course: CourseRequest, instructor_id: int, start: time | None, end: time | None
) -> CourseRequest:
    if course.status not in ("pending", "confirmed"):
        raise SchedulingValidationError(
            "Only pending or confirmed courses can be assigned"
        )
    if not course.scheduled_date:
        raise SchedulingValidationError(
            "Course must have a scheduled date before assigning an instructor"
        )
    if not start or not end:
        raise SchedulingValidationError("Start time and end time are required")
    if start >= end:
        raise SchedulingValidationError("Start time must be before end time")
    instructor = db.session.get(User, instructor_id)
    if not instructor or instructor.role != ROLE_INSTRUCTOR:
        raise PortalNotFoundError("Instructor not found")
    if not instructor.is_active:
        raise SchedulingValidationError("Instructor account is inactive")
    conflict = find_conflict(
        instructor.id, course.scheduled_date, start, end, exclude_course_id=course.id
    )
    if conflict:
        raise SchedulingValidationError(
            "Instructor is already assigned to another course during this time slot"
        )

    course.instructor_id = instructor.id
    course.status = "confirmed"
    course.confirmed_date = course.scheduled_date
    course.confirmed_start_time = start
    course.confirmed_end_time = end
    removed = (
        db.session.query(InstructorAvailability)
        .filter_by(instructor_id=instructor.id, date=course.scheduled_date)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    current_app.logger.info(
        f"[COURSE-ASSIGN] course={course.id} instructor={instructor.id} "
        f"date={course.confirmed_date} availability_removed={removed}"
    )
    return course


def reschedule(course: CourseRequest, new_date: date | None) -> CourseRequest:
    if course.status != "pending":
        raise SchedulingValidationError("Only pending courses can be rescheduled")
    if not new_date:
        raise SchedulingValidationError("scheduled_date is required")
    if new_date < today():
        raise SchedulingValidationError("Scheduled date cannot be in the past")
    course.scheduled_date = new_date
    db.session.commit()
    return course


def cancel(course: CourseRequest, reason: str | None) -> CourseRequest:
    if not reason:
        raise SchedulingValidationError("Cancellation reason is required")
    if course.status == "completed":
        raise SchedulingValidationError("Completed courses cannot be cancelled")
    if course.status == "cancelled":
        raise SchedulingValidationError("Course is already cancelled")
    course.status = "cancelled"
    course.is_cancelled = True
    course.cancelled_at = now_utc()
    course.cancellation_reason = reason
    db.session.commit()
    current_app.logger.info(f"[COURSE-CANCEL] course={course.id}")
    return course


def mark_ready_for_billing(course: CourseRequest) -> CourseRequest:
    if course.status != "completed":
        raise SchedulingValidationError(
            "Only completed courses can be marked as ready for billing"
        )
    if course.invoiced:
        raise SchedulingValidationError("Course has already been invoiced")
    course.ready_for_billing = True
    course.ready_for_billing_at = now_utc()
    db.session.commit()
    return course


def archive(course: CourseRequest) -> CourseRequest:
    if course.status not in ("completed", "cancelled"):
        raise SchedulingValidationError(
            "Only completed or cancelled courses can be archived"
        )
    course.archived = True
    course.archived_at = now_utc()
    db.session.commit()
    return course


def complete(course: CourseRequest, comments: str | None) -> CourseRequest:
    if course.status == "completed":
        raise SchedulingValidationError("Course is already completed")
    if course.status != "confirmed":
        raise SchedulingValidationError("Only confirmed courses can be completed")
    course.status = "completed"
    course.completed_at = now_utc()
    if comments:
        course.instructor_comments = comments
    db.session.commit()
    current_app.logger.info(
        f"[COURSE-COMPLETE] course={course.id} instructor={course.instructor_id} "
        f"attended={course.attended_count}"
    )
    return course


def has_confirmed_course(instructor_id: int, on_date: date) -> bool:
    return (
        db.session.query(CourseRequest.id)
        .filter(
            CourseRequest.instructor_id == instructor_id,
            CourseRequest.status == "confirmed",
            CourseRequest.confirmed_date == on_date,
        )
        .first()
        is not None
    )


def add_availability(instructor: User, on_date: date | None) -> InstructorAvailability:
    if not on_date:
        raise SchedulingValidationError("A valid date is required")
    if on_date < today():
        raise SchedulingValidationError("Cannot set availability for past dates")
    exists = (
        db.session.query(InstructorAvailability)
        .filter_by(instructor_id=instructor.id, date=on_date)
        .one_or_none()
    )
    if exists:
        raise PortalConflictError("Availability already set for this date")
    row = InstructorAvailability(instructor_id=instructor.id, date=on_date)
    db.session.add(row)
    db.session.commit()
    return row


def get_availability(instructor: User, on_date: date | None) -> InstructorAvailability:
    row = None
    if on_date:
        row = (
            db.session.query(InstructorAvailability)
            .filter_by(instructor_id=instructor.id, date=on_date)
            .one_or_none()
        )
    if not row:
        raise PortalNotFoundError("Availability not found")
    return row


def remove_availability(instructor: User, on_date: date | None) -> None:
    row = get_availability(instructor, on_date)
    if has_confirmed_course(instructor.id, row.date):
        raise SchedulingValidationError(
            "Cannot remove availability on a day with a confirmed course"
        )
    db.session.delete(row)
    db.session.commit()


def available_instructors(on_date: date) -> list[User]:
    busy = select(CourseRequest.instructor_id).where(
        CourseRequest.status == "confirmed",
        CourseRequest.confirmed_date == on_date,
        CourseRequest.instructor_id.isnot(None),
    )
    return (
        db.session.query(User)
        .join(
            InstructorAvailability,
            and_(
                InstructorAvailability.instructor_id == User.id,
                InstructorAvailability.date == on_date,
                InstructorAvailability.status == "available",
            ),
        )
        .filter(
            User.role == ROLE_INSTRUCTOR,
            User.status == "active",
            User.id.notin_(busy),
        )
        .order_by(User.last_name, User.first_name, User.username)
        .all()
    )
