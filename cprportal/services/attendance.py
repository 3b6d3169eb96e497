from __future__ import annotations

from typing import Iterable

from ..app import db
from ..models import CourseRequest, CourseStudent
from ..shared.errors import PortalForbiddenError, PortalValidationError
from ..shared.payload import clean_str, to_bool


class AttendanceValidationError(PortalValidationError):
    """Raised when attendance input is invalid."""


class AttendanceForbiddenError(PortalForbiddenError):
    """Raised when attendance cannot be modified for the course."""


def _ensure_editable(course: CourseRequest) -> None:
    if course.status != "confirmed":
        raise AttendanceForbiddenError(
            "Attendance can only be recorded for confirmed classes"
        )


def _student_for_course(course: CourseRequest, student_id) -> CourseStudent:
    try:
        sid = int(student_id)
    except (TypeError, ValueError):
        raise AttendanceValidationError("Student id must be an integer")
    student = db.session.get(CourseStudent, sid)
    if not student or student.course_request_id != course.id:
        raise AttendanceValidationError(f"Student {sid} is not enrolled in this class")
    return student


def _coerce_attended(value) -> bool:
    attended = to_bool(value)
    if attended is None:
        raise AttendanceValidationError("attended must be true or false")
    return attended


def mark_student(course: CourseRequest, student_id, attended_value) -> CourseStudent:
    """Set one student's attendance. Caller commits."""
    _ensure_editable(course)
    student = _student_for_course(course, student_id)
    student.attended = _coerce_attended(attended_value)
    student.attendance_marked = True
    return student


def mark_batch(course: CourseRequest, entries: Iterable) -> int:
    """Apply a batch of ``{"id": .., "attended": ..}`` entries. Caller commits.

    The whole batch is validated before anything changes, so a bad entry
    leaves every student untouched.
    """
    _ensure_editable(course)
    if not isinstance(entries, list) or not entries:
        raise AttendanceValidationError("students must be a non-empty list")
    resolved: list[tuple[CourseStudent, bool]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise AttendanceValidationError("Each student entry must be an object")
        student = _student_for_course(course, entry.get("id"))
        resolved.append((student, _coerce_attended(entry.get("attended"))))
    for student, attended in resolved:
        student.attended = attended
        student.attendance_marked = True
    return len(resolved)


def add_student(course: CourseRequest, payload: dict) -> CourseStudent:
    """Enrol a student on the course. Caller commits."""
    if course.status in ("completed", "cancelled"):
        raise AttendanceValidationError(
            f"Cannot add students to a {course.status} course"
        )
    first = clean_str(payload.get("first_name") or payload.get("firstName"))
    last = clean_str(payload.get("last_name") or payload.get("lastName"))
    if not first or not last:
        raise AttendanceValidationError("First name and last name are required")
    student = CourseStudent(
        course_request_id=course.id,
        first_name=first,
        last_name=last,
        email=(clean_str(payload.get("email")) or "").lower() or None,
        phone=clean_str(payload.get("phone")),
        college=clean_str(payload.get("college")),
    )
    db.session.add(student)
    course.students.append(student)
    return student


def summary(course: CourseRequest) -> dict:
    students = course.students
    return {
        "course_id": course.id,
        "registered": course.registered_students,
        "enrolled": len(students),
        "marked": sum(1 for s in students if s.attendance_marked),
        "attended": sum(1 for s in students if s.attended),
    }
