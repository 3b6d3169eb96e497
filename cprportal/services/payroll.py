"""Instructor payment requests.

A request is raised in the same transaction that approves a timesheet and is
then approved or rejected by accounting. Amounts use the ``payroll`` rates in
``system_configurations`` as they stood when the timesheet was approved.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from ..app import db
from ..constants import INSTRUCTOR_PAYMENT_METHODS, INSTRUCTOR_PAYMENT_STATUSES
from ..models import InstructorPaymentRequest, Timesheet, User
from ..shared.errors import (
    PortalConflictError,
    PortalError,
    PortalNotFoundError,
    PortalValidationError,
)
from ..shared.payload import CENTS
from ..shared.time import as_utc, now_utc, today
from .system_config import get_decimal


class PayrollValidationError(PortalValidationError):
    """Raised when a payment request cannot be processed as asked."""


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_amounts(sheet: Timesheet) -> tuple[Decimal, Decimal]:
    """Return ``(base, bonus)`` for a timesheet at the current rates."""
    rate = get_decimal("instructor_hourly_rate", "25.00")
    per_course = get_decimal("instructor_course_bonus", "50.00")
    base = _q(Decimal(str(sheet.total_hours or 0)) * rate)
    bonus = _q(Decimal(sheet.courses_taught or 0) * per_course)
    return base, bonus


def create_for_timesheet(sheet: Timesheet) -> InstructorPaymentRequest:
    """Add (without committing) the payment request for an approved timesheet."""
    if sheet.status != "approved":
        raise PayrollValidationError("Only approved timesheets can be paid")
    exists = (
        db.session.query(InstructorPaymentRequest.id)
        .filter_by(timesheet_id=sheet.id)
        .first()
    )
    if exists:
        raise PortalConflictError("A payment request already exists for this timesheet")
    base, bonus = compute_amounts(sheet)
    payment_request = InstructorPaymentRequest(
        instructor_id=sheet.instructor_id,
        timesheet_id=sheet.id,
        base_amount=base,
        bonus_amount=bonus,
        amount=base + bonus,
        payment_method="direct_deposit",
        status="pending",
    )
    db.session.add(payment_request)
    return payment_request


def get_request(request_id: int) -> InstructorPaymentRequest:
    payment_request = db.session.get(InstructorPaymentRequest, request_id)
    if not payment_request:
        raise PortalNotFoundError("Payment request not found")
    return payment_request


def list_requests(status: str | None = None, instructor_id: int | None = None):
    query = db.session.query(InstructorPaymentRequest)
    if status:
        if status not in INSTRUCTOR_PAYMENT_STATUSES:
            raise PayrollValidationError("Unknown payment request status")
        query = query.filter(InstructorPaymentRequest.status == status)
    if instructor_id is not None:
        query = query.filter(InstructorPaymentRequest.instructor_id == instructor_id)
    return query.order_by(
        InstructorPaymentRequest.created_at.desc(), InstructorPaymentRequest.id.desc()
    ).all()


def _check_action(action: str | None, notes: str | None, method: str | None) -> None:
    if action not in ("approve", "reject"):
        raise PayrollValidationError("Action must be approve or reject")
    if action == "reject" and not notes:
        raise PayrollValidationError("Notes are required when rejecting a payment request")
    if method and method not in INSTRUCTOR_PAYMENT_METHODS:
        raise PayrollValidationError("Unknown payment method")


def _apply(payment_request, action, notes, user, method, payment_date) -> None:
    if payment_request.status != "pending":
        raise PayrollValidationError("Payment request has already been processed")
    payment_request.status = "approved" if action == "approve" else "rejected"
    payment_request.notes = notes
    payment_request.processed_by = user.id
    payment_request.processed_at = now_utc()
    if action == "approve":
        payment_request.payment_date = payment_date or today()
        if method:
            payment_request.payment_method = method


def process(
    payment_request: InstructorPaymentRequest,
    action: str | None,
    notes: str | None,
    user: User,
    method: str | None = None,
    payment_date=None,
) -> InstructorPaymentRequest:
    _check_action(action, notes, method)
    _apply(payment_request, action, notes, user, method, payment_date)
    db.session.commit()
    current_app.logger.info(
        f"[PAYROLL-PROCESS] request={payment_request.id} status={payment_request.status} "
        f"amount={payment_request.amount} user={user.id}"
    )
    return payment_request


def bulk_process(request_ids: list[int], action, notes, user: User, method=None) -> list[dict]:
    """Process each request on its own; one failure does not undo the others."""
    _check_action(action, notes, method)
    results = []
    for request_id in request_ids:
        try:
            payment_request = process(get_request(request_id), action, notes, user, method)
        except PortalError as exc:
            db.session.rollback()
            results.append({"id": request_id, "ok": False, "error": exc.message})
            continue
        results.append({"id": request_id, "ok": True, "status": payment_request.status})
    current_app.logger.info(
        f"[PAYROLL-BULK] action={action} requested={len(request_ids)} "
        f"processed={sum(1 for r in results if r['ok'])} user={user.id}"
    )
    return results


def _total(rows) -> float:
    return float(sum((r.amount for r in rows), Decimal("0.00")))


def stats() -> dict:
    current = today()

    def this_month(row) -> bool:
        processed = as_utc(row.processed_at)
        return bool(processed) and (processed.year, processed.month) == (
            current.year,
            current.month,
        )

    pending = list_requests(status="pending")
    approved = [r for r in list_requests(status="approved") if this_month(r)]
    rejected = [r for r in list_requests(status="rejected") if this_month(r)]
    return {
        "pending_count": len(pending),
        "pending_amount": _total(pending),
        "approved_this_month_count": len(approved),
        "approved_this_month_amount": _total(approved),
        "rejected_this_month_count": len(rejected),
    }


def history(instructor_id: int) -> dict:
    rows = list_requests(instructor_id=instructor_id)
    return {
        "payment_requests": [r.to_dict() for r in rows],
        "total_paid": _total([r for r in rows if r.status == "approved"]),
        "total_pending": _total([r for r in rows if r.status == "pending"]),
    }
