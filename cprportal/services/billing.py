"""Invoices and organization payments.

Invoice status is always derived from its verified payments and due date via
``refresh_invoice_status`` so verification, rejection and reversal agree on
the outcome.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import extract, func

from ..app import db
from ..constants import INVOICE_OPEN_STATUSES
from ..models import CoursePricing, CourseRequest, Invoice, Payment, User
from ..shared.errors import PortalConflictError, PortalNotFoundError, PortalValidationError
from ..shared.payload import CENTS
from ..shared.time import as_utc, now_utc, today
from .system_config import get_decimal, get_int


class BillingValidationError(PortalValidationError):
    """Raised when an invoice or payment operation is not allowed."""


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def active_pricing(organization_id: int, course_type_id: int) -> CoursePricing | None:
    return (
        db.session.query(CoursePricing)
        .filter_by(
            organization_id=organization_id,
            course_type_id=course_type_id,
            is_active=True,
        )
        .order_by(CoursePricing.effective_date.desc(), CoursePricing.id.desc())
        .first()
    )


def set_pricing(
    organization_id: int, course_type_id: int, price: Decimal, effective_date
) -> CoursePricing:
    if price <= 0:
        raise BillingValidationError("Price per student must be greater than zero")
    previous = (
        db.session.query(CoursePricing)
        .filter_by(
            organization_id=organization_id,
            course_type_id=course_type_id,
            is_active=True,
        )
        .all()
    )
    for row in previous:
        row.is_active = False
    pricing = CoursePricing(
        organization_id=organization_id,
        course_type_id=course_type_id,
        price_per_student=price,
        effective_date=effective_date or today(),
        is_active=True,
    )
    db.session.add(pricing)
    db.session.commit()
    return pricing


def billing_queue() -> list[dict]:
    courses = (
        db.session.query(CourseRequest)
        .filter(
            CourseRequest.status == "completed",
            CourseRequest.ready_for_billing.is_(True),
            CourseRequest.invoiced.is_(False),
        )
        .order_by(CourseRequest.completed_at)
        .all()
    )
    rows = []
    for course in courses:
        pricing = active_pricing(course.organization_id, course.course_type_id)
        data = course.to_dict()
        rate = pricing.price_per_student if pricing else None
        data["rate_per_student"] = float(rate) if rate is not None else None
        data["estimated_base_cost"] = (
            float(_q(rate * course.attended_count)) if rate is not None else None
        )
        rows.append(data)
    return rows


def _next_invoice_number(invoice: Invoice) -> str:
    return f"INV-{invoice.invoice_date.year}-{invoice.id:06d}"


def create_invoice(course: CourseRequest) -> Invoice:
    if course.status != "completed":
        raise BillingValidationError("Only completed courses can be invoiced")
    if not course.ready_for_billing:
        raise BillingValidationError("Course is not ready for billing")
    if course.invoiced:
        raise PortalConflictError("Course has already been invoiced")
    pricing = active_pricing(course.organization_id, course.course_type_id)
    if not pricing:
        raise BillingValidationError(
            "No active pricing found for this organization and course type"
        )
    attended = course.attended_count
    if attended <= 0:
        raise BillingValidationError("No attended students to bill")

    rate = pricing.price_per_student
    base = _q(rate * attended)
    tax = _q(base * get_decimal("invoice_tax_percent", "13") / Decimal("100"))
    issued = today()
    invoice = Invoice(
        # placeholder until the row id is known
        invoice_number=f"TMP-{course.id}-{now_utc().timestamp()}",
        organization_id=course.organization_id,
        course_request_id=course.id,
        invoice_date=issued,
        due_date=issued + timedelta(days=get_int("invoice_due_days", 30)),
        base_cost=base,
        tax_amount=tax,
        amount=base + tax,
        students_billed=attended,
        rate_per_student=rate,
        course_type_name=course.course_type.name if course.course_type else None,
        location=course.location,
        date_completed=(
            course.completed_at.date() if course.completed_at else course.confirmed_date
        ),
        status="pending",
        posted_to_org=False,
    )
    db.session.add(invoice)
    db.session.flush()
    invoice.invoice_number = _next_invoice_number(invoice)
    course.invoiced = True
    course.invoiced_at = now_utc()
    db.session.commit()
    current_app.logger.info(
        f"[INVOICE-CREATE] invoice={invoice.invoice_number} course={course.id} "
        f"students={attended} amount={invoice.amount}"
    )
    return invoice


def get_invoice(invoice_id: int, organization_id: int | None = None) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise PortalNotFoundError("Invoice not found")
    if organization_id is not None and (
        invoice.organization_id != organization_id or not invoice.posted_to_org
    ):
        raise PortalNotFoundError("Invoice not found")
    return invoice


def late_fee(invoice: Invoice) -> Decimal:
    if invoice.status != "overdue":
        return Decimal("0.00")
    percent = get_decimal("invoice_late_fee_percent", "1.5")
    return _q(invoice.amount * percent / Decimal("100"))


def invoice_detail(invoice: Invoice) -> dict:
    data = invoice.to_dict(with_payments=True)
    data["late_fee"] = float(late_fee(invoice))
    return data


def refresh_invoice_status(invoice: Invoice) -> str:
    """Recompute status from verified payments and the due date."""
    if invoice.amount_paid >= invoice.amount:
        invoice.status = "paid"
        if not invoice.paid_date:
            invoice.paid_date = today()
        return invoice.status
    invoice.paid_date = None
    pending = any(p.status == "pending_verification" for p in invoice.payments)
    if pending:
        invoice.status = "payment_submitted"
    elif invoice.due_date and invoice.due_date < today():
        invoice.status = "overdue"
    else:
        invoice.status = "pending"
    return invoice.status


def post_to_org(invoice: Invoice) -> Invoice:
    if invoice.posted_to_org:
        raise BillingValidationError("Invoice has already been posted")
    invoice.posted_to_org = True
    invoice.posted_to_org_at = now_utc()
    db.session.commit()
    current_app.logger.info(
        f"[INVOICE-POST] invoice={invoice.invoice_number} org={invoice.organization_id}"
    )
    return invoice


def update_invoice(invoice: Invoice, notes=None, due_date=None, touch_notes=False) -> Invoice:
    if due_date is not None:
        if invoice.status == "paid":
            raise BillingValidationError("Cannot change the due date of a paid invoice")
        if due_date < invoice.invoice_date:
            raise BillingValidationError("Due date cannot be before the invoice date")
        invoice.due_date = due_date
        refresh_invoice_status(invoice)
    if touch_notes:
        invoice.notes = notes
    db.session.commit()
    return invoice


def _awaiting_verification(invoice: Invoice) -> Decimal:
    return sum(
        (p.amount for p in invoice.payments if p.status == "pending_verification"),
        Decimal("0.00"),
    )


def _check_amount(invoice: Invoice, amount: Decimal) -> None:
    if amount <= 0:
        raise BillingValidationError("Payment amount must be greater than zero")
    if invoice.status not in INVOICE_OPEN_STATUSES:
        raise BillingValidationError("Invoice is already paid")
    # submissions still awaiting verification already claim part of the balance
    if amount > invoice.balance_due - _awaiting_verification(invoice):
        raise BillingValidationError("Payment amount exceeds the balance due")


def submit_payment(invoice: Invoice, amount: Decimal, payment_date, method, reference, notes) -> Payment:
    """Organization-submitted payment awaiting accounting verification."""
    _check_amount(invoice, amount)
    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        payment_date=payment_date or today(),
        payment_method=method,
        reference_number=reference,
        notes=notes,
        status="pending_verification",
        submitted_by_org_at=now_utc(),
    )
    db.session.add(payment)
    invoice.payments.append(payment)
    invoice.status = "payment_submitted"
    db.session.commit()
    current_app.logger.info(
        f"[PAYMENT-SUBMIT] invoice={invoice.invoice_number} payment={payment.id} amount={amount}"
    )
    return payment


def record_payment(invoice: Invoice, amount: Decimal, payment_date, method, reference, notes) -> Payment:
    """Accounting-entered payment, verified on entry."""
    _check_amount(invoice, amount)
    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        payment_date=payment_date or today(),
        payment_method=method,
        reference_number=reference,
        notes=notes,
        status="verified",
        verified_by_accounting_at=now_utc(),
    )
    db.session.add(payment)
    invoice.payments.append(payment)
    refresh_invoice_status(invoice)
    db.session.commit()
    current_app.logger.info(
        f"[PAYMENT-RECORD] invoice={invoice.invoice_number} payment={payment.id} "
        f"amount={amount} status={invoice.status}"
    )
    return payment


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise PortalNotFoundError("Payment not found")
    return payment


def _append_note(payment: Payment, note: str) -> None:
    payment.notes = f"{payment.notes}\n{note}" if payment.notes else note


def verify_payment(payment: Payment, action: str | None, notes: str | None, user: User) -> Payment:
    if action not in ("approve", "reject"):
        raise BillingValidationError("Action must be approve or reject")
    if action == "reject" and not notes:
        raise BillingValidationError("Notes are required when rejecting a payment")
    if payment.status != "pending_verification":
        raise BillingValidationError("Payment is not awaiting verification")
    invoice = payment.invoice
    if action == "approve":
        if invoice.amount_paid + payment.amount > invoice.amount:
            raise BillingValidationError(
                "Approving this payment would exceed the invoice amount"
            )
        payment.status = "verified"
        payment.verified_by_accounting_at = now_utc()
        _append_note(payment, f"Verified by {user.username}: {notes or 'Payment verified'}")
    else:
        payment.status = "rejected"
        _append_note(payment, f"Rejected by {user.username}: {notes}")
    refresh_invoice_status(invoice)
    db.session.commit()
    current_app.logger.info(
        f"[PAYMENT-VERIFY] payment={payment.id} action={action} "
        f"invoice={invoice.invoice_number} status={invoice.status} user={user.id}"
    )
    return payment


def reverse_payment(payment: Payment, reason: str | None, user: User) -> Payment:
    if not reason:
        raise BillingValidationError("A reversal reason is required")
    if payment.status != "verified":
        raise BillingValidationError("Only verified payments can be reversed")
    verified_at = as_utc(payment.verified_by_accounting_at)
    window = timedelta(hours=current_app.config.get("PAYMENT_REVERSAL_HOURS", 48))
    if not verified_at or now_utc() - verified_at > window:
        raise BillingValidationError(
            "Payments can only be reversed within "
            f"{int(window.total_seconds() // 3600)} hours of verification"
        )
    payment.status = "reversed"
    payment.reversed_at = now_utc()
    payment.reversed_by = user.id
    payment.reversal_reason = reason
    invoice = payment.invoice
    refresh_invoice_status(invoice)
    db.session.commit()
    current_app.logger.info(
        f"[PAYMENT-REVERSE] payment={payment.id} invoice={invoice.invoice_number} "
        f"status={invoice.status} user={user.id}"
    )
    return payment


def mark_overdue() -> int:
    """Flip unpaid invoices past their due date to ``overdue``."""
    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.status.in_(["pending", "payment_submitted"]),
            Invoice.due_date < today(),
        )
        .all()
    )
    for invoice in invoices:
        invoice.status = "overdue"
    db.session.commit()
    current_app.logger.info(f"[INVOICE-OVERDUE] updated={len(invoices)}")
    return len(invoices)


def organization_summary(organization_id: int) -> dict:
    invoices = (
        db.session.query(Invoice)
        .filter_by(organization_id=organization_id, posted_to_org=True)
        .all()
    )
    total = sum((i.amount for i in invoices), Decimal("0.00"))
    paid = sum((i.amount_paid for i in invoices), Decimal("0.00"))
    pending_verification = sum(
        1 for i in invoices for p in i.payments if p.status == "pending_verification"
    )
    return {
        "total_invoices": len(invoices),
        "total_invoiced": float(total),
        "total_paid": float(paid),
        "outstanding": float(sum((i.balance_due for i in invoices), Decimal("0.00"))),
        "overdue_count": sum(1 for i in invoices if i.status == "overdue"),
        "pending_verification_count": pending_verification,
    }


def accounting_summary() -> dict:
    invoiced = db.session.query(func.coalesce(func.sum(Invoice.amount), 0)).scalar()
    received = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == "verified")
        .scalar()
    )
    invoiced = Decimal(str(invoiced))
    received = Decimal(str(received))
    return {
        "total_invoiced": float(_q(invoiced)),
        "total_received": float(_q(received)),
        "outstanding": float(_q(invoiced - received)),
        "overdue_count": db.session.query(Invoice).filter_by(status="overdue").count(),
        "pending_verification_count": db.session.query(Payment)
        .filter_by(status="pending_verification")
        .count(),
        "billing_queue_count": db.session.query(CourseRequest)
        .filter(
            CourseRequest.status == "completed",
            CourseRequest.ready_for_billing.is_(True),
            CourseRequest.invoiced.is_(False),
        )
        .count(),
    }


def revenue_report(year: int) -> list[dict]:
    months = {m: {"month": m, "invoiced": Decimal("0"), "received": Decimal("0")} for m in range(1, 13)}
    invoiced_rows = (
        db.session.query(extract("month", Invoice.invoice_date), func.sum(Invoice.amount))
        .filter(extract("year", Invoice.invoice_date) == year)
        .group_by(extract("month", Invoice.invoice_date))
        .all()
    )
    for month, total in invoiced_rows:
        months[int(month)]["invoiced"] = Decimal(str(total or 0))
    received_rows = (
        db.session.query(extract("month", Payment.payment_date), func.sum(Payment.amount))
        .filter(
            Payment.status == "verified",
            extract("year", Payment.payment_date) == year,
        )
        .group_by(extract("month", Payment.payment_date))
        .all()
    )
    for month, total in received_rows:
        months[int(month)]["received"] = Decimal(str(total or 0))
    return [
        {
            "month": row["month"],
            "invoiced": float(_q(row["invoiced"])),
            "received": float(_q(row["received"])),
        }
        for row in months.values()
    ]


AGING_BUCKETS = ("current", "1_30", "31_60", "61_90", "over_90")


def _aging_bucket(days_past_due: int) -> str:
    if days_past_due <= 0:
        return "current"
    if days_past_due <= 30:
        return "1_30"
    if days_past_due <= 60:
        return "31_60"
    if days_past_due <= 90:
        return "61_90"
    return "over_90"


def aging_report() -> dict:
    buckets = {name: Decimal("0.00") for name in AGING_BUCKETS}
    counts = {name: 0 for name in AGING_BUCKETS}
    invoices = (
        db.session.query(Invoice).filter(Invoice.status != "paid").all()
    )
    current_day = today()
    for invoice in invoices:
        balance = invoice.balance_due
        if balance <= 0:
            continue
        bucket = _aging_bucket((current_day - invoice.due_date).days)
        buckets[bucket] += balance
        counts[bucket] += 1
    return {
        "buckets": {name: float(value) for name, value in buckets.items()},
        "counts": counts,
        "total_outstanding": float(sum(buckets.values(), Decimal("0.00"))),
    }
