"""Plain-text notification mails. Failures are logged, never raised."""

from __future__ import annotations

from flask import current_app

from .. import emailer
from ..models import CourseRequest, Invoice, User, VendorInvoice
from ..shared.time import now_utc
from .system_config import get_config


def _deliver(recipients, subject: str, body: str, tag: str) -> bool:
    if not recipients:
        current_app.logger.info(f"[NOTIFY-SKIP] kind={tag} reason=no-recipient")
        return False
    result = emailer.send(recipients, subject, body, tag=tag)
    current_app.logger.info(
        f"[NOTIFY] kind={tag} ok={result.get('ok')} detail={result.get('detail')}"
    )
    return bool(result.get("ok"))


def _fmt_window(course: CourseRequest) -> str:
    start = course.confirmed_start_time
    end = course.confirmed_end_time
    if not start or not end:
        return ""
    return f" from {start.strftime('%H:%M')} to {end.strftime('%H:%M')}"


def course_confirmed(course: CourseRequest) -> None:
    company = get_config("company_name")
    type_name = course.course_type.name if course.course_type else "Course"
    when = f"{course.confirmed_date.isoformat()}{_fmt_window(course)}"
    instructor = course.instructor
    if instructor:
        _deliver(
            instructor.email,
            f"{company}: new course assignment",
            (
                f"Hello {instructor.full_name},\n\n"
                f"You have been assigned to teach {type_name} for "
                f"{course.organization.name} on {when} at {course.location}.\n"
            ),
            "course-confirmed-instructor",
        )
    org = course.organization
    if org and org.contact_email:
        instructor_name = instructor.full_name if instructor else "an instructor"
        _deliver(
            org.contact_email,
            f"{company}: course confirmed",
            (
                f"Your {type_name} request has been confirmed for {when} "
                f"at {course.location} with {instructor_name}.\n"
            ),
            "course-confirmed-org",
        )


def invoice_posted(invoice: Invoice) -> bool:
    org = invoice.organization
    recipient = org.contact_email if org else None
    company = get_config("company_name")
    body = (
        f"Invoice {invoice.invoice_number} is now available in your portal.\n\n"
        f"Course: {invoice.course_type_name or '-'}\n"
        f"Students billed: {invoice.students_billed or 0}\n"
        f"Amount due: ${invoice.amount:.2f}\n"
        f"Due date: {invoice.due_date.isoformat()}\n"
    )
    return _deliver(
        recipient, f"{company}: invoice {invoice.invoice_number}", body, "invoice-posted"
    )


def invoice_email(invoice: Invoice) -> bool:
    sent = invoice_posted(invoice)
    if sent:
        invoice.email_sent_at = now_utc()
    return sent


def vendor_invoice_decision(invoice: VendorInvoice) -> bool:
    vendor = invoice.vendor
    recipient = vendor.contact_email if vendor else None
    company = get_config("company_name")
    if invoice.status == "rejected":
        body = (
            f"Invoice {invoice.invoice_number} was rejected.\n\n"
            f"Reason: {invoice.rejection_reason or '-'}\n"
        )
    else:
        body = f"Invoice {invoice.invoice_number} was approved for payment.\n"
    return _deliver(
        recipient,
        f"{company}: invoice {invoice.invoice_number} {invoice.status}",
        body,
        "vendor-invoice-decision",
    )


def password_reset(user: User, token: str) -> bool:
    company = get_config("company_name")
    body = (
        f"Hello {user.full_name},\n\n"
        "Use this token to reset your password within the next hour:\n\n"
        f"{token}\n"
    )
    return _deliver(user.email, f"{company}: password reset", body, "password-reset")
