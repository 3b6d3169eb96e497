"""Vendor invoice submission, review and payment."""

from __future__ import annotations

import os
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..constants import (
    VENDOR_INVOICE_PAYABLE,
    VENDOR_INVOICE_REVIEWABLE,
    VENDOR_PDF_MAX_BYTES,
)
from ..models import User, Vendor, VendorInvoice, VendorPayment
from ..shared.errors import (
    PortalConflictError,
    PortalNotFoundError,
    PortalValidationError,
)
from ..shared.storage import (
    new_vendor_invoice_filename,
    vendor_invoice_dir,
    write_atomic,
)
from ..shared.time import as_utc, now_utc, today

PDF_MAGIC = b"%PDF"


class VendorInvoiceValidationError(PortalValidationError):
    """Raised when a vendor invoice cannot be submitted or processed."""


def read_pdf_upload(file_storage) -> bytes:
    """Return the bytes of an uploaded PDF after type and size checks."""
    if file_storage is None or not file_storage.filename:
        raise VendorInvoiceValidationError("Invoice PDF is required")
    if not file_storage.filename.lower().endswith(".pdf"):
        raise VendorInvoiceValidationError("Only PDF files are allowed")
    data = file_storage.read(VENDOR_PDF_MAX_BYTES + 1)
    if len(data) > VENDOR_PDF_MAX_BYTES:
        raise VendorInvoiceValidationError("Invoice PDF must be 5 MB or smaller")
    if not data.startswith(PDF_MAGIC):
        raise VendorInvoiceValidationError("Only PDF files are allowed")
    return data


def submit_invoice(vendor: Vendor, fields: dict, pdf_bytes: bytes) -> VendorInvoice:
    number = fields["invoice_number"]
    duplicate = (
        db.session.query(VendorInvoice.id)
        .filter(
            VendorInvoice.vendor_id == vendor.id,
            func.lower(VendorInvoice.invoice_number) == number.lower(),
        )
        .first()
    )
    if duplicate:
        raise PortalConflictError("An invoice with this number already exists")
    amount: Decimal = fields["amount"]
    if amount <= 0:
        raise VendorInvoiceValidationError("Amount must be greater than zero")
    hst = fields.get("hst")
    if hst is not None and hst < 0:
        raise VendorInvoiceValidationError("HST cannot be negative")
    filename = new_vendor_invoice_filename()
    path = os.path.join(vendor_invoice_dir(), filename)
    write_atomic(path, pdf_bytes)
    invoice = VendorInvoice(
        vendor_id=vendor.id,
        invoice_number=number,
        amount=amount,
        rate=fields.get("rate"),
        hst=hst,
        total=amount + (hst or Decimal("0.00")),
        quantity=fields.get("quantity"),
        description=fields.get("description"),
        manual_type=fields.get("manual_type"),
        invoice_date=fields["invoice_date"],
        due_date=fields.get("due_date"),
        notes=fields.get("notes"),
        pdf_filename=filename,
        status="submitted",
    )
    db.session.add(invoice)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        # no row points at the stored PDF
        os.remove(path)
        current_app.logger.warning(
            f"[VENDOR-INVOICE-SUBMIT-FAILED] number={number} file={filename}"
        )
        raise
    current_app.logger.info(
        f"[VENDOR-INVOICE-SUBMIT] vendor={vendor.id} invoice={invoice.id} "
        f"number={number} total={invoice.total}"
    )
    return invoice


def get_invoice(invoice_id: int, vendor_id: int | None = None) -> VendorInvoice:
    invoice = db.session.get(VendorInvoice, invoice_id)
    if not invoice or (vendor_id is not None and invoice.vendor_id != vendor_id):
        raise PortalNotFoundError("Vendor invoice not found")
    return invoice


def search_invoices(vendor_id: int | None = None, status=None, search=None):
    query = db.session.query(VendorInvoice)
    if vendor_id is not None:
        query = query.filter(VendorInvoice.vendor_id == vendor_id)
    if status:
        if isinstance(status, (list, tuple)):
            query = query.filter(VendorInvoice.status.in_(status))
        else:
            query = query.filter(VendorInvoice.status == status)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(VendorInvoice.invoice_number).like(pattern),
                func.lower(func.coalesce(VendorInvoice.description, "")).like(pattern),
            )
        )
    return query.order_by(VendorInvoice.created_at.desc(), VendorInvoice.id.desc()).all()


def review(invoice: VendorInvoice, action: str | None, notes: str | None, user: User) -> VendorInvoice:
    if action not in ("approve", "reject"):
        raise VendorInvoiceValidationError("Action must be approve or reject")
    if invoice.status not in VENDOR_INVOICE_REVIEWABLE:
        raise VendorInvoiceValidationError(
            f"Invoice cannot be reviewed in status {invoice.status}"
        )
    if action == "reject":
        if not notes:
            raise VendorInvoiceValidationError(
                "Notes are required when rejecting an invoice"
            )
        invoice.status = "rejected"
        invoice.rejection_reason = notes
    else:
        invoice.status = "approved"
        if notes:
            invoice.admin_notes = notes
    invoice.approved_by = user.id
    invoice.approved_at = now_utc()
    db.session.commit()
    current_app.logger.info(
        f"[VENDOR-INVOICE-REVIEW] invoice={invoice.id} action={action} user={user.id}"
    )
    return invoice


def send_to_accounting(invoice: VendorInvoice) -> VendorInvoice:
    if invoice.status != "approved":
        raise VendorInvoiceValidationError(
            "Only approved invoices can be sent to accounting"
        )
    invoice.status = "sent_to_accounting"
    invoice.sent_to_accounting_at = now_utc()
    db.session.commit()
    return invoice


def record_payment(invoice: VendorInvoice, fields: dict, user: User) -> VendorPayment:
    if invoice.status not in VENDOR_INVOICE_PAYABLE:
        raise VendorInvoiceValidationError(
            "Payments can only be recorded for invoices sent to accounting"
        )
    amount: Decimal = fields["amount"]
    if amount <= 0:
        raise VendorInvoiceValidationError("Payment amount must be greater than zero")
    if amount > invoice.balance_due:
        raise VendorInvoiceValidationError("Payment amount exceeds the balance due")
    if not fields.get("payment_method"):
        raise VendorInvoiceValidationError("payment_method is required")
    payment = VendorPayment(
        vendor_invoice_id=invoice.id,
        amount=amount,
        payment_date=fields.get("payment_date") or today(),
        payment_method=fields["payment_method"],
        reference_number=fields.get("reference_number"),
        notes=fields.get("notes"),
        status="processed",
        processed_by=user.id,
        processed_at=now_utc(),
    )
    db.session.add(payment)
    invoice.payments.append(payment)
    if invoice.balance_due <= 0:
        invoice.status = "paid"
        invoice.paid_at = now_utc()
        invoice.payment_date = payment.payment_date
    else:
        invoice.status = "partially_paid"
    db.session.commit()
    current_app.logger.info(
        f"[VENDOR-PAYMENT] invoice={invoice.id} payment={payment.id} "
        f"amount={amount} status={invoice.status}"
    )
    return payment


def vendor_dashboard(vendor_id: int) -> dict:
    invoices = db.session.query(VendorInvoice).filter_by(vendor_id=vendor_id).all()
    total_paid = sum((inv.amount_paid for inv in invoices), Decimal("0.00"))
    durations = []
    for inv in invoices:
        if inv.status != "paid" or not inv.paid_at or not inv.created_at:
            continue
        delta = as_utc(inv.paid_at) - as_utc(inv.created_at)
        durations.append(delta.total_seconds() / 86400)
    average = round(sum(durations) / len(durations), 1) if durations else None
    return {
        "pending_invoices": sum(
            1 for inv in invoices if inv.status in VENDOR_INVOICE_REVIEWABLE
        ),
        "total_invoices": len(invoices),
        "total_paid": float(total_paid),
        "average_payment_days": average,
    }
