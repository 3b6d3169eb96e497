import os

from flask import Blueprint, current_app, jsonify, request, send_file

from ..app import db
from ..constants import API_PREFIX
from ..models import Vendor, VendorInvoice
from ..services import vendor_invoices
from ..shared.errors import PortalValidationError, json_error
from ..shared.mail_utils import normalize_email
from ..shared.payload import apply_fields, clean_str, json_body, to_int, to_money
from ..shared.rbac import vendor_member_required
from ..shared.storage import vendor_invoice_path
from ..shared.time import parse_date

bp = Blueprint("vendor", __name__, url_prefix=f"{API_PREFIX}/vendor")

PROFILE_FIELDS = (
    "contact_first_name",
    "contact_last_name",
    "contact_email",
    "contact_phone",
    "address",
)


def _vendor(vendor_id: int) -> Vendor | None:
    vendor = db.session.get(Vendor, vendor_id)
    if not vendor or not vendor.is_active:
        return None
    return vendor


def _optional_money(form, key: str):
    if clean_str(form.get(key)) is None:
        return None
    return to_money(form.get(key), key)


def _invoice_fields(form) -> dict:
    number = clean_str(form.get("invoice_number"))
    if not number:
        raise PortalValidationError("invoice_number is required")
    invoice_date = parse_date(form.get("invoice_date"))
    if not invoice_date:
        raise PortalValidationError("A valid invoice_date is required")
    due_date = None
    if clean_str(form.get("due_date")):
        due_date = parse_date(form.get("due_date"))
        if not due_date:
            raise PortalValidationError("due_date must be YYYY-MM-DD")
        if due_date < invoice_date:
            raise PortalValidationError("Due date cannot be before the invoice date")
    quantity = None
    if clean_str(form.get("quantity")):
        quantity = to_int(form.get("quantity"), "quantity", minimum=0)
    return {
        "invoice_number": number,
        "amount": to_money(form.get("amount"), "amount"),
        "hst": _optional_money(form, "hst"),
        "rate": _optional_money(form, "rate"),
        "quantity": quantity,
        "description": clean_str(form.get("description")),
        "manual_type": clean_str(form.get("manual_type")),
        "invoice_date": invoice_date,
        "due_date": due_date,
        "notes": clean_str(form.get("notes")),
    }


def send_invoice_pdf(invoice: VendorInvoice):
    path = vendor_invoice_path(invoice.pdf_filename)
    if not path or not os.path.exists(path):
        return json_error("Invoice PDF not found", 404)
    return send_file(
        path,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{invoice.invoice_number}.pdf",
    )


@bp.get("/profile")
@vendor_member_required
def get_profile(current_user, vendor_id):
    vendor = _vendor(vendor_id)
    if not vendor:
        return json_error("Vendor not found", 404)
    return jsonify({"ok": True, "vendor": vendor.to_dict()})


@bp.put("/profile")
@vendor_member_required
def update_profile(current_user, vendor_id):
    vendor = _vendor(vendor_id)
    if not vendor:
        return json_error("Vendor not found", 404)
    payload = json_body()
    if clean_str(payload.get("contact_email")):
        email = normalize_email(payload.get("contact_email"))
        if not email:
            return json_error("contact_email is not a valid email address", 400)
        payload["contact_email"] = email
    apply_fields(vendor, payload, PROFILE_FIELDS)
    db.session.commit()
    return jsonify({"ok": True, "vendor": vendor.to_dict()})


@bp.get("/dashboard")
@vendor_member_required
def dashboard(current_user, vendor_id):
    return jsonify({"ok": True, **vendor_invoices.vendor_dashboard(vendor_id)})


@bp.get("/invoices")
@vendor_member_required
def list_invoices(current_user, vendor_id):
    invoices = vendor_invoices.search_invoices(
        vendor_id=vendor_id,
        status=request.args.get("status"),
        search=clean_str(request.args.get("search")),
    )
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


@bp.post("/invoices")
@vendor_member_required
def submit_invoice(current_user, vendor_id):
    vendor = _vendor(vendor_id)
    if not vendor:
        return json_error("Vendor not found", 404)
    fields = _invoice_fields(request.form)
    pdf_bytes = vendor_invoices.read_pdf_upload(request.files.get("invoice_pdf"))
    invoice = vendor_invoices.submit_invoice(vendor, fields, pdf_bytes)
    current_app.logger.info(
        f"[VENDOR-UPLOAD] user={current_user.id} invoice={invoice.id} bytes={len(pdf_bytes)}"
    )
    return jsonify({"ok": True, "invoice": invoice.to_dict()}), 201


@bp.get("/invoices/<int:invoice_id>")
@vendor_member_required
def get_invoice(invoice_id: int, current_user, vendor_id):
    invoice = vendor_invoices.get_invoice(invoice_id, vendor_id=vendor_id)
    return jsonify({"ok": True, "invoice": invoice.to_dict(with_payments=True)})


@bp.get("/invoices/<int:invoice_id>/download")
@vendor_member_required
def download_invoice(invoice_id: int, current_user, vendor_id):
    invoice = vendor_invoices.get_invoice(invoice_id, vendor_id=vendor_id)
    return send_invoice_pdf(invoice)
