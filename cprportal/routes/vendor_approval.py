from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..constants import API_PREFIX, ROLE_ADMIN, VENDOR_INVOICE_STATUSES
from ..services import notifications, vendor_invoices
from ..shared.errors import json_error
from ..shared.payload import clean_str, json_body
from ..shared.rbac import role_required
from .vendor import send_invoice_pdf

bp = Blueprint(
    "vendor_approval", __name__, url_prefix=f"{API_PREFIX}/admin/vendor-invoices"
)


@bp.get("")
@role_required(ROLE_ADMIN)
def list_invoices(current_user):
    status = request.args.get("status")
    if status and status not in VENDOR_INVOICE_STATUSES:
        return json_error("Unknown vendor invoice status", 400)
    invoices = vendor_invoices.search_invoices(
        status=status, search=clean_str(request.args.get("search"))
    )
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


@bp.get("/<int:invoice_id>")
@role_required(ROLE_ADMIN)
def get_invoice(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    return jsonify({"ok": True, "invoice": invoice.to_dict(with_payments=True)})


@bp.post("/<int:invoice_id>/approve")
@role_required(ROLE_ADMIN)
def review_invoice(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    payload = json_body()
    vendor_invoices.review(
        invoice,
        clean_str(payload.get("action")) or "approve",
        clean_str(payload.get("notes")),
        current_user,
    )
    notified = notifications.vendor_invoice_decision(invoice)
    return jsonify({"ok": True, "invoice": invoice.to_dict(), "vendor_notified": notified})


@bp.post("/<int:invoice_id>/send-to-accounting")
@role_required(ROLE_ADMIN)
def send_to_accounting(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    vendor_invoices.send_to_accounting(invoice)
    current_app.logger.info(
        f"[VENDOR-INVOICE-SEND] invoice={invoice.id} by={current_user.id}"
    )
    return jsonify({"ok": True, "invoice": invoice.to_dict()})


@bp.put("/<int:invoice_id>/notes")
@role_required(ROLE_ADMIN)
def update_notes(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    invoice.admin_notes = clean_str(json_body().get("admin_notes"))
    if invoice.status == "submitted":
        invoice.status = "pending_review"
    db.session.commit()
    return jsonify({"ok": True, "invoice": invoice.to_dict()})


@bp.get("/<int:invoice_id>/download")
@role_required(ROLE_ADMIN)
def download_invoice(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    return send_invoice_pdf(invoice)
