from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..constants import (
    API_PREFIX,
    INVOICE_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    ROLE_ACCOUNTANT,
    ROLE_INSTRUCTOR,
    VENDOR_INVOICE_ACCOUNTING,
    VENDOR_PAYMENT_STATUSES,
)
from ..models import (
    ClassType,
    CoursePricing,
    CourseRequest,
    Invoice,
    Organization,
    Payment,
    User,
    VendorPayment,
)
from ..services import billing, notifications, payroll, vendor_invoices
from ..shared.errors import PortalNotFoundError, PortalValidationError, json_error
from ..shared.payload import clean_str, json_body, to_int, to_money
from ..shared.rbac import role_required
from ..shared.time import parse_date, today

bp = Blueprint("accounting", __name__, url_prefix=f"{API_PREFIX}/accounting")


def _payment_fields(payload: dict) -> dict:
    method = clean_str(payload.get("payment_method"))
    if method and method not in PAYMENT_METHODS:
        raise PortalValidationError("Unknown payment method")
    return {
        "amount": to_money(payload.get("amount"), "amount"),
        "payment_date": parse_date(payload.get("payment_date")),
        "payment_method": method,
        "reference_number": clean_str(payload.get("reference_number")),
        "notes": clean_str(payload.get("notes")),
    }


@bp.get("/dashboard")
@role_required(ROLE_ACCOUNTANT)
def dashboard(current_user):
    return jsonify({"ok": True, "summary": billing.accounting_summary()})


# ---------------------------------------------------------------- pricing


@bp.get("/course-pricing")
@role_required(ROLE_ACCOUNTANT)
def list_pricing(current_user):
    rows = (
        db.session.query(CoursePricing)
        .filter(CoursePricing.is_active.is_(True))
        .order_by(CoursePricing.organization_id, CoursePricing.course_type_id)
        .all()
    )
    return jsonify({"ok": True, "pricing": [r.to_dict() for r in rows]})


@bp.post("/course-pricing")
@role_required(ROLE_ACCOUNTANT)
def create_pricing(current_user):
    payload = json_body()
    org_id = to_int(payload.get("organization_id"), "organization_id")
    type_id = to_int(payload.get("course_type_id"), "course_type_id")
    if not db.session.get(Organization, org_id):
        raise PortalNotFoundError("Organization not found")
    if not db.session.get(ClassType, type_id):
        raise PortalNotFoundError("Course type not found")
    pricing = billing.set_pricing(
        org_id,
        type_id,
        to_money(payload.get("price_per_student"), "price_per_student"),
        parse_date(payload.get("effective_date")),
    )
    current_app.logger.info(
        f"[PRICING-SET] org={org_id} type={type_id} price={pricing.price_per_student} "
        f"by={current_user.id}"
    )
    return jsonify({"ok": True, "pricing": pricing.to_dict()}), 201


def _get_pricing(pricing_id: int) -> CoursePricing:
    pricing = db.session.get(CoursePricing, pricing_id)
    if not pricing:
        raise PortalNotFoundError("Pricing not found")
    return pricing


@bp.put("/course-pricing/<int:pricing_id>")
@role_required(ROLE_ACCOUNTANT)
def update_pricing(pricing_id: int, current_user):
    pricing = _get_pricing(pricing_id)
    payload = json_body()
    if "price_per_student" in payload:
        price = to_money(payload.get("price_per_student"), "price_per_student")
        if price <= 0:
            return json_error("Price per student must be greater than zero", 400)
        pricing.price_per_student = price
    if "effective_date" in payload:
        effective = parse_date(payload.get("effective_date"))
        if not effective:
            return json_error("A valid effective_date is required", 400)
        pricing.effective_date = effective
    db.session.commit()
    return jsonify({"ok": True, "pricing": pricing.to_dict()})


@bp.delete("/course-pricing/<int:pricing_id>")
@role_required(ROLE_ACCOUNTANT)
def deactivate_pricing(pricing_id: int, current_user):
    pricing = _get_pricing(pricing_id)
    pricing.is_active = False
    db.session.commit()
    return jsonify({"ok": True, "message": "Pricing deactivated"})


# ---------------------------------------------------------------- invoices


@bp.get("/billing-queue")
@role_required(ROLE_ACCOUNTANT)
def billing_queue(current_user):
    return jsonify({"ok": True, "courses": billing.billing_queue()})


@bp.get("/invoices")
@role_required(ROLE_ACCOUNTANT)
def list_invoices(current_user):
    query = db.session.query(Invoice)
    status = request.args.get("status")
    if status:
        if status not in INVOICE_STATUSES:
            return json_error("Unknown invoice status", 400)
        query = query.filter(Invoice.status == status)
    org_id = request.args.get("organization_id")
    if org_id:
        query = query.filter(
            Invoice.organization_id == to_int(org_id, "organization_id")
        )
    invoices = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


@bp.post("/invoices")
@role_required(ROLE_ACCOUNTANT)
def create_invoice(current_user):
    payload = json_body()
    course_id = payload.get("course_id", payload.get("course_request_id"))
    if course_id in (None, ""):
        return json_error("course_id is required", 400)
    course = db.session.get(CourseRequest, to_int(course_id, "course_id"))
    if not course:
        return json_error("Course not found", 404)
    invoice = billing.create_invoice(course)
    return jsonify({"ok": True, "invoice": invoice.to_dict()}), 201


@bp.get("/invoices/<int:invoice_id>")
@role_required(ROLE_ACCOUNTANT)
def get_invoice(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    return jsonify({"ok": True, "invoice": billing.invoice_detail(invoice)})


@bp.put("/invoices/<int:invoice_id>")
@role_required(ROLE_ACCOUNTANT)
def update_invoice(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    payload = json_body()
    due_date = None
    if "due_date" in payload:
        due_date = parse_date(payload.get("due_date"))
        if not due_date:
            return json_error("A valid due_date is required", 400)
    billing.update_invoice(
        invoice,
        notes=clean_str(payload.get("notes")),
        due_date=due_date,
        touch_notes="notes" in payload,
    )
    return jsonify({"ok": True, "invoice": invoice.to_dict()})


@bp.post("/invoices/<int:invoice_id>/post-to-org")
@role_required(ROLE_ACCOUNTANT)
def post_invoice(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    billing.post_to_org(invoice)
    emailed = notifications.invoice_email(invoice)
    db.session.commit()
    return jsonify({"ok": True, "invoice": invoice.to_dict(), "email_sent": emailed})


@bp.post("/invoices/<int:invoice_id>/email")
@role_required(ROLE_ACCOUNTANT)
def email_invoice(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    emailed = notifications.invoice_email(invoice)
    db.session.commit()
    return jsonify({"ok": True, "invoice": invoice.to_dict(), "email_sent": emailed})


# ---------------------------------------------------------------- payments


@bp.get("/invoices/<int:invoice_id>/payments")
@role_required(ROLE_ACCOUNTANT)
def invoice_payments(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    return jsonify({"ok": True, "payments": [p.to_dict() for p in invoice.payments]})


@bp.post("/invoices/<int:invoice_id>/payments")
@role_required(ROLE_ACCOUNTANT)
def record_payment(invoice_id: int, current_user):
    invoice = billing.get_invoice(invoice_id)
    fields = _payment_fields(json_body())
    payment = billing.record_payment(
        invoice,
        fields["amount"],
        fields["payment_date"],
        fields["payment_method"],
        fields["reference_number"],
        fields["notes"],
    )
    return (
        jsonify({"ok": True, "payment": payment.to_dict(), "invoice": invoice.to_dict()}),
        201,
    )


@bp.get("/payments")
@role_required(ROLE_ACCOUNTANT)
def list_payments(current_user):
    query = db.session.query(Payment)
    status = request.args.get("status")
    if status:
        if status not in PAYMENT_STATUSES:
            return json_error("Unknown payment status", 400)
        query = query.filter(Payment.status == status)
    payments = query.order_by(Payment.payment_date.desc(), Payment.id.desc()).all()
    return jsonify({"ok": True, "payments": [p.to_dict() for p in payments]})


@bp.get("/payment-verifications")
@role_required(ROLE_ACCOUNTANT)
def pending_verifications(current_user):
    payments = (
        db.session.query(Payment)
        .filter(Payment.status == "pending_verification")
        .order_by(Payment.submitted_by_org_at, Payment.id)
        .all()
    )
    return jsonify({"ok": True, "payments": [p.to_dict() for p in payments]})


@bp.post("/payments/<int:payment_id>/verify")
@role_required(ROLE_ACCOUNTANT)
def verify_payment(payment_id: int, current_user):
    payment = billing.get_payment(payment_id)
    payload = json_body()
    billing.verify_payment(
        payment,
        clean_str(payload.get("action")),
        clean_str(payload.get("notes")),
        current_user,
    )
    return jsonify(
        {"ok": True, "payment": payment.to_dict(), "invoice": payment.invoice.to_dict()}
    )


@bp.post("/payments/<int:payment_id>/reverse")
@role_required(ROLE_ACCOUNTANT)
def reverse_payment(payment_id: int, current_user):
    payment = billing.get_payment(payment_id)
    billing.reverse_payment(payment, clean_str(json_body().get("reason")), current_user)
    return jsonify(
        {"ok": True, "payment": payment.to_dict(), "invoice": payment.invoice.to_dict()}
    )


@bp.post("/trigger-overdue-update")
@role_required(ROLE_ACCOUNTANT)
def trigger_overdue_update(current_user):
    return jsonify({"ok": True, "updated": billing.mark_overdue()})


# ---------------------------------------------------------------- reports


@bp.get("/reports/revenue")
@role_required(ROLE_ACCOUNTANT)
def revenue_report(current_user):
    raw = request.args.get("year")
    year = to_int(raw, "year", minimum=2000) if raw else today().year
    return jsonify({"ok": True, "year": year, "months": billing.revenue_report(year)})


@bp.get("/reports/aging")
@role_required(ROLE_ACCOUNTANT)
def aging_report(current_user):
    return jsonify({"ok": True, **billing.aging_report()})


# ---------------------------------------------------------------- vendor invoices


@bp.get("/vendor-invoices")
@role_required(ROLE_ACCOUNTANT)
def list_vendor_invoices(current_user):
    status = request.args.get("status")
    if status and status not in VENDOR_INVOICE_ACCOUNTING:
        return json_error("Unknown vendor invoice status", 400)
    invoices = vendor_invoices.search_invoices(
        status=status or VENDOR_INVOICE_ACCOUNTING
    )
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


def _accounting_vendor_invoice(invoice_id: int):
    invoice = vendor_invoices.get_invoice(invoice_id)
    if invoice.status not in VENDOR_INVOICE_ACCOUNTING:
        raise PortalNotFoundError("Vendor invoice not found")
    return invoice


@bp.get("/vendor-invoices/<int:invoice_id>")
@role_required(ROLE_ACCOUNTANT)
def vendor_invoice_detail(invoice_id: int, current_user):
    invoice = _accounting_vendor_invoice(invoice_id)
    return jsonify({"ok": True, "invoice": invoice.to_dict(with_payments=True)})


@bp.post("/vendor-invoices/<int:invoice_id>/payments")
@role_required(ROLE_ACCOUNTANT)
def record_vendor_payment(invoice_id: int, current_user):
    invoice = vendor_invoices.get_invoice(invoice_id)
    payment = vendor_invoices.record_payment(
        invoice, _payment_fields(json_body()), current_user
    )
    return (
        jsonify({"ok": True, "payment": payment.to_dict(), "invoice": invoice.to_dict()}),
        201,
    )


@bp.get("/vendor-payments")
@role_required(ROLE_ACCOUNTANT)
def list_vendor_payments(current_user):
    query = db.session.query(VendorPayment)
    status = request.args.get("status")
    if status:
        if status not in VENDOR_PAYMENT_STATUSES:
            return json_error("Unknown vendor payment status", 400)
        query = query.filter(VendorPayment.status == status)
    payments = query.order_by(
        VendorPayment.payment_date.desc(), VendorPayment.id.desc()
    ).all()
    return jsonify({"ok": True, "payments": [p.to_dict() for p in payments]})


# ---------------------------------------------------------------- instructor pay


@bp.get("/payment-requests")
@role_required(ROLE_ACCOUNTANT)
def list_payment_requests(current_user):
    instructor_id = request.args.get("instructor_id")
    rows = payroll.list_requests(
        status=request.args.get("status"),
        instructor_id=to_int(instructor_id, "instructor_id") if instructor_id else None,
    )
    return jsonify({"ok": True, "payment_requests": [r.to_dict() for r in rows]})


@bp.get("/payment-requests/stats")
@role_required(ROLE_ACCOUNTANT)
def payment_request_stats(current_user):
    return jsonify({"ok": True, "stats": payroll.stats()})


@bp.get("/payment-requests/<int:request_id>")
@role_required(ROLE_ACCOUNTANT)
def get_payment_request(request_id: int, current_user):
    payment_request = payroll.get_request(request_id)
    return jsonify(
        {"ok": True, "payment_request": payment_request.to_dict(with_timesheet=True)}
    )


@bp.post("/payment-requests/<int:request_id>/process")
@role_required(ROLE_ACCOUNTANT)
def process_payment_request(request_id: int, current_user):
    payment_request = payroll.get_request(request_id)
    payload = json_body()
    payroll.process(
        payment_request,
        clean_str(payload.get("action")),
        clean_str(payload.get("notes")),
        current_user,
        method=clean_str(payload.get("payment_method")),
        payment_date=parse_date(payload.get("payment_date")),
    )
    return jsonify({"ok": True, "payment_request": payment_request.to_dict()})


@bp.post("/payment-requests/bulk-process")
@role_required(ROLE_ACCOUNTANT)
def bulk_process_payment_requests(current_user):
    payload = json_body()
    raw_ids = payload.get("request_ids")
    if not isinstance(raw_ids, list) or not raw_ids:
        return json_error("request_ids must be a non-empty list", 400)
    request_ids = [to_int(value, "request_ids") for value in raw_ids]
    results = payroll.bulk_process(
        request_ids,
        clean_str(payload.get("action")),
        clean_str(payload.get("notes")),
        current_user,
        method=clean_str(payload.get("payment_method")),
    )
    return jsonify(
        {
            "ok": True,
            "results": results,
            "processed": sum(1 for r in results if r["ok"]),
            "failed": sum(1 for r in results if not r["ok"]),
        }
    )


@bp.get("/instructors/<int:instructor_id>/payment-history")
@role_required(ROLE_ACCOUNTANT)
def instructor_payment_history(instructor_id: int, current_user):
    instructor = db.session.get(User, instructor_id)
    if not instructor or instructor.role != ROLE_INSTRUCTOR:
        raise PortalNotFoundError("Instructor not found")
    return jsonify(
        {
            "ok": True,
            "instructor": {"id": instructor.id, "name": instructor.full_name},
            **payroll.history(instructor.id),
        }
    )
