from collections import OrderedDict
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..constants import API_PREFIX, COURSE_STATUSES, INVOICE_STATUSES, PAYMENT_METHODS
from ..models import (
    ClassType,
    CourseRequest,
    Invoice,
    Organization,
    OrganizationLocation,
    Payment,
)
from ..services import attendance, billing
from ..shared.errors import PortalNotFoundError, PortalValidationError, json_error
from ..shared.mail_utils import normalize_email
from ..shared.payload import apply_fields, clean_str, json_body, to_int, to_money
from ..shared.rbac import organization_member_required
from ..shared.time import month_key, parse_date, today

bp = Blueprint("organization", __name__, url_prefix=f"{API_PREFIX}/organization")

PROFILE_FIELDS = (
    "contact_name",
    "contact_email",
    "contact_phone",
    "contact_position",
    "address_street",
    "address_city",
    "address_province",
    "address_postal_code",
    "country",
)


def _org_course(course_id: int, org_id: int) -> CourseRequest:
    course = db.session.get(CourseRequest, course_id)
    if not course or course.organization_id != org_id:
        raise PortalNotFoundError("Course not found")
    return course


def _org_invoices(org_id: int, status: str | None = None) -> list[Invoice]:
    query = db.session.query(Invoice).filter(
        Invoice.organization_id == org_id, Invoice.posted_to_org.is_(True)
    )
    if status:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()


@bp.get("/profile")
@organization_member_required
def get_profile(current_user, org_id):
    org = db.session.get(Organization, org_id)
    if not org:
        return json_error("Organization not found", 404)
    return jsonify({"ok": True, "organization": org.to_dict()})


@bp.put("/profile")
@organization_member_required
def update_profile(current_user, org_id):
    org = db.session.get(Organization, org_id)
    if not org:
        return json_error("Organization not found", 404)
    payload = json_body()
    if clean_str(payload.get("contact_email")) and not normalize_email(
        payload.get("contact_email")
    ):
        return json_error("contact_email is not a valid email address", 400)
    changed = apply_fields(org, payload, PROFILE_FIELDS)
    db.session.commit()
    current_app.logger.info(
        f"[ORG-PROFILE] org={org_id} user={current_user.id} changed={','.join(changed)}"
    )
    return jsonify({"ok": True, "organization": org.to_dict()})


@bp.get("/locations")
@organization_member_required
def list_locations(current_user, org_id):
    locations = (
        db.session.query(OrganizationLocation)
        .filter_by(organization_id=org_id, is_active=True)
        .order_by(OrganizationLocation.location_name)
        .all()
    )
    return jsonify({"ok": True, "locations": [loc.to_dict() for loc in locations]})


# ---------------------------------------------------------------- course requests


@bp.post("/course-request")
@organization_member_required
def create_course_request(current_user, org_id):
    payload = json_body()
    course_type = None
    if payload.get("course_type_id") not in (None, ""):
        course_type = db.session.get(
            ClassType, to_int(payload.get("course_type_id"), "course_type_id")
        )
    if not course_type or not course_type.is_active:
        return json_error("Course type not found or inactive", 400)

    scheduled = parse_date(payload.get("scheduled_date"))
    if not scheduled:
        return json_error("A valid scheduled_date is required", 400)
    if scheduled < today():
        return json_error("Scheduled date cannot be in the past", 400)

    location_text = clean_str(payload.get("location"))
    location_id = None
    if payload.get("location_id") not in (None, ""):
        loc = db.session.get(
            OrganizationLocation, to_int(payload.get("location_id"), "location_id")
        )
        if not loc or loc.organization_id != org_id or not loc.is_active:
            return json_error("Location not found", 400)
        location_id = loc.id
        location_text = location_text or loc.location_name
    if not location_text:
        return json_error("location or location_id is required", 400)

    registered = 0
    if payload.get("registered_students") not in (None, ""):
        registered = to_int(
            payload.get("registered_students"), "registered_students", minimum=0
        )

    course = CourseRequest(
        organization_id=org_id,
        course_type_id=course_type.id,
        location_id=location_id,
        location=location_text,
        date_requested=today(),
        scheduled_date=scheduled,
        registered_students=registered,
        notes=clean_str(payload.get("notes")),
        status="pending",
    )
    db.session.add(course)
    db.session.commit()
    current_app.logger.info(
        f"[COURSE-REQUEST] course={course.id} org={org_id} type={course_type.id} "
        f"date={scheduled}"
    )
    return jsonify({"ok": True, "course": course.to_dict()}), 201


@bp.get("/courses")
@organization_member_required
def list_courses(current_user, org_id):
    query = db.session.query(CourseRequest).filter(
        CourseRequest.organization_id == org_id,
        CourseRequest.archived.is_(False),
    )
    status = request.args.get("status")
    if status:
        if status not in COURSE_STATUSES:
            return json_error("Unknown course status", 400)
        query = query.filter(CourseRequest.status == status)
    courses = query.order_by(
        CourseRequest.scheduled_date.desc(), CourseRequest.id.desc()
    ).all()
    return jsonify({"ok": True, "courses": [c.to_dict() for c in courses]})


@bp.get("/courses/<int:course_id>")
@organization_member_required
def get_course(course_id: int, current_user, org_id):
    course = _org_course(course_id, org_id)
    return jsonify({"ok": True, "course": course.to_dict(with_students=True)})


@bp.get("/courses/<int:course_id>/students")
@organization_member_required
def list_students(course_id: int, current_user, org_id):
    course = _org_course(course_id, org_id)
    return jsonify({"ok": True, "students": [s.to_dict() for s in course.students]})


@bp.post("/courses/<int:course_id>/students")
@organization_member_required
def add_student(course_id: int, current_user, org_id):
    course = _org_course(course_id, org_id)
    try:
        student = attendance.add_student(course, json_body())
        db.session.commit()
    except attendance.AttendanceValidationError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    return jsonify({"ok": True, "student": student.to_dict()}), 201


@bp.post("/upload-students")
@organization_member_required
def upload_students(current_user, org_id):
    payload = json_body()
    course = _org_course(
        to_int(payload.get("course_request_id"), "course_request_id"), org_id
    )
    rows = payload.get("students")
    if not isinstance(rows, list) or not rows:
        return json_error("students must be a non-empty list", 400)
    known = {s.email.lower() for s in course.students if s.email}
    added = skipped = 0
    try:
        for row in rows:
            if not isinstance(row, dict):
                skipped += 1
                continue
            email = (clean_str(row.get("email")) or "").lower()
            if email and email in known:
                skipped += 1
                continue
            try:
                attendance.add_student(course, row)
            except attendance.AttendanceValidationError:
                if course.status in ("completed", "cancelled"):
                    raise
                skipped += 1
                continue
            if email:
                known.add(email)
            added += 1
        db.session.commit()
    except attendance.AttendanceValidationError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    current_app.logger.info(
        f"[STUDENT-UPLOAD] course={course.id} added={added} skipped={skipped}"
    )
    return jsonify({"ok": True, "added": added, "skipped": skipped})


# ---------------------------------------------------------------- invoices


@bp.get("/invoices")
@organization_member_required
def list_invoices(current_user, org_id):
    status = request.args.get("status")
    if status and status not in INVOICE_STATUSES:
        return json_error("Unknown invoice status", 400)
    invoices = _org_invoices(org_id, status)
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


@bp.get("/invoices/<int:invoice_id>")
@organization_member_required
def get_invoice(invoice_id: int, current_user, org_id):
    invoice = billing.get_invoice(invoice_id, organization_id=org_id)
    return jsonify({"ok": True, "invoice": billing.invoice_detail(invoice)})


@bp.post("/invoices/<int:invoice_id>/payment-submission")
@organization_member_required
def submit_payment(invoice_id: int, current_user, org_id):
    invoice = billing.get_invoice(invoice_id, organization_id=org_id)
    payload = json_body()
    method = clean_str(payload.get("payment_method"))
    if method and method not in PAYMENT_METHODS:
        raise PortalValidationError("Unknown payment method")
    payment = billing.submit_payment(
        invoice,
        to_money(payload.get("amount"), "amount"),
        parse_date(payload.get("payment_date")),
        method,
        clean_str(payload.get("reference_number")),
        clean_str(payload.get("notes")),
    )
    return jsonify({"ok": True, "payment": payment.to_dict()}), 201


@bp.get("/payments")
@organization_member_required
def list_payments(current_user, org_id):
    payments = (
        db.session.query(Payment)
        .join(Invoice, Payment.invoice_id == Invoice.id)
        .filter(Invoice.organization_id == org_id, Invoice.posted_to_org.is_(True))
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .all()
    )
    return jsonify({"ok": True, "payments": [p.to_dict() for p in payments]})


@bp.get("/billing-summary")
@organization_member_required
def billing_summary(current_user, org_id):
    return jsonify({"ok": True, "summary": billing.organization_summary(org_id)})


@bp.get("/paid-invoices")
@organization_member_required
def paid_invoices(current_user, org_id):
    invoices = _org_invoices(org_id, "paid")
    return jsonify({"ok": True, "invoices": [i.to_dict() for i in invoices]})


def _last_twelve_months() -> list[str]:
    current = today()
    year, month = current.year, current.month
    keys = []
    for _ in range(12):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


@bp.get("/analytics")
@organization_member_required
def analytics(current_user, org_id):
    courses = db.session.query(CourseRequest).filter_by(organization_id=org_id).all()
    per_month = OrderedDict((key, 0) for key in _last_twelve_months())
    for course in courses:
        key = month_key(course.date_requested)
        if key in per_month:
            per_month[key] += 1

    completed = [c for c in courses if c.status == "completed"]
    enrolled = sum(c.student_count for c in completed)
    trained = sum(c.attended_count for c in completed)
    rate = round(trained / enrolled * 100, 1) if enrolled else None

    spend: dict[str, Decimal] = {}
    for invoice in _org_invoices(org_id):
        name = invoice.course_type_name or "Other"
        spend[name] = spend.get(name, Decimal("0.00")) + invoice.amount

    return jsonify(
        {
            "ok": True,
            "course_requests_by_month": [
                {"month": key, "count": count} for key, count in per_month.items()
            ],
            "students_trained": trained,
            "attendance_rate": rate,
            "spend_by_course_type": [
                {"course_type": name, "total": float(total)}
                for name, total in sorted(spend.items())
            ],
        }
    )
