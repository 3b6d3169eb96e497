from flask import Blueprint, jsonify, request
from sqlalchemy import func

from ..app import db
from ..constants import (
    API_PREFIX,
    ROLE_ORGANIZATION,
    ROLE_VENDOR,
    ROLES,
    USER_STATUSES,
    VENDOR_INVOICE_REVIEWABLE,
)
from ..models import (
    AuditLog,
    ClassType,
    CourseRequest,
    EmailTemplate,
    Invoice,
    Organization,
    OrganizationLocation,
    User,
    Vendor,
    VendorInvoice,
)
from ..services import system_config
from ..shared.errors import (
    PortalConflictError,
    PortalNotFoundError,
    PortalValidationError,
    json_error,
)
from ..shared.mail_utils import normalize_email
from ..shared.passwords import password_problem
from ..shared.payload import (
    apply_fields,
    clean_str,
    json_body,
    require_str,
    to_bool,
    to_int,
)
from ..shared.rbac import sysadmin_required
from ..shared.time import now_utc, parse_date

bp = Blueprint("sysadmin", __name__, url_prefix=f"{API_PREFIX}/sysadmin")

ORG_FIELDS = (
    "contact_name",
    "contact_email",
    "contact_phone",
    "contact_position",
    "address_street",
    "address_city",
    "address_province",
    "address_postal_code",
    "country",
    "ceo_name",
    "ceo_email",
    "ceo_phone",
    "organization_comments",
)
LOCATION_FIELDS = (
    "address",
    "city",
    "province",
    "postal_code",
    "contact_first_name",
    "contact_last_name",
    "contact_email",
    "contact_phone",
)
VENDOR_FIELDS = (
    "contact_first_name",
    "contact_last_name",
    "contact_email",
    "contact_phone",
    "address",
    "vendor_type",
)
USER_FIELDS = ("first_name", "last_name", "phone", "mobile", "user_comments")


def _audit(current_user, action: str, details: str) -> None:
    db.session.add(AuditLog(user_id=current_user.id, action=action, details=details))


def _get_or_404(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if not obj:
        raise PortalNotFoundError(f"{label} not found")
    return obj


def _check_email_field(payload: dict, key: str) -> None:
    if clean_str(payload.get(key)) and not normalize_email(payload.get(key)):
        raise PortalValidationError(f"{key} is not a valid email address")


def _name_taken(model, column, value: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(model.id).filter(func.lower(column) == value.lower())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.first() is not None


# ---------------------------------------------------------------- dashboard


@bp.get("/dashboard")
@sysadmin_required
def dashboard(current_user):
    users_by_role = dict(
        db.session.query(User.role, func.count(User.id))
        .filter(User.status == "active")
        .group_by(User.role)
        .all()
    )
    courses_by_status = dict(
        db.session.query(CourseRequest.status, func.count(CourseRequest.id))
        .group_by(CourseRequest.status)
        .all()
    )
    return jsonify(
        {
            "ok": True,
            "users_by_role": {role: users_by_role.get(role, 0) for role in ROLES},
            "total_users": sum(users_by_role.values()),
            "organizations": db.session.query(Organization).count(),
            "locations": db.session.query(OrganizationLocation)
            .filter(OrganizationLocation.is_active.is_(True))
            .count(),
            "vendors": db.session.query(Vendor)
            .filter(Vendor.is_active.is_(True))
            .count(),
            "active_course_types": db.session.query(ClassType)
            .filter(ClassType.is_active.is_(True))
            .count(),
            "courses_by_status": courses_by_status,
            "vendor_invoices_awaiting_review": db.session.query(VendorInvoice)
            .filter(VendorInvoice.status.in_(VENDOR_INVOICE_REVIEWABLE))
            .count(),
        }
    )


# ---------------------------------------------------------------- course types


def _apply_course_type(course_type: ClassType, payload: dict) -> None:
    if "name" in payload or course_type.name is None:
        name = require_str(payload, "name", "Course name")
        if _name_taken(ClassType, ClassType.name, name, course_type.id):
            raise PortalConflictError("A course type with this name already exists")
        course_type.name = name
    if "duration_minutes" in payload or course_type.duration_minutes is None:
        course_type.duration_minutes = to_int(
            payload.get("duration_minutes"), "duration_minutes", minimum=1
        )
    if "max_students" in payload:
        raw = payload.get("max_students")
        course_type.max_students = (
            None if raw in (None, "") else to_int(raw, "max_students", minimum=1)
        )
    apply_fields(course_type, payload, ("description", "course_code"))
    if "is_active" in payload:
        course_type.is_active = bool(to_bool(payload.get("is_active")))


@bp.get("/courses")
@sysadmin_required
def list_course_types(current_user):
    types = db.session.query(ClassType).order_by(ClassType.name).all()
    return jsonify({"ok": True, "courses": [t.to_dict() for t in types]})


@bp.post("/courses")
@sysadmin_required
def create_course_type(current_user):
    course_type = ClassType()
    _apply_course_type(course_type, json_body())
    db.session.add(course_type)
    db.session.flush()
    _audit(current_user, "course_type_create", f"id={course_type.id} name={course_type.name}")
    db.session.commit()
    return jsonify({"ok": True, "course": course_type.to_dict()}), 201


@bp.put("/courses/<int:course_type_id>")
@sysadmin_required
def update_course_type(course_type_id: int, current_user):
    course_type = _get_or_404(ClassType, course_type_id, "Course type")
    _apply_course_type(course_type, json_body())
    db.session.commit()
    return jsonify({"ok": True, "course": course_type.to_dict()})


@bp.delete("/courses/<int:course_type_id>")
@sysadmin_required
def delete_course_type(course_type_id: int, current_user):
    course_type = _get_or_404(ClassType, course_type_id, "Course type")
    course_type.is_active = False
    _audit(current_user, "course_type_deactivate", f"id={course_type.id}")
    db.session.commit()
    return jsonify({"ok": True, "message": "Course type deactivated"})


# ---------------------------------------------------------------- users


def _check_user_links(user: User) -> None:
    # lookups must not flush the half-edited user
    with db.session.no_autoflush:
        org = db.session.get(Organization, user.organization_id) if user.organization_id else None
        vendor = db.session.get(Vendor, user.vendor_id) if user.vendor_id else None
        loc = (
            db.session.get(OrganizationLocation, user.location_id)
            if user.location_id
            else None
        )
    if user.role == ROLE_ORGANIZATION and not org:
        raise PortalValidationError(
            "Organization users require a valid organization_id"
        )
    if user.role == ROLE_VENDOR and not vendor:
        raise PortalValidationError("Vendor users require a valid vendor_id")
    if user.organization_id and not org:
        raise PortalValidationError("organization_id does not match an organization")
    if user.vendor_id and not vendor:
        raise PortalValidationError("vendor_id does not match a vendor")
    if user.location_id:
        if not loc or loc.organization_id != user.organization_id:
            raise PortalValidationError(
                "Location must belong to the user's organization"
            )


def _apply_user(user: User, payload: dict, creating: bool) -> None:
    if creating or "username" in payload:
        username = require_str(payload, "username", "Username")
        if _name_taken(User, User.username, username, user.id):
            raise PortalConflictError("Username already exists")
        user.username = username
    if creating or "email" in payload:
        email = normalize_email(payload.get("email"))
        if not email:
            raise PortalValidationError("A valid email address is required")
        if _name_taken(User, User.email, email, user.id):
            raise PortalConflictError("Email address already exists")
        user.email = email
    if creating or "role" in payload:
        role = clean_str(payload.get("role"))
        if role not in ROLES:
            raise PortalValidationError("Invalid role")
        user.role = role
    if "status" in payload:
        status = clean_str(payload.get("status"))
        if status not in USER_STATUSES:
            raise PortalValidationError("Invalid status")
        user.status = status
    for key in ("organization_id", "vendor_id", "location_id"):
        if key in payload:
            raw = payload.get(key)
            setattr(user, key, None if raw in (None, "") else to_int(raw, key))
    if "date_onboarded" in payload:
        user.date_onboarded = parse_date(payload.get("date_onboarded"))
    apply_fields(user, payload, USER_FIELDS)
    if creating or clean_str(payload.get("password")):
        password = payload.get("password") or ""
        problem = password_problem(password)
        if problem:
            raise PortalValidationError(problem)
        user.set_password(password)
    _check_user_links(user)


@bp.get("/users")
@sysadmin_required
def list_users(current_user):
    query = db.session.query(User)
    role = request.args.get("role")
    if role:
        query = query.filter(User.role == role)
    status = request.args.get("status")
    if status:
        query = query.filter(User.status == status)
    users = query.order_by(User.username).all()
    return jsonify({"ok": True, "users": [u.to_dict() for u in users]})


@bp.post("/users")
@sysadmin_required
def create_user(current_user):
    payload = json_body()
    user = User(status="active")
    _apply_user(user, payload, creating=True)
    db.session.add(user)
    db.session.flush()
    _audit(current_user, "user_create", f"user_id={user.id} role={user.role}")
    db.session.commit()
    return jsonify({"ok": True, "user": user.to_dict()}), 201


@bp.get("/users/<int:user_id>")
@sysadmin_required
def get_user(user_id: int, current_user):
    user = _get_or_404(User, user_id, "User")
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.put("/users/<int:user_id>")
@sysadmin_required
def update_user(user_id: int, current_user):
    user = _get_or_404(User, user_id, "User")
    payload = json_body()
    if user.id == current_user.id and payload.get("status") == "inactive":
        return json_error("You cannot deactivate your own account", 400)
    _apply_user(user, payload, creating=False)
    _audit(
        current_user,
        "user_update",
        f"user_id={user.id} fields={','.join(sorted(payload.keys() - {'password'}))}",
    )
    db.session.commit()
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.delete("/users/<int:user_id>")
@sysadmin_required
def deactivate_user(user_id: int, current_user):
    user = _get_or_404(User, user_id, "User")
    if user.id == current_user.id:
        return json_error("You cannot deactivate your own account", 400)
    user.status = "inactive"
    _audit(current_user, "user_deactivate", f"user_id={user.id}")
    db.session.commit()
    return jsonify({"ok": True, "message": "User deactivated"})


# ---------------------------------------------------------------- organizations


def _apply_org(org: Organization, payload: dict) -> None:
    if "name" in payload or org.name is None:
        name = require_str(payload, "name", "Organization name")
        if _name_taken(Organization, Organization.name, name, org.id):
            raise PortalConflictError("An organization with this name already exists")
        org.name = name
    _check_email_field(payload, "contact_email")
    _check_email_field(payload, "ceo_email")
    apply_fields(org, payload, ORG_FIELDS)
    if "is_active" in payload:
        org.is_active = bool(to_bool(payload.get("is_active")))


def _org_summary(org: Organization) -> dict:
    data = org.to_dict()
    data["location_count"] = sum(1 for loc in org.locations if loc.is_active)
    data["user_count"] = (
        db.session.query(User).filter(User.organization_id == org.id).count()
    )
    return data


@bp.get("/organizations")
@sysadmin_required
def list_organizations(current_user):
    orgs = db.session.query(Organization).order_by(Organization.name).all()
    return jsonify({"ok": True, "organizations": [_org_summary(o) for o in orgs]})


@bp.post("/organizations")
@sysadmin_required
def create_organization(current_user):
    org = Organization()
    _apply_org(org, json_body())
    db.session.add(org)
    db.session.flush()
    _audit(current_user, "organization_create", f"id={org.id} name={org.name}")
    db.session.commit()
    return jsonify({"ok": True, "organization": org.to_dict()}), 201


@bp.get("/organizations/<int:org_id>")
@sysadmin_required
def get_organization(org_id: int, current_user):
    org = _get_or_404(Organization, org_id, "Organization")
    data = _org_summary(org)
    data["locations"] = [loc.to_dict() for loc in org.locations]
    return jsonify({"ok": True, "organization": data})


@bp.put("/organizations/<int:org_id>")
@sysadmin_required
def update_organization(org_id: int, current_user):
    org = _get_or_404(Organization, org_id, "Organization")
    _apply_org(org, json_body())
    db.session.commit()
    return jsonify({"ok": True, "organization": org.to_dict()})


@bp.delete("/organizations/<int:org_id>")
@sysadmin_required
def delete_organization(org_id: int, current_user):
    org = _get_or_404(Organization, org_id, "Organization")
    in_use = (
        db.session.query(CourseRequest.id).filter_by(organization_id=org.id).first()
        or db.session.query(Invoice.id).filter_by(organization_id=org.id).first()
        or db.session.query(User.id).filter_by(organization_id=org.id).first()
    )
    if in_use:
        return json_error(
            "Cannot delete organization with users, course requests or invoices", 409
        )
    _audit(current_user, "organization_delete", f"id={org.id} name={org.name}")
    db.session.delete(org)
    db.session.commit()
    return jsonify({"ok": True, "message": "Organization deleted"})


# ---------------------------------------------------------------- locations


def _apply_location(loc: OrganizationLocation, payload: dict) -> None:
    if "location_name" in payload or loc.location_name is None:
        name = require_str(payload, "location_name", "Location name")
        clash = (
            db.session.query(OrganizationLocation.id)
            .filter(
                OrganizationLocation.organization_id == loc.organization_id,
                func.lower(OrganizationLocation.location_name) == name.lower(),
            )
        )
        if loc.id is not None:
            clash = clash.filter(OrganizationLocation.id != loc.id)
        if clash.first():
            raise PortalConflictError(
                "A location with this name already exists for the organization"
            )
        loc.location_name = name
    _check_email_field(payload, "contact_email")
    apply_fields(loc, payload, LOCATION_FIELDS)
    if "is_active" in payload:
        loc.is_active = bool(to_bool(payload.get("is_active")))


@bp.get("/organizations/<int:org_id>/locations")
@sysadmin_required
def list_locations(org_id: int, current_user):
    org = _get_or_404(Organization, org_id, "Organization")
    include_inactive = to_bool(request.args.get("include_inactive")) is True
    locations = [
        loc.to_dict() for loc in org.locations if include_inactive or loc.is_active
    ]
    return jsonify({"ok": True, "locations": locations})


@bp.post("/organizations/<int:org_id>/locations")
@sysadmin_required
def create_location(org_id: int, current_user):
    org = _get_or_404(Organization, org_id, "Organization")
    loc = OrganizationLocation(organization_id=org.id, is_active=True)
    _apply_location(loc, json_body())
    db.session.add(loc)
    db.session.commit()
    return jsonify({"ok": True, "location": loc.to_dict()}), 201


@bp.put("/locations/<int:location_id>")
@sysadmin_required
def update_location(location_id: int, current_user):
    loc = _get_or_404(OrganizationLocation, location_id, "Location")
    _apply_location(loc, json_body())
    db.session.commit()
    return jsonify({"ok": True, "location": loc.to_dict()})


@bp.delete("/locations/<int:location_id>")
@sysadmin_required
def deactivate_location(location_id: int, current_user):
    loc = _get_or_404(OrganizationLocation, location_id, "Location")
    loc.is_active = False
    db.session.commit()
    return jsonify({"ok": True, "message": "Location deactivated"})


# ---------------------------------------------------------------- vendors


def _apply_vendor(vendor: Vendor, payload: dict) -> None:
    if "name" in payload or vendor.name is None:
        name = require_str(payload, "name", "Vendor name")
        if _name_taken(Vendor, Vendor.name, name, vendor.id):
            raise PortalConflictError("A vendor with this name already exists")
        vendor.name = name
    _check_email_field(payload, "contact_email")
    apply_fields(vendor, payload, VENDOR_FIELDS)
    if vendor.contact_email:
        vendor.contact_email = vendor.contact_email.lower()
    if "is_active" in payload:
        vendor.is_active = bool(to_bool(payload.get("is_active")))


@bp.get("/vendors")
@sysadmin_required
def list_vendors(current_user):
    vendors = db.session.query(Vendor).order_by(Vendor.name).all()
    return jsonify({"ok": True, "vendors": [v.to_dict() for v in vendors]})


@bp.post("/vendors")
@sysadmin_required
def create_vendor(current_user):
    vendor = Vendor(is_active=True)
    _apply_vendor(vendor, json_body())
    db.session.add(vendor)
    db.session.flush()
    _audit(current_user, "vendor_create", f"id={vendor.id} name={vendor.name}")
    db.session.commit()
    return jsonify({"ok": True, "vendor": vendor.to_dict()}), 201


@bp.put("/vendors/<int:vendor_id>")
@sysadmin_required
def update_vendor(vendor_id: int, current_user):
    vendor = _get_or_404(Vendor, vendor_id, "Vendor")
    _apply_vendor(vendor, json_body())
    db.session.commit()
    return jsonify({"ok": True, "vendor": vendor.to_dict()})


@bp.delete("/vendors/<int:vendor_id>")
@sysadmin_required
def deactivate_vendor(vendor_id: int, current_user):
    vendor = _get_or_404(Vendor, vendor_id, "Vendor")
    vendor.is_active = False
    _audit(current_user, "vendor_deactivate", f"id={vendor.id}")
    db.session.commit()
    return jsonify({"ok": True, "message": "Vendor deactivated"})


# ---------------------------------------------------------------- email templates


@bp.get("/email-templates")
@sysadmin_required
def list_email_templates(current_user):
    templates = (
        db.session.query(EmailTemplate)
        .filter(EmailTemplate.deleted_at.is_(None))
        .order_by(EmailTemplate.category, EmailTemplate.name)
        .all()
    )
    return jsonify({"ok": True, "templates": [t.to_dict() for t in templates]})


def _apply_template(template: EmailTemplate, payload: dict, creating: bool) -> None:
    values = {
        field: require_str(payload, field)
        for field in ("name", "key", "category", "subject", "body")
        if creating or field in payload
    }
    # check clashes on incoming values before touching the row
    for field, column in (("name", EmailTemplate.name), ("key", EmailTemplate.key)):
        if field not in values:
            continue
        clash = db.session.query(EmailTemplate.id).filter(column == values[field])
        if template.id is not None:
            clash = clash.filter(EmailTemplate.id != template.id)
        if clash.first():
            raise PortalConflictError(f"An email template with this {field} exists")
    for field, value in values.items():
        setattr(template, field, value)
    apply_fields(template, payload, ("sub_category",))
    if "is_active" in payload:
        template.is_active = bool(to_bool(payload.get("is_active")))


@bp.post("/email-templates")
@sysadmin_required
def create_email_template(current_user):
    template = EmailTemplate(created_by=current_user.id, last_modified_by=current_user.id)
    _apply_template(template, json_body(), creating=True)
    db.session.add(template)
    db.session.commit()
    return jsonify({"ok": True, "template": template.to_dict()}), 201


@bp.put("/email-templates/<int:template_id>")
@sysadmin_required
def update_email_template(template_id: int, current_user):
    template = _get_or_404(EmailTemplate, template_id, "Email template")
    if template.deleted_at:
        raise PortalNotFoundError("Email template not found")
    _apply_template(template, json_body(), creating=False)
    template.last_modified_by = current_user.id
    db.session.commit()
    return jsonify({"ok": True, "template": template.to_dict()})


@bp.delete("/email-templates/<int:template_id>")
@sysadmin_required
def delete_email_template(template_id: int, current_user):
    template = _get_or_404(EmailTemplate, template_id, "Email template")
    if template.is_system:
        return json_error("System templates cannot be deleted", 400)
    template.deleted_at = now_utc()
    template.is_active = False
    db.session.commit()
    return jsonify({"ok": True, "message": "Email template deleted"})


# ---------------------------------------------------------------- configuration


@bp.get("/configurations")
@sysadmin_required
def list_configurations(current_user):
    return jsonify({"ok": True, "configurations": system_config.list_grouped()})


@bp.get("/configurations/categories")
@sysadmin_required
def list_configuration_categories(current_user):
    return jsonify({"ok": True, "categories": system_config.list_categories()})


@bp.get("/configurations/category/<category>")
@sysadmin_required
def list_configuration_category(category: str, current_user):
    return jsonify(
        {"ok": True, "configurations": system_config.list_category(category)}
    )


@bp.post("/configurations/validate-smtp")
@sysadmin_required
def validate_smtp(current_user):
    issues = system_config.validate_smtp()
    return jsonify({"ok": True, "valid": not issues, "issues": issues})


@bp.get("/configurations/invoice/due-days")
@sysadmin_required
def invoice_due_days(current_user):
    return jsonify({"ok": True, "due_days": system_config.get_int("invoice_due_days", 30)})


@bp.get("/configurations/invoice/late-fee")
@sysadmin_required
def invoice_late_fee(current_user):
    percent = system_config.get_decimal("invoice_late_fee_percent", "1.5")
    return jsonify({"ok": True, "late_fee_percent": float(percent)})


@bp.get("/configurations/<key>")
@sysadmin_required
def get_configuration(key: str, current_user):
    row = system_config.get_entry(key)
    return jsonify({"ok": True, "configuration": system_config.config_to_dict(row)})


@bp.put("/configurations/<key>")
@sysadmin_required
def update_configuration(key: str, current_user):
    payload = json_body()
    if "value" not in payload:
        return json_error("Configuration value is required", 400)
    row = system_config.set_config(key, payload.get("value"), current_user)
    return jsonify({"ok": True, "configuration": system_config.config_to_dict(row)})
