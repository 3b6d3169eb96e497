from __future__ import annotations

from sqlalchemy.orm import validates

from ..app import db
from ..shared.passwords import hash_password, verify_password
from ..shared.payload import model_to_dict


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_name = db.Column(db.String(255))
    contact_email = db.Column(db.String(255))
    contact_phone = db.Column(db.String(50))
    contact_position = db.Column(db.String(100))
    address_street = db.Column(db.String(255))
    address_city = db.Column(db.String(100))
    address_province = db.Column(db.String(100))
    address_postal_code = db.Column(db.String(20))
    country = db.Column(db.String(100), default="Canada")
    ceo_name = db.Column(db.String(255))
    ceo_email = db.Column(db.String(255))
    ceo_phone = db.Column(db.String(50))
    organization_comments = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("uix_organizations_name_lower", db.func.lower(name), unique=True),
    )

    locations = db.relationship(
        "OrganizationLocation",
        back_populates="organization",
        cascade="all, delete-orphan",
        order_by="OrganizationLocation.location_name",
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class OrganizationLocation(db.Model):
    __tablename__ = "organization_locations"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization", back_populates="locations")
    location_name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text)
    city = db.Column(db.String(100))
    province = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    contact_first_name = db.Column(db.String(100))
    contact_last_name = db.Column(db.String(100))
    contact_email = db.Column(db.String(255))
    contact_phone = db.Column(db.String(32))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index(
            "uix_org_locations_org_name_lower",
            organization_id,
            db.func.lower(location_name),
            unique=True,
        ),
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255))
    role = db.Column(db.String(50), nullable=False, default="student")
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT")
    )
    organization = db.relationship("Organization")
    location_id = db.Column(
        db.Integer, db.ForeignKey("organization_locations.id", ondelete="SET NULL")
    )
    vendor_id = db.Column(
        db.Integer, db.ForeignKey("vendors.id", ondelete="SET NULL")
    )
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    mobile = db.Column(db.String(20))
    date_onboarded = db.Column(db.Date)
    user_comments = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="active")
    last_login = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("ix_users_email_lower", db.func.lower(email), unique=True),
        db.Index("ix_users_username_lower", db.func.lower(username), unique=True),
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().lower()

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.username

    def set_password(self, plain: str) -> None:
        self.password_hash = hash_password(plain)

    def check_password(self, plain: str) -> bool:
        if not self.password_hash:
            return False
        return verify_password(plain, self.password_hash)

    def to_dict(self) -> dict:
        data = model_to_dict(self, exclude=("password_hash",))
        data["full_name"] = self.full_name
        return data


class ClassType(db.Model):
    __tablename__ = "class_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    course_code = db.Column(db.String(50))
    description = db.Column(db.Text)
    duration_minutes = db.Column(db.Integer, nullable=False)
    max_students = db.Column(db.Integer)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("uix_class_types_name_lower", db.func.lower(name), unique=True),
    )

    @validates("course_code")
    def upper_code(self, key, value):  # pragma: no cover - simple normalizer
        return value.upper() if value else None

    def to_dict(self) -> dict:
        return model_to_dict(self)


class College(db.Model):
    __tablename__ = "colleges"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("uix_colleges_name_lower", db.func.lower(name), unique=True),
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class SystemConfiguration(db.Model):
    __tablename__ = "system_configurations"

    id = db.Column(db.Integer, primary_key=True)
    config_key = db.Column(db.String(100), nullable=False, unique=True)
    config_value = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.Text)
    category = db.Column(db.String(50), nullable=False, default="general")
    updated_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class EmailTemplate(db.Model):
    __tablename__ = "email_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    key = db.Column(db.String(50), nullable=False, unique=True)
    category = db.Column(db.String(50), nullable=False)
    sub_category = db.Column(db.String(50))
    subject = db.Column(db.Text, nullable=False)
    body = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    last_modified_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    deleted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action = db.Column(db.String(255), nullable=False)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.now())


from .courses import (  # noqa: E402
    CourseRequest,
    CourseStudent,
    InstructorAvailability,
    Timesheet,
)
from .billing import CoursePricing, Invoice, Payment  # noqa: E402
from .vendors import Vendor, VendorInvoice, VendorPayment  # noqa: E402
from .staff import InstructorPaymentRequest, ProfileChange  # noqa: E402

__all__ = [
    "Organization",
    "OrganizationLocation",
    "User",
    "ClassType",
    "College",
    "SystemConfiguration",
    "EmailTemplate",
    "AuditLog",
    "CourseRequest",
    "CourseStudent",
    "InstructorAvailability",
    "Timesheet",
    "CoursePricing",
    "Invoice",
    "Payment",
    "Vendor",
    "VendorInvoice",
    "VendorPayment",
    "ProfileChange",
    "InstructorPaymentRequest",
]
