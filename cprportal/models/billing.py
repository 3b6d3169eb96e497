from __future__ import annotations

from decimal import Decimal

from ..app import db
from ..shared.payload import jsonable, model_to_dict


class CoursePricing(db.Model):
    __tablename__ = "course_pricing"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization = db.relationship("Organization")
    course_type_id = db.Column(
        db.Integer,
        db.ForeignKey("class_types.id", ondelete="CASCADE"),
        nullable=False,
    )
    course_type = db.relationship("ClassType")
    price_per_student = db.Column(db.Numeric(10, 2), nullable=False)
    effective_date = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("ix_course_pricing_org_type", organization_id, course_type_id),
    )

    def to_dict(self) -> dict:
        data = model_to_dict(self)
        data["organization_name"] = self.organization.name if self.organization else None
        data["course_type_name"] = self.course_type.name if self.course_type else None
        return data


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False, unique=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization")
    course_request_id = db.Column(
        db.Integer, db.ForeignKey("course_requests.id", ondelete="SET NULL")
    )
    course_request = db.relationship("CourseRequest")
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    base_cost = db.Column(db.Numeric(10, 2))
    tax_amount = db.Column(db.Numeric(10, 2))
    students_billed = db.Column(db.Integer)
    rate_per_student = db.Column(db.Numeric(10, 2))
    course_type_name = db.Column(db.String(255))
    location = db.Column(db.String(255))
    date_completed = db.Column(db.Date)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    posted_to_org = db.Column(db.Boolean, nullable=False, default=False)
    posted_to_org_at = db.Column(db.DateTime(timezone=True))
    email_sent_at = db.Column(db.DateTime(timezone=True))
    paid_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )

    @property
    def amount_paid(self) -> Decimal:
        return sum(
            (p.amount for p in self.payments if p.status == "verified"),
            Decimal("0.00"),
        )

    @property
    def balance_due(self) -> Decimal:
        balance = (self.amount or Decimal("0.00")) - self.amount_paid
        return max(balance, Decimal("0.00"))

    def to_dict(self, with_payments: bool = False) -> dict:
        data = model_to_dict(self)
        data["organization_name"] = self.organization.name if self.organization else None
        data["amount_paid"] = jsonable(self.amount_paid)
        data["balance_due"] = jsonable(self.balance_due)
        if with_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invoice = db.relationship("Invoice", back_populates="payments")
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(50))
    reference_number = db.Column(db.String(100))
    notes = db.Column(db.Text)
    status = db.Column(db.String(50), nullable=False, default="verified", index=True)
    submitted_by_org_at = db.Column(db.DateTime(timezone=True))
    verified_by_accounting_at = db.Column(db.DateTime(timezone=True))
    reversed_at = db.Column(db.DateTime(timezone=True))
    reversed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reversal_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        data = model_to_dict(self)
        if self.invoice is not None:
            data["invoice_number"] = self.invoice.invoice_number
            data["organization_id"] = self.invoice.organization_id
        return data
