from __future__ import annotations

from decimal import Decimal

from ..app import db
from ..shared.payload import jsonable, model_to_dict


class Vendor(db.Model):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_first_name = db.Column(db.String(100))
    contact_last_name = db.Column(db.String(100))
    contact_email = db.Column(db.String(255))
    contact_phone = db.Column(db.String(20))
    address = db.Column(db.Text)
    vendor_type = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.Index("uix_vendors_name_lower", db.func.lower(name), unique=True),
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class VendorInvoice(db.Model):
    __tablename__ = "vendor_invoices"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    vendor = db.relationship("Vendor")
    invoice_number = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    rate = db.Column(db.Numeric(10, 2))
    hst = db.Column(db.Numeric(10, 2))
    total = db.Column(db.Numeric(10, 2))
    quantity = db.Column(db.Integer)
    description = db.Column(db.Text)
    manual_type = db.Column(db.String(100))
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date)
    pdf_filename = db.Column(db.String(255))
    payment_date = db.Column(db.Date)
    status = db.Column(db.String(50), nullable=False, default="submitted", index=True)
    notes = db.Column(db.Text)
    admin_notes = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = db.Column(db.DateTime(timezone=True))
    sent_to_accounting_at = db.Column(db.DateTime(timezone=True))
    paid_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.UniqueConstraint(
            "vendor_id", "invoice_number", name="uq_vendor_invoices_number"
        ),
    )

    payments = db.relationship(
        "VendorPayment",
        back_populates="vendor_invoice",
        cascade="all, delete-orphan",
        order_by="VendorPayment.id",
    )

    @property
    def payable_total(self) -> Decimal:
        return self.total if self.total is not None else (self.amount or Decimal("0.00"))

    @property
    def amount_paid(self) -> Decimal:
        return sum(
            (p.amount for p in self.payments if p.status == "processed"),
            Decimal("0.00"),
        )

    @property
    def balance_due(self) -> Decimal:
        return max(self.payable_total - self.amount_paid, Decimal("0.00"))

    def to_dict(self, with_payments: bool = False) -> dict:
        data = model_to_dict(self)
        data["vendor_name"] = self.vendor.name if self.vendor else None
        data["amount_paid"] = jsonable(self.amount_paid)
        data["balance_due"] = jsonable(self.balance_due)
        if with_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class VendorPayment(db.Model):
    __tablename__ = "vendor_payments"

    id = db.Column(db.Integer, primary_key=True)
    vendor_invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("vendor_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vendor_invoice = db.relationship("VendorInvoice", back_populates="payments")
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(50), nullable=False)
    reference_number = db.Column(db.String(100))
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending")
    processed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    processed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        data = model_to_dict(self)
        if self.vendor_invoice is not None:
            data["invoice_number"] = self.vendor_invoice.invoice_number
            data["vendor_id"] = self.vendor_invoice.vendor_id
        return data
