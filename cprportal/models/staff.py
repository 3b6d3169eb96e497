from __future__ import annotations

from ..app import db
from ..shared.payload import model_to_dict


class ProfileChange(db.Model):
    __tablename__ = "profile_changes"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user = db.relationship("User", foreign_keys=[user_id])
    change_type = db.Column(db.String(20), nullable=False)
    field_name = db.Column(db.String(50), nullable=False)
    old_value = db.Column(db.Text)
    new_value = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    hr_comment = db.Column(db.Text)
    requested_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        data = model_to_dict(self)
        data["user_name"] = self.user.full_name if self.user else None
        data["user_role"] = self.user.role if self.user else None
        return data


class InstructorPaymentRequest(db.Model):
    """Pay owed to an instructor for one approved timesheet week."""

    __tablename__ = "instructor_payment_requests"

    id = db.Column(db.Integer, primary_key=True)
    instructor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    instructor = db.relationship("User", foreign_keys=[instructor_id])
    timesheet_id = db.Column(
        db.Integer,
        db.ForeignKey("timesheets.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    timesheet = db.relationship("Timesheet")
    base_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    bonus_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_date = db.Column(db.Date)
    payment_method = db.Column(db.String(50), nullable=False, default="direct_deposit")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text)
    processed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    processed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self, with_timesheet: bool = False) -> dict:
        data = model_to_dict(self)
        data["instructor_name"] = self.instructor.full_name if self.instructor else None
        sheet = self.timesheet
        if sheet is not None:
            data["week_start_date"] = sheet.week_start_date.isoformat()
            data["week_end_date"] = sheet.week_end_date.isoformat()
            if with_timesheet:
                data["timesheet"] = sheet.to_dict()
        return data
