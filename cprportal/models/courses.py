from __future__ import annotations

from ..app import db
from ..shared.payload import model_to_dict


class CourseRequest(db.Model):
    __tablename__ = "course_requests"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization")
    course_type_id = db.Column(
        db.Integer,
        db.ForeignKey("class_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    course_type = db.relationship("ClassType")
    location_id = db.Column(
        db.Integer, db.ForeignKey("organization_locations.id", ondelete="SET NULL")
    )
    location_ref = db.relationship("OrganizationLocation")
    date_requested = db.Column(db.Date, nullable=False)
    scheduled_date = db.Column(db.Date)
    location = db.Column(db.String(255), nullable=False)
    registered_students = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text)
    status = db.Column(db.String(50), nullable=False, default="pending", index=True)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    instructor = db.relationship("User", foreign_keys=[instructor_id])
    confirmed_date = db.Column(db.Date)
    confirmed_start_time = db.Column(db.Time)
    confirmed_end_time = db.Column(db.Time)
    completed_at = db.Column(db.DateTime(timezone=True))
    instructor_comments = db.Column(db.Text)
    ready_for_billing = db.Column(db.Boolean, nullable=False, default=False)
    ready_for_billing_at = db.Column(db.DateTime(timezone=True))
    invoiced = db.Column(db.Boolean, nullable=False, default=False)
    invoiced_at = db.Column(db.DateTime(timezone=True))
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True))
    cancellation_reason = db.Column(db.Text)
    archived = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    students = db.relationship(
        "CourseStudent",
        back_populates="course_request",
        cascade="all, delete-orphan",
        order_by="CourseStudent.id",
    )

    @property
    def student_count(self) -> int:
        return len(self.students)

    @property
    def attended_count(self) -> int:
        return sum(1 for s in self.students if s.attended)

    def to_dict(self, with_students: bool = False) -> dict:
        data = model_to_dict(self)
        data["course_type_name"] = self.course_type.name if self.course_type else None
        data["organization_name"] = (
            self.organization.name if self.organization else None
        )
        data["instructor_name"] = self.instructor.full_name if self.instructor else None
        data["student_count"] = self.student_count
        data["attended_count"] = self.attended_count
        if with_students:
            data["students"] = [s.to_dict() for s in self.students]
        return data


class CourseStudent(db.Model):
    __tablename__ = "course_students"

    id = db.Column(db.Integer, primary_key=True)
    course_request_id = db.Column(
        db.Integer,
        db.ForeignKey("course_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_request = db.relationship("CourseRequest", back_populates="students")
    first_name = db.Column(db.String(255), nullable=False)
    last_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    college = db.Column(db.String(255))
    attendance_marked = db.Column(db.Boolean, nullable=False, default=False)
    attended = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class InstructorAvailability(db.Model):
    __tablename__ = "instructor_availability"

    id = db.Column(db.Integer, primary_key=True)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(50), nullable=False, default="available")
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.UniqueConstraint(
            "instructor_id", "date", name="uq_instructor_availability_day"
        ),
    )

    def to_dict(self) -> dict:
        return model_to_dict(self)


class Timesheet(db.Model):
    __tablename__ = "timesheets"

    id = db.Column(db.Integer, primary_key=True)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    instructor = db.relationship("User", foreign_keys=[instructor_id])
    week_start_date = db.Column(db.Date, nullable=False)
    week_end_date = db.Column(db.Date, nullable=False)
    total_hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    courses_taught = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending")
    hr_comment = db.Column(db.Text)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    __table_args__ = (
        db.UniqueConstraint(
            "instructor_id", "week_start_date", name="uq_timesheets_instructor_week"
        ),
    )

    def to_dict(self) -> dict:
        data = model_to_dict(self)
        data["instructor_name"] = self.instructor.full_name if self.instructor else None
        return data
