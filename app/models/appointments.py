"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Immutable references
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("doctor_id", Uuid, nullable=False),
    Column("facility_id", Uuid, nullable=False),
    Column("affiliation_id", Uuid, ForeignKey("affiliations.id", ondelete="SET NULL"), nullable=True),
    Column("scheduled_time", DateTime(timezone=True), nullable=False),
    # Classification
    Column("type", String(20), nullable=False, server_default=text("'REGULAR'")),
    Column("source", String(20), nullable=False, server_default=text("'patient_app'")),
    Column("reason", Text, nullable=True),
    # State machine
    Column("status", String(20), nullable=False, server_default=text("'BOOKED'")),
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Queue
    Column("token_number", Integer, nullable=True),
    Column("token_date", Date, nullable=True),
    Column("check_in_time", DateTime(timezone=True), nullable=True),
    Column("consultation_start_time", DateTime(timezone=True), nullable=True),
    Column("consultation_end_time", DateTime(timezone=True), nullable=True),
    # Clinical / billing
    Column("payment_status", String(20), nullable=False, server_default=text("'PENDING'")),
    Column("vitals", JSON, nullable=True),
    Column("notes", Text, nullable=True),
    # Cancellation
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("cancelled_by_role", String(20), nullable=True),
    Column("cancel_reason", Text, nullable=True),
    # Skip
    Column("skipped_at", DateTime(timezone=True), nullable=True),
    Column("skipped_by", Uuid, nullable=True),
    Column("skip_reason", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('BOOKED', 'CHECKED_IN', 'IN_CONSULTATION', 'COMPLETED', 'SKIPPED', 'CANCELLED')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "type IN ('REGULAR', 'WALK_IN', 'EMERGENCY', 'FOLLOW_UP')",
        name="appointments_type_check",
    ),
    CheckConstraint(
        "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
        name="appointments_payment_status_check",
    ),
)

# No double booking: one live appointment per doctor and instant
Index(
    "uq_appointments_doctor_slot_active",
    appointments.c.doctor_id,
    appointments.c.scheduled_time,
    unique=True,
    postgresql_where=text("status NOT IN ('CANCELLED', 'SKIPPED')"),
    sqlite_where=text("status NOT IN ('CANCELLED', 'SKIPPED')"),
)

# One token number per doctor, facility and day
Index(
    "uq_appointments_daily_token",
    appointments.c.doctor_id,
    appointments.c.facility_id,
    appointments.c.token_date,
    appointments.c.token_number,
    unique=True,
    postgresql_where=text("token_number IS NOT NULL"),
    sqlite_where=text("token_number IS NOT NULL"),
)

# A doctor consults one patient at a time
Index(
    "uq_appointments_doctor_in_consultation",
    appointments.c.doctor_id,
    unique=True,
    postgresql_where=text("status = 'IN_CONSULTATION'"),
    sqlite_where=text("status = 'IN_CONSULTATION'"),
)

Index(
    "idx_appointments_queue_day",
    appointments.c.facility_id,
    appointments.c.doctor_id,
    appointments.c.token_date,
)
Index(
    "idx_appointments_doctor_schedule",
    appointments.c.doctor_id,
    appointments.c.facility_id,
    appointments.c.scheduled_time,
)
