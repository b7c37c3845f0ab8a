"""Doctor-facility affiliations table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

affiliations = Table(
    "affiliations",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Parties
    Column("doctor_id", Uuid, nullable=False, index=True),
    Column("facility_id", Uuid, nullable=False, index=True),
    # Lifecycle
    Column("status", String(20), nullable=False, server_default=text("'PENDING'")),
    Column("request_type", String(30), nullable=False),
    Column("requested_by", Uuid, nullable=False),
    Column("responded_at", DateTime(timezone=True), nullable=True),
    Column("responded_by", Uuid, nullable=True),
    Column("revoked_at", DateTime(timezone=True), nullable=True),
    Column("revoked_by", Uuid, nullable=True),
    Column("revoke_reason", Text, nullable=True),
    # Terms
    Column("consultation_fee", Numeric(10, 2), nullable=True),
    Column("consultation_room", String(50), nullable=True),
    Column("notes", Text, nullable=True),
    # Scheduling
    Column("slot_duration_minutes", Integer, nullable=False, server_default=text("15")),
    Column("weekly_schedule", JSON, nullable=False),
    # Example: [{"day": "MON", "slots": [{"start": "09:00", "end": "13:00", "room": ""}]}]
    Column("date_overrides", JSON, nullable=False),
    # Example: [{"date": "2026-03-02", "unavailable": true, "slots": [], "reason": "Leave"}]
    # Schedule audit (last writer wins)
    Column("last_schedule_updated_at", DateTime(timezone=True), nullable=True),
    Column("last_schedule_updated_by", Uuid, nullable=True),
    Column("last_schedule_updated_by_role", String(20), nullable=True),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('PENDING', 'APPROVED', 'REJECTED', 'REVOKED')",
        name="affiliations_status_check",
    ),
    CheckConstraint(
        "request_type IN ('DOCTOR_TO_HOSPITAL', 'HOSPITAL_TO_DOCTOR')",
        name="affiliations_request_type_check",
    ),
    CheckConstraint("slot_duration_minutes > 0", name="affiliations_slot_duration_check"),
)

# At most one open affiliation per doctor-facility pair
Index(
    "uq_affiliations_open_pair",
    affiliations.c.doctor_id,
    affiliations.c.facility_id,
    unique=True,
    postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
    sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
)
Index("idx_affiliations_status", affiliations.c.status)
