"""Per doctor, facility and day token counters."""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    PrimaryKeyConstraint,
    Table,
    Uuid,
    func,
)

from app.models.base import metadata

token_counters = Table(
    "token_counters",
    metadata,
    Column("doctor_id", Uuid, nullable=False),
    Column("facility_id", Uuid, nullable=False),
    Column("day", Date, nullable=False),
    Column("last_token", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    PrimaryKeyConstraint("doctor_id", "facility_id", "day", name="pk_token_counters"),
)
