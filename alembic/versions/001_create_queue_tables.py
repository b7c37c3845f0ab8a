"""Create affiliations, patients, appointments and token_counters tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Create affiliations table
    op.create_table(
        "affiliations",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'PENDING'"), nullable=False),
        sa.Column("request_type", sa.String(length=30), nullable=False),
        sa.Column("requested_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("revoke_reason", sa.Text(), nullable=True),
        sa.Column("consultation_fee", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("consultation_room", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("slot_duration_minutes", sa.Integer(), server_default=sa.text("15"), nullable=False),
        sa.Column(
            "weekly_schedule",
            postgresql.JSON(astext_type=sa.Text()),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
        sa.Column(
            "date_overrides",
            postgresql.JSON(astext_type=sa.Text()),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
        sa.Column("last_schedule_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_schedule_updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("last_schedule_updated_by_role", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'REVOKED')",
            name="affiliations_status_check",
        ),
        sa.CheckConstraint(
            "request_type IN ('DOCTOR_TO_HOSPITAL', 'HOSPITAL_TO_DOCTOR')",
            name="affiliations_request_type_check",
        ),
        sa.CheckConstraint("slot_duration_minutes > 0", name="affiliations_slot_duration_check"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_affiliations_doctor_id", "affiliations", ["doctor_id"])
    op.create_index("ix_affiliations_facility_id", "affiliations", ["facility_id"])
    op.create_index("idx_affiliations_status", "affiliations", ["status"])
    op.create_index(
        "uq_affiliations_open_pair",
        "affiliations",
        ["doctor_id", "facility_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED')"),
    )

    # Create patients table
    op.create_table(
        "patients",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("is_walk_in_created", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone", name="uq_patients_phone"),
    )

    # Create appointments table
    op.create_table(
        "appointments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "affiliation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("affiliations.id", name="fk_appointments_affiliation_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(length=20), server_default=sa.text("'REGULAR'"), nullable=False),
        sa.Column("source", sa.String(length=20), server_default=sa.text("'patient_app'"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'BOOKED'"), nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("token_number", sa.Integer(), nullable=True),
        sa.Column("token_date", sa.Date(), nullable=True),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consultation_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consultation_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_status", sa.String(length=20), server_default=sa.text("'PENDING'"), nullable=False),
        sa.Column("vitals", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancelled_by_role", sa.String(length=20), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("skipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("skipped_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("skip_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint(
            "status IN ('BOOKED', 'CHECKED_IN', 'IN_CONSULTATION', 'COMPLETED', 'SKIPPED', 'CANCELLED')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "type IN ('REGULAR', 'WALK_IN', 'EMERGENCY', 'FOLLOW_UP')",
            name="appointments_type_check",
        ),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
            name="appointments_payment_status_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create indexes
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index(
        "uq_appointments_doctor_slot_active",
        "appointments",
        ["doctor_id", "scheduled_time"],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('CANCELLED', 'SKIPPED')"),
    )
    op.create_index(
        "uq_appointments_daily_token",
        "appointments",
        ["doctor_id", "facility_id", "token_date", "token_number"],
        unique=True,
        postgresql_where=sa.text("token_number IS NOT NULL"),
    )
    op.create_index(
        "uq_appointments_doctor_in_consultation",
        "appointments",
        ["doctor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'IN_CONSULTATION'"),
    )
    op.create_index(
        "idx_appointments_queue_day",
        "appointments",
        ["facility_id", "doctor_id", "token_date"],
    )
    op.create_index(
        "idx_appointments_doctor_schedule",
        "appointments",
        ["doctor_id", "facility_id", "scheduled_time"],
    )

    # Create token_counters table
    op.create_table(
        "token_counters",
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("last_token", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("doctor_id", "facility_id", "day", name="pk_token_counters"),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("token_counters")

    # Drop indexes
    op.drop_index("idx_appointments_doctor_schedule", table_name="appointments")
    op.drop_index("idx_appointments_queue_day", table_name="appointments")
    op.drop_index("uq_appointments_doctor_in_consultation", table_name="appointments")
    op.drop_index("uq_appointments_daily_token", table_name="appointments")
    op.drop_index("uq_appointments_doctor_slot_active", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")

    # Drop tables
    op.drop_table("appointments")
    op.drop_table("patients")

    op.drop_index("uq_affiliations_open_pair", table_name="affiliations")
    op.drop_index("idx_affiliations_status", table_name="affiliations")
    op.drop_index("ix_affiliations_facility_id", table_name="affiliations")
    op.drop_index("ix_affiliations_doctor_id", table_name="affiliations")
    op.drop_table("affiliations")
