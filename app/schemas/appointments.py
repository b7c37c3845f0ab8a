"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.clock import as_utc


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    BOOKED = "BOOKED"
    CHECKED_IN = "CHECKED_IN"
    IN_CONSULTATION = "IN_CONSULTATION"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


class AppointmentType(str, Enum):
    """Informational classification, does not affect the state machine."""

    REGULAR = "REGULAR"
    WALK_IN = "WALK_IN"
    EMERGENCY = "EMERGENCY"
    FOLLOW_UP = "FOLLOW_UP"


class AppointmentSource(str, Enum):
    """Appointment source enumeration."""

    PATIENT_APP = "patient_app"
    RECEPTION = "reception"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


def _normalize_phone(v: str) -> str:
    cleaned = v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "")
    digits = cleaned.removeprefix("+")
    if not digits.isdigit():
        raise ValueError("Phone number must contain only digits and separators")
    if len(digits) < 7:
        raise ValueError("Phone number must have at least 7 digits")
    return cleaned


def _upper_enum_value(v: Any) -> Any:
    return v.upper() if isinstance(v, str) else v


class BookingRequest(BaseModel):
    """Schema for booking a slot."""

    doctor_id: UUID
    facility_id: UUID
    scheduled_time: datetime
    reason: str | None = Field(None, max_length=500)
    type: AppointmentType = AppointmentType.REGULAR
    patient_id: UUID | None = Field(
        None, description="Required when staff book on behalf of a patient"
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept CONSULTATION as the regular visit type."""
        v = _upper_enum_value(v)
        return AppointmentType.REGULAR.value if v == "CONSULTATION" else v


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class CheckInRequest(BaseModel):
    """Schema for checking in a booked appointment at the front desk."""

    appointment_id: UUID
    vitals: dict[str, Any] | None = None
    payment_status: PaymentStatus | None = None

    @field_validator("payment_status", mode="before")
    @classmethod
    def normalize_payment_status(cls, v: Any) -> Any:
        """Payment status is matched case-insensitively."""
        return _upper_enum_value(v)


class WalkInPatient(BaseModel):
    """Demographics captured at the reception desk."""

    phone: str = Field(..., min_length=7, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    gender: str | None = Field(None, max_length=20)
    age: int | None = Field(None, ge=0, le=150)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate and normalize phone number format."""
        return _normalize_phone(v)


class WalkInRequest(BaseModel):
    """Schema for registering a walk-in visit."""

    patient: WalkInPatient
    doctor_id: UUID
    facility_id: UUID
    is_emergency: bool = False
    reason: str | None = Field(None, max_length=500)
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @field_validator("payment_status", mode="before")
    @classmethod
    def normalize_payment_status(cls, v: Any) -> Any:
        """Payment status is matched case-insensitively."""
        return _upper_enum_value(v)


class VitalsUpdate(BaseModel):
    """Schema for merging clinical vitals into an appointment."""

    vitals: dict[str, Any] = Field(..., min_length=1)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    facility_id: UUID
    affiliation_id: UUID | None = None
    scheduled_time: datetime
    type: AppointmentType
    source: str
    reason: str | None = None
    status: AppointmentStatus
    version: int
    token_number: int | None = None
    token_date: date | None = None
    check_in_time: datetime | None = None
    consultation_start_time: datetime | None = None
    consultation_end_time: datetime | None = None
    payment_status: PaymentStatus
    vitals: dict[str, Any] | None = None
    notes: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancelled_by_role: str | None = None
    cancel_reason: str | None = None
    skipped_at: datetime | None = None
    skipped_by: UUID | None = None
    skip_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator(
        "scheduled_time",
        "check_in_time",
        "consultation_start_time",
        "consultation_end_time",
        "cancelled_at",
        "skipped_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def normalize_instants(cls, v: datetime | None) -> datetime | None:
        """Instants are always reported in UTC."""
        return as_utc(v) if v is not None else None


class BookingResponse(BaseModel):
    """Schema for booking response."""

    appointment_id: UUID
    status: AppointmentStatus
    message: str = "Booking confirmed. Token will be assigned upon arrival."
    appointment: AppointmentResponse


class CheckInResponse(BaseModel):
    """Schema for check-in response."""

    token_number: int
    status: AppointmentStatus
    appointment: AppointmentResponse


class WalkInResponse(BaseModel):
    """Schema for walk-in registration response."""

    token_number: int
    appointment_id: UUID
    patient_id: UUID
    patient_created: bool
    appointment: AppointmentResponse


class SlotResponse(BaseModel):
    """One bookable slot."""

    time: str
    display_time: str
    start: datetime
    end: datetime


class AvailableSlotsResponse(BaseModel):
    """Schema for available slots for a doctor at a facility on a date."""

    doctor_id: UUID
    facility_id: UUID
    date: date
    slot_duration_minutes: int
    available_slots: list[SlotResponse]
    message: str | None = None
