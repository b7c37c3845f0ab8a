"""Queue schemas: live projection, doctor console and patient view."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.appointments import AppointmentResponse, AppointmentStatus, AppointmentType


class QueueAction(str, Enum):
    """Doctor-facing queue actions."""

    START_CONSULTATION = "START_CONSULTATION"
    COMPLETE = "COMPLETE"
    SKIP = "SKIP"


class DoctorStatus(str, Enum):
    """Doctor availability label shown on the live queue."""

    NOT_STARTED = "NOT_STARTED"
    SERVING = "SERVING"
    ON_BREAK = "ON_BREAK"
    IN_MEETING = "IN_MEETING"
    HANDLING_EMERGENCY = "HANDLING_EMERGENCY"
    OFFLINE = "OFFLINE"


class PatientQueueMode(str, Enum):
    """What the patient's own queue screen should show."""

    RELAX = "RELAX"
    ACTIVE = "ACTIVE"
    PANIC = "PANIC"
    CLOSED = "CLOSED"


class QueueProjection(BaseModel):
    """Ephemeral, last-write-wins live view for one facility and doctor."""

    facility_id: UUID
    doctor_id: UUID
    current_token: int = 0
    is_live: bool = False
    status: DoctorStatus = DoctorStatus.NOT_STARTED
    status_message: str = ""
    last_updated: int | None = Field(None, description="Epoch milliseconds of the last write")
    seq: int = Field(0, description="Logical write counter for staleness detection")


class QueueActionRequest(BaseModel):
    """Schema for a doctor queue action."""

    appointment_id: UUID
    action: str = Field(..., min_length=1, max_length=40)
    notes: str | None = Field(None, max_length=2000)
    reason: str | None = Field(None, max_length=500)


class QueueActionResponse(BaseModel):
    """Schema for queue action response."""

    action: QueueAction
    appointment: AppointmentResponse


class QueueStatusUpdate(BaseModel):
    """Schema for setting the doctor's live status."""

    status: DoctorStatus
    message: str | None = Field(None, max_length=280)


class QueueEntry(BaseModel):
    """One patient in the doctor's console queue."""

    appointment_id: UUID
    patient_id: UUID
    token_number: int | None
    status: AppointmentStatus
    type: AppointmentType
    scheduled_time: datetime
    check_in_time: datetime | None = None
    consultation_start_time: datetime | None = None


class DoctorQueueResponse(BaseModel):
    """Authoritative queue for a doctor at a facility today."""

    facility_id: UUID
    doctor_id: UUID
    date: date
    current_token: int
    entries: list[QueueEntry]
    next_appointment_id: UUID | None = None
    waiting_count: int
    completed_count: int
    skipped_count: int


class PatientQueueView(BaseModel):
    """Patient-facing queue position for one appointment."""

    appointment_id: UUID
    mode: PatientQueueMode
    status: AppointmentStatus
    message: str
    scheduled_time: datetime
    token_number: int | None = None
    current_token: int | None = None
    tokens_ahead: int | None = None
    estimated_wait_minutes: int | None = None
    is_next: bool = False
    doctor_status: DoctorStatus | None = None
    status_message: str | None = None
    is_live: bool | None = None
