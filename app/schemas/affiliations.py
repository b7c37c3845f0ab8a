"""Affiliation schemas for request/response validation."""

import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer, field_validator


class AffiliationStatus(str, Enum):
    """Affiliation status enumeration."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"


class AffiliationRequestType(str, Enum):
    """Which party opened the affiliation."""

    DOCTOR_TO_HOSPITAL = "DOCTOR_TO_HOSPITAL"
    HOSPITAL_TO_DOCTOR = "HOSPITAL_TO_DOCTOR"


class DayOfWeek(str, Enum):
    """Day of week, ordered Monday first like ``date.weekday()``."""

    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @classmethod
    def of(cls, day: dt.date) -> "DayOfWeek":
        """Day of week of a calendar date."""
        return list(cls)[day.weekday()]


class TimeRange(BaseModel):
    """Working-hours range within a day, wall-clock in the operating zone."""

    start: dt.time
    end: dt.time
    room: str = Field(default="", max_length=50)

    @field_serializer("start", "end")
    def serialize_time(self, value: dt.time) -> str:
        """Serialize as HH:MM."""
        return value.strftime("%H:%M")


class WeeklyDay(BaseModel):
    """Recurring working hours for one day of the week."""

    day: DayOfWeek
    slots: list[TimeRange] = Field(default_factory=list)


class DateOverride(BaseModel):
    """Exception to the weekly pattern for one calendar date."""

    date: dt.date
    unavailable: bool = False
    slots: list[TimeRange] = Field(default_factory=list)
    reason: str = Field(default="", max_length=500)
    updated_by: UUID | None = None
    updated_by_role: str | None = None
    updated_at: dt.datetime | None = None


class AffiliationSchedule(BaseModel):
    """Everything the slot generator needs from an affiliation."""

    weekly_schedule: list[WeeklyDay] = Field(default_factory=list)
    date_overrides: list[DateOverride] = Field(default_factory=list)
    slot_duration_minutes: int = 15

    model_config = {"from_attributes": True}


def _reject_duplicates(values: list, key: str, label: str) -> None:
    seen = set()
    for item in values:
        marker = getattr(item, key)
        if marker in seen:
            raise ValueError(f"Duplicate {label}: {marker}")
        seen.add(marker)


class AffiliationCreate(BaseModel):
    """Schema for opening an affiliation request."""

    doctor_id: UUID
    facility_id: UUID
    consultation_fee: Decimal | None = Field(None, ge=0)
    consultation_room: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=1000)
    slot_duration_minutes: int | None = Field(None, ge=1, le=240)


class AffiliationRespond(BaseModel):
    """Schema for accepting or rejecting a pending affiliation."""

    approve: bool


class AffiliationRevoke(BaseModel):
    """Schema for revoking an approved affiliation."""

    reason: str | None = Field(None, max_length=500)


class ScheduleUpdate(BaseModel):
    """Schema for replacing an affiliation's schedule fields."""

    weekly_schedule: list[WeeklyDay] | None = None
    date_overrides: list[DateOverride] | None = None
    slot_duration_minutes: int | None = Field(None, ge=1, le=240)

    @field_validator("weekly_schedule")
    @classmethod
    def validate_weekly_days(cls, v: list[WeeklyDay] | None) -> list[WeeklyDay] | None:
        """Each day of the week may appear once."""
        if v is not None:
            _reject_duplicates(v, "day", "weekly schedule day")
        return v

    @field_validator("date_overrides")
    @classmethod
    def validate_override_dates(cls, v: list[DateOverride] | None) -> list[DateOverride] | None:
        """Each calendar date may be overridden once."""
        if v is not None:
            _reject_duplicates(v, "date", "override date")
        return v


class AffiliationResponse(BaseModel):
    """Affiliation response schema."""

    id: UUID
    doctor_id: UUID
    facility_id: UUID
    status: AffiliationStatus
    request_type: AffiliationRequestType
    requested_by: UUID
    responded_at: dt.datetime | None = None
    responded_by: UUID | None = None
    revoked_at: dt.datetime | None = None
    revoked_by: UUID | None = None
    revoke_reason: str | None = None
    consultation_fee: Decimal | None = None
    consultation_room: str | None = None
    notes: str | None = None
    slot_duration_minutes: int
    weekly_schedule: list[WeeklyDay]
    date_overrides: list[DateOverride]
    last_schedule_updated_at: dt.datetime | None = None
    last_schedule_updated_by: UUID | None = None
    last_schedule_updated_by_role: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> float | None:
        """Serialize Decimal to float for JSON."""
        return float(value) if value is not None else None

    def schedule(self) -> AffiliationSchedule:
        """Schedule view used by the slot generator."""
        return AffiliationSchedule(
            weekly_schedule=self.weekly_schedule,
            date_overrides=self.date_overrides,
            slot_duration_minutes=self.slot_duration_minutes,
        )


class AffiliationListResponse(BaseModel):
    """Schema for affiliation list response."""

    total: int
    items: list[AffiliationResponse]
