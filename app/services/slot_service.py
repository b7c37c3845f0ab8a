"""Slot generation from affiliation schedules."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, day_window, local_instant, to_local
from app.core.exceptions import NotAffiliatedException, NotFoundException
from app.models.appointments import appointments
from app.schemas.affiliations import AffiliationSchedule, DateOverride, DayOfWeek, TimeRange
from app.schemas.appointments import AppointmentStatus, AvailableSlotsResponse, SlotResponse
from app.services.affiliation_service import AffiliationService

logger = structlog.get_logger(__name__)

# Statuses that release their slot for rebooking
RELEASED_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.SKIPPED.value)


@dataclass(frozen=True)
class Slot:
    """A bookable [start, end) interval."""

    start: datetime
    end: datetime

    @property
    def time(self) -> str:
        """Wall-clock start as HH:MM."""
        return to_local(self.start).strftime("%H:%M")

    @property
    def display_time(self) -> str:
        """Wall-clock start for people, e.g. 9:30 AM."""
        local = to_local(self.start)
        return f"{local.hour % 12 or 12}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"

    def to_response(self) -> SlotResponse:
        return SlotResponse(
            time=self.time,
            display_time=self.display_time,
            start=self.start,
            end=self.end,
        )


def find_override(schedule: AffiliationSchedule, day: date) -> DateOverride | None:
    """Override for a calendar date, if any."""
    return next((override for override in schedule.date_overrides if override.date == day), None)


def working_ranges(schedule: AffiliationSchedule, day: date) -> list[TimeRange]:
    """Working hours that apply on a date: the override wins over the weekly pattern."""
    override = find_override(schedule, day)
    if override is not None:
        return [] if override.unavailable else list(override.slots)

    weekday = DayOfWeek.of(day)
    for entry in schedule.weekly_schedule:
        if entry.day == weekday:
            return list(entry.slots)
    return []


def generate_slots(
    schedule: AffiliationSchedule,
    day: date,
    booked_times: Iterable[datetime] = (),
) -> list[Slot]:
    """
    Expand a schedule into the free slots of one calendar date.

    Each working range is walked in steps of the slot duration; a slot is
    kept only if it ends within its range. Slots whose start equals a booked
    instant are left out.

    Args:
        schedule: Weekly pattern, date overrides and slot duration
        day: Calendar date in the operating time zone
        booked_times: Start instants of live appointments on that date

    Returns:
        Slots ordered by start time

    Raises:
        ValueError: If the slot duration is not positive
    """
    if schedule.slot_duration_minutes <= 0:
        raise ValueError("Slot duration must be a positive number of minutes")

    step = timedelta(minutes=schedule.slot_duration_minutes)
    taken = {as_utc(instant) for instant in booked_times}

    slots: dict[datetime, Slot] = {}
    for time_range in working_ranges(schedule, day):
        # UTC walk; local wall-clock steps skip or repeat across DST changes
        cursor = as_utc(local_instant(day, time_range.start))
        end = as_utc(local_instant(day, time_range.end))
        while cursor + step <= end:
            if cursor not in taken:
                slots.setdefault(cursor, Slot(start=cursor, end=cursor + step))
            cursor += step

    return [slots[start] for start in sorted(slots)]


class SlotService:
    """Service answering "which slots can be booked"."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def booked_times(self, doctor_id: UUID, facility_id: UUID, day: date) -> list[datetime]:
        """Start instants of appointments still holding a slot on a date."""
        window_start, window_end = day_window(day)
        result = await self.db.execute(
            select(appointments.c.scheduled_time).where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.facility_id == facility_id,
                appointments.c.scheduled_time >= window_start,
                appointments.c.scheduled_time < window_end,
                appointments.c.status.notin_(RELEASED_STATUSES),
            )
        )
        return [row.scheduled_time for row in result.fetchall()]

    async def get_available_slots(
        self,
        doctor_id: UUID,
        facility_id: UUID,
        day: date,
    ) -> AvailableSlotsResponse:
        """
        List free slots for a doctor at a facility on a date.

        Raises:
            NotAffiliatedException: If the doctor has no approved affiliation there
        """
        try:
            affiliation = await AffiliationService(self.db).get_approved_affiliation(
                doctor_id, facility_id
            )
        except NotFoundException:
            raise NotAffiliatedException("Doctor is not available at this facility")

        schedule = affiliation.schedule()
        booked = await self.booked_times(doctor_id, facility_id, day)
        slots = generate_slots(schedule, day, booked)

        message = None
        override = find_override(schedule, day)
        if override is not None and override.unavailable:
            message = override.reason or "Doctor is unavailable on this date"
        elif not working_ranges(schedule, day):
            message = "No schedule for this day"
        elif not slots:
            message = "All slots are booked"

        logger.debug(
            "slots_generated",
            doctor_id=str(doctor_id),
            facility_id=str(facility_id),
            date=day.isoformat(),
            count=len(slots),
        )
        return AvailableSlotsResponse(
            doctor_id=doctor_id,
            facility_id=facility_id,
            date=day,
            slot_duration_minutes=schedule.slot_duration_minutes,
            available_slots=[slot.to_response() for slot in slots],
            message=message,
        )
