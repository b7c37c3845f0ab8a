"""Doctor queue actions and queue read views."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.appointment_states import ACTION_TARGETS, ensure_transition
from app.core.clock import operating_date, utcnow
from app.core.exceptions import (
    ForbiddenException,
    InvalidActionException,
    InvalidTransitionException,
)
from app.models.appointments import appointments
from app.schemas.actors import ActorContext
from app.schemas.appointments import AppointmentResponse, AppointmentStatus
from app.schemas.queue import (
    DoctorQueueResponse,
    PatientQueueMode,
    PatientQueueView,
    QueueAction,
    QueueActionRequest,
    QueueActionResponse,
    QueueEntry,
)
from app.services.affiliation_service import AffiliationService
from app.services.appointment_service import AppointmentService
from app.services.queue_projector import QueueProjector

logger = structlog.get_logger(__name__)


def parse_action(value: str) -> QueueAction:
    """
    Resolve a queue action name, case-insensitively.

    Raises:
        InvalidActionException: If the name is not a known action
    """
    try:
        return QueueAction(value.strip().upper())
    except ValueError:
        raise InvalidActionException(value)


def derive_current_token(rows: list[AppointmentResponse]) -> int:
    """Token in consultation, else the most recently completed one, else 0."""
    for row in rows:
        if row.status == AppointmentStatus.IN_CONSULTATION and row.token_number:
            return row.token_number

    completed = [
        row
        for row in rows
        if row.status == AppointmentStatus.COMPLETED and row.token_number is not None
    ]
    if not completed:
        return 0
    latest = max(completed, key=lambda row: (row.consultation_end_time or row.updated_at, row.token_number))
    return latest.token_number


class QueueService:
    """Service for the doctor's queue console and the patient's queue screen."""

    def __init__(self, db: AsyncSession, projector: QueueProjector):
        """Initialize service with database session and live queue projector."""
        self.db = db
        self.projector = projector
        self.ledger = AppointmentService(db, projector)

    async def _day_rows(self, facility_id: UUID, doctor_id: UUID, day: date) -> list[AppointmentResponse]:
        """Appointments that received a token on a given day."""
        result = await self.db.execute(
            select(appointments)
            .where(
                appointments.c.facility_id == facility_id,
                appointments.c.doctor_id == doctor_id,
                appointments.c.token_date == day,
            )
            .order_by(appointments.c.token_number)
        )
        return [AppointmentService.to_response(row) for row in result.fetchall()]

    async def _active_consultation(self, doctor_id: UUID) -> UUID | None:
        result = await self.db.execute(
            select(appointments.c.id).where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.status == AppointmentStatus.IN_CONSULTATION.value,
            )
        )
        return result.scalar_one_or_none()

    async def _start_consultation(self, current: AppointmentResponse) -> AppointmentResponse:
        ensure_transition(current.status, AppointmentStatus.IN_CONSULTATION)

        active = await self._active_consultation(current.doctor_id)
        if active is not None and active != current.id:
            raise InvalidTransitionException(
                "Finish the current consultation first",
                current_status=current.status.value,
            )

        try:
            updated = await self.ledger.transition(
                current,
                AppointmentStatus.IN_CONSULTATION,
                {"consultation_start_time": utcnow()},
            )
        except IntegrityError:
            await self.db.rollback()
            raise InvalidTransitionException(
                "Finish the current consultation first",
                current_status=current.status.value,
            )

        if updated.token_number is not None:
            await self.projector.record_consultation_started(
                updated.facility_id, updated.doctor_id, updated.token_number
            )
        return updated

    async def perform_action(self, actor: ActorContext, data: QueueActionRequest) -> QueueActionResponse:
        """
        Apply a doctor's queue action to one appointment.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller is not the appointment's doctor
            InvalidActionException: If the action name is unknown
            InvalidTransitionException: If the appointment is not in the required status
            VersionConflictException: If a concurrent write got there first
        """
        current = await self.ledger.fetch(data.appointment_id)
        if not (actor.is_doctor and actor.actor_id == current.doctor_id):
            raise ForbiddenException("Only the appointment's doctor can manage its queue")

        action = parse_action(data.action)

        if action == QueueAction.START_CONSULTATION:
            updated = await self._start_consultation(current)
        else:
            values: dict[str, Any] = {}
            if data.notes:
                values["notes"] = data.notes
            if action == QueueAction.COMPLETE:
                values["consultation_end_time"] = utcnow()
            else:
                values.update(
                    {
                        "skipped_at": utcnow(),
                        "skipped_by": actor.actor_id,
                        "skip_reason": data.reason,
                    }
                )
            updated = await self.ledger.transition(current, ACTION_TARGETS[action], values)
            await self.projector.record_queue_change(updated.facility_id, updated.doctor_id)

        logger.info(
            "queue_action_applied",
            appointment_id=str(updated.id),
            action=action.value,
            status=updated.status.value,
        )
        return QueueActionResponse(action=action, appointment=updated)

    async def get_doctor_queue(
        self,
        actor: ActorContext,
        facility_id: UUID,
        doctor_id: UUID,
        day: date | None = None,
    ) -> DoctorQueueResponse:
        """
        Authoritative queue for a doctor at a facility, read from the ledger.

        Entries list the patient in consultation first, then the waiting
        patients by token.
        """
        is_self = actor.is_doctor and actor.actor_id == doctor_id
        if not (is_self or actor.is_facility_member(facility_id)):
            raise ForbiddenException("Access denied to this queue")

        day = day or operating_date()
        rows = await self._day_rows(facility_id, doctor_id, day)

        in_consultation = [row for row in rows if row.status == AppointmentStatus.IN_CONSULTATION]
        waiting = [row for row in rows if row.status == AppointmentStatus.CHECKED_IN]

        entries = [
            QueueEntry(
                appointment_id=row.id,
                patient_id=row.patient_id,
                token_number=row.token_number,
                status=row.status,
                type=row.type,
                scheduled_time=row.scheduled_time,
                check_in_time=row.check_in_time,
                consultation_start_time=row.consultation_start_time,
            )
            for row in in_consultation + waiting
        ]

        return DoctorQueueResponse(
            facility_id=facility_id,
            doctor_id=doctor_id,
            date=day,
            current_token=derive_current_token(rows),
            entries=entries,
            next_appointment_id=waiting[0].id if waiting else None,
            waiting_count=len(waiting),
            completed_count=sum(1 for row in rows if row.status == AppointmentStatus.COMPLETED),
            skipped_count=sum(1 for row in rows if row.status == AppointmentStatus.SKIPPED),
        )

    async def _slot_duration(self, appointment: AppointmentResponse) -> int:
        affiliation = await AffiliationService(self.db).find_latest(
            appointment.doctor_id, appointment.facility_id
        )
        if affiliation is None:
            return settings.default_slot_duration_minutes
        return affiliation.slot_duration_minutes

    async def get_patient_queue_view(self, actor: ActorContext, appointment_id: UUID) -> PatientQueueView:
        """
        What the patient's screen shows for one appointment.

        RELAX before arrival, ACTIVE while queued, PANIC once skipped and
        CLOSED when finished or cancelled.
        """
        appointment = await self.ledger.get_appointment(actor, appointment_id)
        base = {
            "appointment_id": appointment.id,
            "status": appointment.status,
            "scheduled_time": appointment.scheduled_time,
            "token_number": appointment.token_number,
        }

        if appointment.status == AppointmentStatus.BOOKED:
            return PatientQueueView(
                **base,
                mode=PatientQueueMode.RELAX,
                message="Appointment confirmed. Your token is issued when you check in at the reception.",
            )
        if appointment.status == AppointmentStatus.SKIPPED:
            return PatientQueueView(
                **base,
                mode=PatientQueueMode.PANIC,
                message="You missed your turn. Please contact the reception immediately to re-join.",
            )
        if appointment.status in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED):
            return PatientQueueView(
                **base,
                mode=PatientQueueMode.CLOSED,
                message=f"This appointment is {appointment.status.value.lower()}.",
            )

        rows = await self._day_rows(appointment.facility_id, appointment.doctor_id, appointment.token_date)
        current_token = derive_current_token(rows)
        duration = await self._slot_duration(appointment)

        if appointment.status == AppointmentStatus.IN_CONSULTATION:
            tokens_ahead = 0
            message = "You are in consultation."
        else:
            tokens_ahead = sum(
                1
                for row in rows
                if row.status == AppointmentStatus.CHECKED_IN
                and row.token_number is not None
                and row.token_number < appointment.token_number
            )
            message = "You are next." if tokens_ahead == 0 else f"{tokens_ahead} patient(s) ahead of you."

        try:
            projection = await self.projector.snapshot(appointment.facility_id, appointment.doctor_id)
            live = {
                "doctor_status": projection.status,
                "status_message": projection.status_message,
                "is_live": projection.is_live,
            }
        except Exception as e:
            logger.warning("queue_projection_read_failed", error=str(e))
            live = {}

        return PatientQueueView(
            **base,
            **live,
            mode=PatientQueueMode.ACTIVE,
            message=message,
            current_token=current_token,
            tokens_ahead=tokens_ahead,
            estimated_wait_minutes=tokens_ahead * duration,
            is_next=appointment.status == AppointmentStatus.CHECKED_IN and tokens_ahead == 0,
        )
