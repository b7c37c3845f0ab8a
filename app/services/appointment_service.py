"""Booking ledger: appointments and their version-checked state changes."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.appointment_states import TERMINAL_STATUSES, ensure_transition
from app.core.clock import from_client, utcnow
from app.core.exceptions import (
    BadRequestException,
    ForbiddenException,
    InvalidTransitionException,
    NotAffiliatedException,
    NotFoundException,
    SlotTakenException,
    VersionConflictException,
)
from app.models.appointments import appointments
from app.schemas.actors import ActorContext, ActorRole
from app.schemas.appointments import (
    AppointmentResponse,
    AppointmentSource,
    AppointmentStatus,
    BookingRequest,
    BookingResponse,
)
from app.services.affiliation_service import AffiliationService
from app.services.notification_service import NotificationService
from app.services.queue_projector import QueueProjector

logger = structlog.get_logger(__name__)

# Statuses that put a patient in the live queue
QUEUED_STATUSES = frozenset({AppointmentStatus.CHECKED_IN, AppointmentStatus.IN_CONSULTATION})


class AppointmentService:
    """Service for booking, reading and changing appointments."""

    def __init__(self, db: AsyncSession, projector: QueueProjector | None = None):
        """Initialize service with database session and optional live queue projector."""
        self.db = db
        self.projector = projector

    @staticmethod
    def to_response(row: Any) -> AppointmentResponse:
        return AppointmentResponse.model_validate(dict(row._mapping))

    @staticmethod
    def can_read(actor: ActorContext, appointment: AppointmentResponse) -> bool:
        """Patient, treating doctor, or staff of the facility."""
        if actor.role == ActorRole.PATIENT:
            return actor.actor_id == appointment.patient_id
        if actor.is_doctor:
            return actor.actor_id == appointment.doctor_id
        return actor.is_facility_member(appointment.facility_id)

    @staticmethod
    def can_manage(actor: ActorContext, appointment: AppointmentResponse) -> bool:
        """Treating doctor or staff of the facility."""
        if actor.is_doctor:
            return actor.actor_id == appointment.doctor_id
        return actor.is_facility_member(appointment.facility_id)

    async def fetch(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Load an appointment without access checks.

        Raises:
            NotFoundException: If appointment not found
        """
        result = await self.db.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return self.to_response(row)

    async def apply(self, current: AppointmentResponse, values: dict[str, Any]) -> AppointmentResponse:
        """
        Write changes guarded by the version the caller read.

        Does not commit. On a lost race the transaction is rolled back.

        Raises:
            VersionConflictException: If the stored version moved on
        """
        stmt = (
            update(appointments)
            .where(
                appointments.c.id == current.id,
                appointments.c.version == current.version,
            )
            .values(**values, version=appointments.c.version + 1, updated_at=utcnow())
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            await self.db.rollback()
            logger.info("appointment_version_conflict", appointment_id=str(current.id))
            raise VersionConflictException()
        return self.to_response(row)

    async def transition(
        self,
        current: AppointmentResponse,
        target: AppointmentStatus,
        values: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> AppointmentResponse:
        """
        Move an appointment to ``target`` if the transition table allows it.

        Args:
            current: Appointment as read by the caller (its version guards the write)
            target: Status to move to
            values: Extra columns written with the status change
            commit: Commit the transaction when done

        Raises:
            InvalidTransitionException: If the table forbids the move
            VersionConflictException: If a concurrent write got there first
        """
        ensure_transition(current.status, target)
        updated = await self.apply(current, {**(values or {}), "status": target.value})
        if commit:
            await self.db.commit()

        logger.info(
            "appointment_transitioned",
            appointment_id=str(current.id),
            from_status=current.status.value,
            to_status=target.value,
            version=updated.version,
        )
        return updated

    async def book(self, actor: ActorContext, data: BookingRequest) -> BookingResponse:
        """
        Book a slot for a patient.

        Patients book for themselves; facility staff may book on behalf of a
        patient. The uniqueness of (doctor, instant) among live appointments
        is enforced by the database.

        Raises:
            NotAffiliatedException: If the doctor is not approved at the facility
            SlotTakenException: If the instant is already held
        """
        if actor.role == ActorRole.PATIENT:
            if data.patient_id is not None and data.patient_id != actor.actor_id:
                raise ForbiddenException("Patients can only book for themselves")
            patient_id = actor.actor_id
            source = AppointmentSource.PATIENT_APP
        elif actor.is_facility_member(data.facility_id):
            if data.patient_id is None:
                raise BadRequestException("patient_id is required when booking for a patient")
            patient_id = data.patient_id
            source = AppointmentSource.RECEPTION
        else:
            raise ForbiddenException("Not allowed to book at this facility")

        try:
            affiliation = await AffiliationService(self.db).get_approved_affiliation(
                data.doctor_id, data.facility_id
            )
        except NotFoundException:
            raise NotAffiliatedException()

        values = {
            "patient_id": patient_id,
            "doctor_id": data.doctor_id,
            "facility_id": data.facility_id,
            "affiliation_id": affiliation.id,
            "scheduled_time": from_client(data.scheduled_time),
            "type": data.type.value,
            "source": source.value,
            "reason": data.reason,
            "status": AppointmentStatus.BOOKED.value,
            "version": 1,
        }

        try:
            result = await self.db.execute(insert(appointments).values(**values).returning(appointments))
            row = result.fetchone()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "slot_taken",
                doctor_id=str(data.doctor_id),
                scheduled_time=values["scheduled_time"].isoformat(),
            )
            raise SlotTakenException()

        appointment = self.to_response(row)
        logger.info(
            "appointment_booked",
            appointment_id=str(appointment.id),
            doctor_id=str(appointment.doctor_id),
            facility_id=str(appointment.facility_id),
        )

        # Send push notification (async, non-blocking)
        try:
            await NotificationService.send_booking_confirmation(appointment)
        except Exception as e:
            logger.warning("failed_to_send_booking_notification", error=str(e))

        return BookingResponse(
            appointment_id=appointment.id,
            status=appointment.status,
            appointment=appointment,
        )

    async def cancel(
        self,
        actor: ActorContext,
        appointment_id: UUID,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel an appointment, releasing its slot.

        Cancelling an already cancelled appointment returns it unchanged.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller cannot see the appointment
            InvalidTransitionException: If the appointment is completed or skipped
        """
        current = await self.fetch(appointment_id)
        if not self.can_read(actor, current):
            raise ForbiddenException("Access denied to this appointment")

        if current.status == AppointmentStatus.CANCELLED:
            return current

        cancelled = await self.transition(
            current,
            AppointmentStatus.CANCELLED,
            {
                "cancelled_at": utcnow(),
                "cancelled_by": actor.actor_id,
                "cancelled_by_role": actor.role.value,
                "cancel_reason": reason,
            },
        )

        if self.projector is not None and current.status in QUEUED_STATUSES:
            await self.projector.record_queue_change(cancelled.facility_id, cancelled.doctor_id)

        try:
            await NotificationService.send_cancellation_notice(cancelled)
        except Exception as e:
            logger.warning("failed_to_send_cancellation_notification", error=str(e))

        return cancelled

    async def get_appointment(self, actor: ActorContext, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If user doesn't have access
        """
        appointment = await self.fetch(appointment_id)
        if not self.can_read(actor, appointment):
            raise ForbiddenException("Access denied to this appointment")
        return appointment

    async def update_vitals(
        self,
        actor: ActorContext,
        appointment_id: UUID,
        vitals: dict[str, Any],
    ) -> AppointmentResponse:
        """Merge vitals into an open appointment. Status is unchanged."""
        current = await self.fetch(appointment_id)
        if not self.can_manage(actor, current):
            raise ForbiddenException("Only the doctor or facility staff can record vitals")

        if current.status in TERMINAL_STATUSES:
            raise InvalidTransitionException(
                f"Cannot update vitals. Current status: {current.status.value}",
                current_status=current.status.value,
            )

        updated = await self.apply(current, {"vitals": {**(current.vitals or {}), **vitals}})
        await self.db.commit()
        return updated
