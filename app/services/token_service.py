"""Arrival handling and daily token issuing."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import operating_date, utcnow
from app.core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotAffiliatedException,
    NotFoundException,
    VersionConflictException,
)
from app.models.appointments import appointments
from app.models.token_counters import token_counters
from app.schemas.actors import ActorContext
from app.schemas.appointments import (
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
    CheckInRequest,
    CheckInResponse,
    WalkInRequest,
    WalkInResponse,
)
from app.services.affiliation_service import AffiliationService
from app.services.appointment_service import AppointmentService
from app.services.patient_service import PatientService
from app.services.queue_projector import QueueProjector

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TokenService:
    """
    Service turning arrivals into queue tokens.

    Tokens are strictly increasing from 1 per doctor, facility and operating
    day. The counter increment and the appointment write share a transaction,
    so an aborted check-in gives its number back.
    """

    def __init__(self, db: AsyncSession, projector: QueueProjector | None = None):
        """Initialize service with database session and optional live queue projector."""
        self.db = db
        self.projector = projector
        self.ledger = AppointmentService(db, projector)

    @staticmethod
    def _can_admit(actor: ActorContext, doctor_id: UUID, facility_id: UUID) -> bool:
        """Front desk of the facility or the doctor themselves."""
        if actor.is_doctor:
            return actor.actor_id == doctor_id
        return actor.is_facility_member(facility_id)

    async def next_token(self, doctor_id: UUID, facility_id: UUID, day: date) -> int:
        """
        Atomically increment and return the day's counter.

        The row stays locked until the surrounding transaction ends.
        """
        dialect = self.db.get_bind().dialect.name
        upsert = _UPSERT_DIALECTS.get(dialect)
        if upsert is None:
            raise RuntimeError(f"Token counters need an upsert capable database, got {dialect}")

        now = utcnow()
        stmt = upsert(token_counters).values(
            doctor_id=doctor_id,
            facility_id=facility_id,
            day=day,
            last_token=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                token_counters.c.doctor_id,
                token_counters.c.facility_id,
                token_counters.c.day,
            ],
            set_={
                "last_token": token_counters.c.last_token + 1,
                "updated_at": now,
            },
        ).returning(token_counters.c.last_token)

        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def _issue_with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run a token-issuing transaction, retrying transient storage conflicts.

        Raises:
            VersionConflictException: When the retries are used up
        """
        attempts = settings.token_issue_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except (VersionConflictException, IntegrityError, OperationalError) as e:
                await self.db.rollback()
                logger.warning("token_issue_conflict", attempt=attempt, error=str(e))
                if attempt < attempts:
                    await asyncio.sleep(settings.token_retry_backoff_seconds * attempt)

        raise VersionConflictException("Could not issue a token, please retry")

    async def check_in(self, actor: ActorContext, data: CheckInRequest) -> CheckInResponse:
        """
        Check in a booked patient and hand out the next token.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller is not front desk or the doctor
            InvalidTransitionException: If the appointment is not BOOKED
            VersionConflictException: If the token could not be issued
        """

        async def issue() -> tuple[Any, int]:
            current = await self.ledger.fetch(data.appointment_id)
            if not self._can_admit(actor, current.doctor_id, current.facility_id):
                raise ForbiddenException("Only facility staff or the doctor can check patients in")
            if current.status != AppointmentStatus.BOOKED:
                raise InvalidTransitionException(
                    f"Cannot check in. Current status: {current.status.value}",
                    current_status=current.status.value,
                )

            now = utcnow()
            day = operating_date(now)
            token = await self.next_token(current.doctor_id, current.facility_id, day)

            values: dict[str, Any] = {
                "token_number": token,
                "token_date": day,
                "check_in_time": now,
            }
            if data.vitals:
                values["vitals"] = {**(current.vitals or {}), **data.vitals}
            if data.payment_status is not None:
                values["payment_status"] = data.payment_status.value

            updated = await self.ledger.transition(
                current, AppointmentStatus.CHECKED_IN, values, commit=False
            )
            await self.db.commit()
            return updated, token

        appointment, token = await self._issue_with_retry(issue)

        logger.info(
            "patient_checked_in",
            appointment_id=str(appointment.id),
            token_number=token,
            doctor_id=str(appointment.doctor_id),
            facility_id=str(appointment.facility_id),
        )
        if self.projector is not None:
            await self.projector.record_check_in(appointment.facility_id, appointment.doctor_id)

        return CheckInResponse(
            token_number=token,
            status=appointment.status,
            appointment=appointment,
        )

    async def register_walk_in(self, actor: ActorContext, data: WalkInRequest) -> WalkInResponse:
        """
        Register a patient who arrived without a booking.

        The patient is matched by phone or created, then an appointment is
        created directly in CHECKED_IN with a fresh token.

        Raises:
            ForbiddenException: If the caller is not front desk or the doctor
            NotAffiliatedException: If the doctor is not approved at the facility
            VersionConflictException: If the token could not be issued
        """
        if not self._can_admit(actor, data.doctor_id, data.facility_id):
            raise ForbiddenException("Only facility staff or the doctor can register walk-ins")

        try:
            affiliation = await AffiliationService(self.db).get_approved_affiliation(
                data.doctor_id, data.facility_id
            )
        except NotFoundException:
            raise NotAffiliatedException()

        patient_id, created = await PatientService(self.db).find_or_create_by_phone(data.patient)

        if data.is_emergency:
            visit_type = AppointmentType.EMERGENCY
            reason = data.reason or "Emergency walk-in"
        else:
            visit_type = AppointmentType.WALK_IN
            reason = data.reason or "Reception walk-in"

        async def issue() -> tuple[Any, int]:
            now = utcnow()
            day = operating_date(now)
            token = await self.next_token(data.doctor_id, data.facility_id, day)

            values = {
                "patient_id": patient_id,
                "doctor_id": data.doctor_id,
                "facility_id": data.facility_id,
                "affiliation_id": affiliation.id,
                "scheduled_time": now,
                "type": visit_type.value,
                "source": AppointmentSource.RECEPTION.value,
                "reason": reason,
                "status": AppointmentStatus.CHECKED_IN.value,
                "version": 1,
                "token_number": token,
                "token_date": day,
                "check_in_time": now,
                "payment_status": data.payment_status.value,
            }
            result = await self.db.execute(insert(appointments).values(**values).returning(appointments))
            row = result.fetchone()
            await self.db.commit()
            return AppointmentService.to_response(row), token

        appointment, token = await self._issue_with_retry(issue)

        logger.info(
            "walk_in_registered",
            appointment_id=str(appointment.id),
            patient_id=str(patient_id),
            token_number=token,
            emergency=data.is_emergency,
        )
        if self.projector is not None:
            await self.projector.record_check_in(data.facility_id, data.doctor_id)

        return WalkInResponse(
            token_number=token,
            appointment_id=appointment.id,
            patient_id=patient_id,
            patient_created=created,
            appointment=appointment,
        )
