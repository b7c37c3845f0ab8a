"""Affiliation registry: doctor-facility relationships and their schedules."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import utcnow
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
)
from app.models.affiliations import affiliations
from app.schemas.actors import ActorContext, ActorRole
from app.schemas.affiliations import (
    AffiliationCreate,
    AffiliationListResponse,
    AffiliationRequestType,
    AffiliationResponse,
    AffiliationStatus,
    DateOverride,
    ScheduleUpdate,
)

logger = structlog.get_logger(__name__)


class AffiliationService:
    """Service for the doctor-facility affiliation lifecycle and schedules."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    @staticmethod
    def _to_response(row: Any) -> AffiliationResponse:
        return AffiliationResponse.model_validate(dict(row._mapping))

    @staticmethod
    def _is_party(actor: ActorContext, affiliation: AffiliationResponse) -> bool:
        """Doctor of the affiliation or admin of its facility."""
        if actor.is_doctor:
            return actor.actor_id == affiliation.doctor_id
        return actor.is_facility_admin(affiliation.facility_id)

    async def _fetch(self, affiliation_id: UUID) -> AffiliationResponse:
        result = await self.db.execute(
            select(affiliations).where(affiliations.c.id == affiliation_id)
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Affiliation not found")
        return self._to_response(row)

    async def _compare_and_set(
        self,
        affiliation: AffiliationResponse,
        expected: AffiliationStatus,
        values: dict[str, Any],
    ) -> AffiliationResponse:
        """Apply a status change only if the stored status is still ``expected``."""
        stmt = (
            update(affiliations)
            .where(
                affiliations.c.id == affiliation.id,
                affiliations.c.status == expected.value,
            )
            .values(**values, updated_at=utcnow())
            .returning(affiliations)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            await self.db.rollback()
            latest = await self._fetch(affiliation.id)
            raise InvalidTransitionException(
                f"Affiliation is no longer {expected.value}. Current status: {latest.status.value}",
                current_status=latest.status.value,
            )
        await self.db.commit()
        return self._to_response(row)

    async def request_affiliation(
        self,
        actor: ActorContext,
        data: AffiliationCreate,
    ) -> AffiliationResponse:
        """
        Open a PENDING affiliation between a doctor and a facility.

        Doctors may only request for themselves; hospital admins only for
        their own facility.

        Raises:
            ForbiddenException: If the caller is not one of the two parties
            ConflictException: If a pending or approved affiliation already exists
        """
        if actor.role == ActorRole.DOCTOR and actor.actor_id == data.doctor_id:
            request_type = AffiliationRequestType.DOCTOR_TO_HOSPITAL
        elif actor.is_facility_admin(data.facility_id):
            request_type = AffiliationRequestType.HOSPITAL_TO_DOCTOR
        else:
            raise ForbiddenException("Only the doctor or the facility admin can open an affiliation")

        values = {
            "doctor_id": data.doctor_id,
            "facility_id": data.facility_id,
            "status": AffiliationStatus.PENDING.value,
            "request_type": request_type.value,
            "requested_by": actor.actor_id,
            "consultation_fee": data.consultation_fee,
            "consultation_room": data.consultation_room,
            "notes": data.notes,
            "slot_duration_minutes": (
                data.slot_duration_minutes or settings.default_slot_duration_minutes
            ),
            "weekly_schedule": [],
            "date_overrides": [],
        }

        try:
            result = await self.db.execute(
                affiliations.insert().values(**values).returning(affiliations)
            )
            row = result.fetchone()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictException("An affiliation between this doctor and facility already exists")

        logger.info(
            "affiliation_requested",
            affiliation_id=str(row.id),
            doctor_id=str(data.doctor_id),
            facility_id=str(data.facility_id),
            request_type=request_type.value,
        )
        return self._to_response(row)

    async def respond(
        self,
        actor: ActorContext,
        affiliation_id: UUID,
        approve: bool,
    ) -> AffiliationResponse:
        """
        Accept or reject a pending affiliation.

        Only the counterparty of the request may respond, and only once.
        """
        affiliation = await self._fetch(affiliation_id)

        if affiliation.request_type == AffiliationRequestType.DOCTOR_TO_HOSPITAL:
            allowed = actor.is_facility_admin(affiliation.facility_id)
        else:
            allowed = actor.is_doctor and actor.actor_id == affiliation.doctor_id
        if not allowed:
            raise ForbiddenException("Only the invited party can respond to this affiliation")

        if affiliation.status != AffiliationStatus.PENDING:
            raise InvalidTransitionException(
                f"Affiliation already answered. Current status: {affiliation.status.value}",
                current_status=affiliation.status.value,
            )

        target = AffiliationStatus.APPROVED if approve else AffiliationStatus.REJECTED
        updated = await self._compare_and_set(
            affiliation,
            AffiliationStatus.PENDING,
            {
                "status": target.value,
                "responded_at": utcnow(),
                "responded_by": actor.actor_id,
            },
        )
        logger.info("affiliation_answered", affiliation_id=str(affiliation_id), status=target.value)
        return updated

    async def revoke(
        self,
        actor: ActorContext,
        affiliation_id: UUID,
        reason: str | None = None,
    ) -> AffiliationResponse:
        """End an approved affiliation. Either party may revoke."""
        affiliation = await self._fetch(affiliation_id)
        if not self._is_party(actor, affiliation):
            raise ForbiddenException("Access denied to this affiliation")

        if affiliation.status != AffiliationStatus.APPROVED:
            raise InvalidTransitionException(
                f"Only approved affiliations can be revoked. Current status: {affiliation.status.value}",
                current_status=affiliation.status.value,
            )

        updated = await self._compare_and_set(
            affiliation,
            AffiliationStatus.APPROVED,
            {
                "status": AffiliationStatus.REVOKED.value,
                "revoked_at": utcnow(),
                "revoked_by": actor.actor_id,
                "revoke_reason": reason,
            },
        )
        logger.info("affiliation_revoked", affiliation_id=str(affiliation_id))
        return updated

    async def get_affiliation(self, actor: ActorContext, affiliation_id: UUID) -> AffiliationResponse:
        """Get an affiliation visible to the caller."""
        affiliation = await self._fetch(affiliation_id)
        visible = self._is_party(actor, affiliation) or actor.is_facility_member(
            affiliation.facility_id
        )
        if not visible:
            raise ForbiddenException("Access denied to this affiliation")
        return affiliation

    async def list_affiliations(
        self,
        actor: ActorContext,
        status: AffiliationStatus | None = None,
    ) -> AffiliationListResponse:
        """List the caller's affiliations (a doctor's, or a facility's)."""
        if actor.is_doctor:
            conditions = [affiliations.c.doctor_id == actor.actor_id]
        elif actor.facility_id is not None and actor.is_facility_member(actor.facility_id):
            conditions = [affiliations.c.facility_id == actor.facility_id]
        else:
            raise ForbiddenException("Affiliations are only listed for doctors and facility staff")

        if status:
            conditions.append(affiliations.c.status == status.value)

        total_result = await self.db.execute(
            select(func.count()).select_from(affiliations).where(and_(*conditions))
        )
        result = await self.db.execute(
            select(affiliations)
            .where(and_(*conditions))
            .order_by(affiliations.c.created_at.desc())
        )
        return AffiliationListResponse(
            total=total_result.scalar() or 0,
            items=[self._to_response(row) for row in result.fetchall()],
        )

    async def get_approved_affiliation(
        self,
        doctor_id: UUID,
        facility_id: UUID,
    ) -> AffiliationResponse:
        """
        Source of truth for "is this doctor working here".

        Raises:
            NotFoundException: If there is no APPROVED affiliation for the pair
        """
        result = await self.db.execute(
            select(affiliations).where(
                affiliations.c.doctor_id == doctor_id,
                affiliations.c.facility_id == facility_id,
                affiliations.c.status == AffiliationStatus.APPROVED.value,
            )
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("No approved affiliation for this doctor and facility")
        return self._to_response(row)

    async def find_latest(self, doctor_id: UUID, facility_id: UUID) -> AffiliationResponse | None:
        """Most recent affiliation for the pair in any status."""
        result = await self.db.execute(
            select(affiliations)
            .where(
                affiliations.c.doctor_id == doctor_id,
                affiliations.c.facility_id == facility_id,
            )
            .order_by(affiliations.c.created_at.desc())
            .limit(1)
        )
        row = result.fetchone()
        return self._to_response(row) if row else None

    @staticmethod
    def _stamp_overrides(
        incoming: list[DateOverride],
        existing: list[DateOverride],
        actor: ActorContext,
    ) -> list[dict]:
        """Keep audit stamps of unchanged overrides, stamp new or edited ones."""
        previous = {override.date: override for override in existing}
        now = utcnow()
        stamped = []
        for override in incoming:
            before = previous.get(override.date)
            unchanged = (
                before is not None
                and before.unavailable == override.unavailable
                and before.slots == override.slots
                and before.reason == override.reason
            )
            if unchanged:
                override = before
            else:
                override = override.model_copy(
                    update={
                        "updated_by": actor.actor_id,
                        "updated_by_role": actor.role.value,
                        "updated_at": now,
                    }
                )
            stamped.append(override.model_dump(mode="json"))
        return stamped

    async def update_schedule(
        self,
        actor: ActorContext,
        affiliation_id: UUID,
        data: ScheduleUpdate,
    ) -> AffiliationResponse:
        """
        Replace the weekly pattern and/or date overrides of an approved affiliation.

        Either the doctor or the facility admin may write; the last writer
        wins and every write is stamped with the writer for audit.

        Raises:
            ForbiddenException: If the caller is not a party of the affiliation
            InvalidTransitionException: If the affiliation is not APPROVED
        """
        affiliation = await self._fetch(affiliation_id)
        if not self._is_party(actor, affiliation):
            raise ForbiddenException("Access denied to this affiliation")

        if affiliation.status != AffiliationStatus.APPROVED:
            raise InvalidTransitionException(
                f"Schedule can only change on approved affiliations. Current status: {affiliation.status.value}",
                current_status=affiliation.status.value,
            )

        now = utcnow()
        values: dict[str, Any] = {
            "last_schedule_updated_at": now,
            "last_schedule_updated_by": actor.actor_id,
            "last_schedule_updated_by_role": actor.role.value,
            "updated_at": now,
        }
        if data.weekly_schedule is not None:
            values["weekly_schedule"] = [day.model_dump(mode="json") for day in data.weekly_schedule]
        if data.date_overrides is not None:
            values["date_overrides"] = self._stamp_overrides(
                data.date_overrides, affiliation.date_overrides, actor
            )
        if data.slot_duration_minutes is not None:
            values["slot_duration_minutes"] = data.slot_duration_minutes

        stmt = (
            update(affiliations)
            .where(
                affiliations.c.id == affiliation_id,
                affiliations.c.status == AffiliationStatus.APPROVED.value,
            )
            .values(**values)
            .returning(affiliations)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            await self.db.rollback()
            raise InvalidTransitionException("Affiliation is no longer approved")
        await self.db.commit()

        logger.info(
            "affiliation_schedule_updated",
            affiliation_id=str(affiliation_id),
            updated_by=str(actor.actor_id),
            updated_by_role=actor.role.value,
        )
        return self._to_response(row)
