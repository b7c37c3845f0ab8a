"""Live queue projection: what waiting rooms and patient screens display."""

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any
from uuid import UUID

import structlog

from app.core.clock import epoch_millis
from app.core.exceptions import ForbiddenException
from app.core.queue_channel import QueueChannel
from app.schemas.actors import ActorContext
from app.schemas.queue import DoctorStatus, QueueProjection

logger = structlog.get_logger(__name__)

_PROJECTION_FIELDS = frozenset(QueueProjection.model_fields) - {"facility_id", "doctor_id"}


class QueueProjector:
    """
    Writes and reads the per facility and doctor live queue document.

    The projection is advisory and never the source of truth for tokens or
    statuses. Hooks called from ledger operations are best effort: a failed
    write is logged and the committed ledger change stands.
    """

    def __init__(self, channel: QueueChannel):
        self.channel = channel

    @staticmethod
    def key(facility_id: UUID, doctor_id: UUID) -> str:
        return f"queues:{facility_id}:{doctor_id}"

    @staticmethod
    def _project(facility_id: UUID, doctor_id: UUID, raw: dict[str, Any] | None) -> QueueProjection:
        fields = {name: value for name, value in (raw or {}).items() if name in _PROJECTION_FIELDS}
        return QueueProjection(facility_id=facility_id, doctor_id=doctor_id, **fields)

    async def snapshot(self, facility_id: UUID, doctor_id: UUID) -> QueueProjection:
        """Current projection; defaults when nothing was published yet."""
        raw = await self.channel.read(self.key(facility_id, doctor_id))
        return self._project(facility_id, doctor_id, raw)

    async def subscribe(self, facility_id: UUID, doctor_id: UUID) -> AsyncIterator[QueueProjection]:
        """Full snapshot first, then one snapshot per write."""
        async with aclosing(self.channel.subscribe(self.key(facility_id, doctor_id))) as stream:
            async for raw in stream:
                yield self._project(facility_id, doctor_id, raw)

    async def _write(self, facility_id: UUID, doctor_id: UUID, fields: dict[str, Any]) -> QueueProjection:
        fields = {**fields, "last_updated": epoch_millis()}
        raw = await self.channel.write(self.key(facility_id, doctor_id), fields)
        projection = self._project(facility_id, doctor_id, raw)
        logger.debug(
            "queue_projection_written",
            facility_id=str(facility_id),
            doctor_id=str(doctor_id),
            seq=projection.seq,
        )
        return projection

    async def _write_best_effort(
        self,
        facility_id: UUID,
        doctor_id: UUID,
        fields: dict[str, Any],
    ) -> QueueProjection | None:
        try:
            return await self._write(facility_id, doctor_id, fields)
        except Exception as e:
            logger.warning(
                "queue_projection_write_failed",
                facility_id=str(facility_id),
                doctor_id=str(doctor_id),
                error=str(e),
            )
            return None

    async def set_status(
        self,
        actor: ActorContext,
        facility_id: UUID,
        doctor_id: UUID,
        status: DoctorStatus,
        message: str | None = None,
    ) -> QueueProjection:
        """
        Set the doctor's availability label on the live queue.

        ``current_token`` is left untouched; ``is_live`` follows SERVING.

        Raises:
            ForbiddenException: Unless the caller is that doctor or staff of the facility
        """
        is_self = actor.is_doctor and actor.actor_id == doctor_id
        if not (is_self or actor.is_facility_member(facility_id)):
            raise ForbiddenException("Only the doctor or facility staff can change queue status")

        projection = await self._write(
            facility_id,
            doctor_id,
            {
                "status": status.value,
                "status_message": message or "",
                "is_live": status == DoctorStatus.SERVING,
            },
        )
        logger.info(
            "queue_status_changed",
            facility_id=str(facility_id),
            doctor_id=str(doctor_id),
            status=status.value,
        )
        return projection

    async def record_check_in(self, facility_id: UUID, doctor_id: UUID) -> QueueProjection | None:
        """Nudge subscribers after a patient joined the queue."""
        return await self._write_best_effort(facility_id, doctor_id, {})

    async def record_consultation_started(
        self,
        facility_id: UUID,
        doctor_id: UUID,
        token_number: int,
    ) -> QueueProjection | None:
        """Publish the token now being served."""
        return await self._write_best_effort(
            facility_id,
            doctor_id,
            {
                "current_token": token_number,
                "is_live": True,
                "status": DoctorStatus.SERVING.value,
                "status_message": "",
            },
        )

    async def record_queue_change(self, facility_id: UUID, doctor_id: UUID) -> QueueProjection | None:
        """Nudge subscribers after a completion, skip or cancellation."""
        return await self._write_best_effort(facility_id, doctor_id, {})
