"""Queue endpoints: doctor actions, queue views and the live projection."""

from contextlib import aclosing
from datetime import date
from uuid import UUID

import anyio
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.dependencies import CurrentActor, DatabaseSession, Projector, WebSocketActor
from app.schemas.queue import (
    DoctorQueueResponse,
    QueueActionRequest,
    QueueActionResponse,
    QueueProjection,
    QueueStatusUpdate,
)
from app.services.queue_projector import QueueProjector
from app.services.queue_service import QueueService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/action",
    response_model=QueueActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Perform a queue action",
)
async def perform_queue_action(
    data: QueueActionRequest,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
) -> QueueActionResponse:
    """
    Start, complete or skip a consultation.

    Args:
        data: Appointment ID, action name and optional notes or skip reason
        actor: The appointment's doctor
        db: Database session
        projector: Live queue projector

    Returns:
        Applied action and updated appointment
    """
    return await QueueService(db, projector).perform_action(actor, data)


@router.get(
    "/{facility_id}/{doctor_id}",
    response_model=DoctorQueueResponse,
    status_code=status.HTTP_200_OK,
    summary="Doctor queue",
)
async def get_doctor_queue(
    facility_id: UUID,
    doctor_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
    day: date | None = Query(None, alias="date"),
) -> DoctorQueueResponse:
    """Authoritative queue for a doctor at a facility, today by default."""
    return await QueueService(db, projector).get_doctor_queue(actor, facility_id, doctor_id, day)


@router.get(
    "/{facility_id}/{doctor_id}/projection",
    response_model=QueueProjection,
    status_code=status.HTTP_200_OK,
    summary="Live queue snapshot",
)
async def get_projection(
    facility_id: UUID,
    doctor_id: UUID,
    actor: CurrentActor,
    projector: Projector,
) -> QueueProjection:
    """Current live queue document."""
    return await projector.snapshot(facility_id, doctor_id)


@router.post(
    "/{facility_id}/{doctor_id}/status",
    response_model=QueueProjection,
    status_code=status.HTTP_200_OK,
    summary="Set doctor status",
)
async def set_doctor_status(
    facility_id: UUID,
    doctor_id: UUID,
    data: QueueStatusUpdate,
    actor: CurrentActor,
    projector: Projector,
) -> QueueProjection:
    """Set the doctor's availability label shown on waiting room screens."""
    return await projector.set_status(actor, facility_id, doctor_id, data.status, data.message)


async def _send_updates(
    websocket: WebSocket,
    projector: QueueProjector,
    facility_id: UUID,
    doctor_id: UUID,
) -> None:
    async with aclosing(projector.subscribe(facility_id, doctor_id)) as projections:
        async for projection in projections:
            await websocket.send_json(projection.model_dump(mode="json"))


async def _wait_for_disconnect(websocket: WebSocket, cancel_scope: anyio.CancelScope) -> None:
    # Client messages carry no meaning; only the disconnect matters
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            cancel_scope.cancel()
            return


@router.websocket("/{facility_id}/{doctor_id}/live")
async def stream_projection(
    websocket: WebSocket,
    facility_id: UUID,
    doctor_id: UUID,
    actor: WebSocketActor,
    projector: Projector,
) -> None:
    """Push the live queue document: a full snapshot first, then every change."""
    if actor is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info(
        "queue_stream_opened",
        facility_id=str(facility_id),
        doctor_id=str(doctor_id),
        actor_id=str(actor.actor_id),
    )

    failure: Exception | None = None
    async with anyio.create_task_group() as task_group:
        task_group.start_soon(_wait_for_disconnect, websocket, task_group.cancel_scope)
        try:
            await _send_updates(websocket, projector, facility_id, doctor_id)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            failure = e
        task_group.cancel_scope.cancel()

    if failure is not None:
        logger.warning("queue_stream_failed", facility_id=str(facility_id), error=str(failure))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    logger.info("queue_stream_closed", facility_id=str(facility_id), doctor_id=str(doctor_id))
