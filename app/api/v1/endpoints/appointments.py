"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CurrentActor, DatabaseSession, Projector
from app.schemas.appointments import (
    AppointmentResponse,
    AvailableSlotsResponse,
    BookingRequest,
    BookingResponse,
    CancelRequest,
    CheckInRequest,
    CheckInResponse,
    VitalsUpdate,
    WalkInRequest,
    WalkInResponse,
)
from app.schemas.queue import PatientQueueView
from app.services.appointment_service import AppointmentService
from app.services.queue_service import QueueService
from app.services.slot_service import SlotService
from app.services.token_service import TokenService

router = APIRouter()


@router.get(
    "/slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="Available slots",
)
async def get_available_slots(
    actor: CurrentActor,
    db: DatabaseSession,
    doctor_id: UUID = Query(...),
    facility_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
) -> AvailableSlotsResponse:
    """
    List bookable slots for a doctor at a facility on a date.

    Args:
        actor: Authenticated caller
        db: Database session
        doctor_id: Doctor ID
        facility_id: Facility ID
        day: Calendar date (YYYY-MM-DD) in the facility time zone

    Returns:
        Free slots in start order
    """
    return await SlotService(db).get_available_slots(doctor_id, facility_id, day)


@router.post(
    "/book",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a slot",
)
async def book_appointment(
    data: BookingRequest,
    actor: CurrentActor,
    db: DatabaseSession,
) -> BookingResponse:
    """
    Book a slot. The token is issued at check-in, not here.

    Returns 409 with ``action: refetch_slots`` when the slot was taken.
    """
    return await AppointmentService(db).book(actor, data)


@router.post(
    "/walk-in",
    response_model=WalkInResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a walk-in",
)
async def register_walk_in(
    data: WalkInRequest,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
) -> WalkInResponse:
    """Register an unbooked arrival and issue a token."""
    return await TokenService(db, projector).register_walk_in(actor, data)


@router.post(
    "/check-in",
    response_model=CheckInResponse,
    status_code=status.HTTP_200_OK,
    summary="Check in a booked patient",
)
async def check_in(
    data: CheckInRequest,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
) -> CheckInResponse:
    """
    Check in a booked appointment and issue the day's next token.

    Args:
        data: Appointment ID with optional vitals and payment status
        actor: Front desk staff or the doctor
        db: Database session
        projector: Live queue projector

    Returns:
        Token number and updated appointment
    """
    return await TokenService(db, projector).check_in(actor, data)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AppointmentResponse:
    """Get appointment by ID."""
    return await AppointmentService(db).get_appointment(actor, appointment_id)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
    data: CancelRequest | None = None,
) -> AppointmentResponse:
    """Cancel an appointment. Cancelling twice is a no-op."""
    reason = data.reason if data else None
    return await AppointmentService(db, projector).cancel(actor, appointment_id, reason)


@router.patch(
    "/{appointment_id}/vitals",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Record vitals",
)
async def update_vitals(
    appointment_id: UUID,
    data: VitalsUpdate,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AppointmentResponse:
    """Merge vitals into an open appointment."""
    return await AppointmentService(db).update_vitals(actor, appointment_id, data.vitals)


@router.get(
    "/{appointment_id}/queue",
    response_model=PatientQueueView,
    status_code=status.HTTP_200_OK,
    summary="Patient queue view",
)
async def get_patient_queue_view(
    appointment_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
    projector: Projector,
) -> PatientQueueView:
    """Queue position and live doctor status for one appointment."""
    return await QueueService(db, projector).get_patient_queue_view(actor, appointment_id)
