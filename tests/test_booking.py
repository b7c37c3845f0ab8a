"""Tests for booking, cancellation and appointment reads."""

import asyncio
from datetime import datetime
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotAffiliatedException,
    SlotTakenException,
    VersionConflictException,
)
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus, AppointmentType, BookingRequest, BookingResponse
from app.services.appointment_service import AppointmentService
from app.services.notification_service import NotificationService


def _booking(doctor, facility_id, scheduled_time, **extra) -> BookingRequest:
    return BookingRequest(
        doctor_id=doctor.actor_id,
        facility_id=facility_id,
        scheduled_time=scheduled_time,
        **extra,
    )


@pytest.mark.asyncio
async def test_book_appointment(db_session, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test a booking creates a BOOKED appointment without a token."""
    result = await AppointmentService(db_session).book(
        patient, _booking(doctor, facility_id, slot_at(10, 0), reason="Fever", type="consultation")
    )

    appointment = result.appointment
    assert result.status == AppointmentStatus.BOOKED
    assert appointment.patient_id == patient.actor_id
    assert appointment.affiliation_id == affiliation.id
    assert appointment.type == AppointmentType.REGULAR
    assert appointment.source == "patient_app"
    assert appointment.version == 1
    assert appointment.token_number is None
    assert appointment.scheduled_time == slot_at(10, 0)


@pytest.mark.asyncio
async def test_book_requires_approved_affiliation(db_session, patient, doctor, slot_at) -> None:
    """Test booking an unaffiliated doctor fails."""
    with pytest.raises(NotAffiliatedException):
        await AppointmentService(db_session).book(patient, _booking(doctor, uuid4(), slot_at(10, 0)))


@pytest.mark.asyncio
async def test_double_booking_rejected(db_session, make_patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test the second booking of an instant fails with a refetch hint."""
    service = AppointmentService(db_session)
    await service.book(make_patient(), _booking(doctor, facility_id, slot_at(11, 0)))

    with pytest.raises(SlotTakenException) as exc_info:
        await service.book(make_patient(), _booking(doctor, facility_id, slot_at(11, 0)))
    assert exc_info.value.details == {"action": "refetch_slots"}


@pytest.mark.asyncio
async def test_concurrent_bookings_one_winner(
    session_factory, make_patient, doctor, facility_id, affiliation, slot_at
) -> None:
    """Test parallel bookings of one instant produce exactly one appointment."""

    async def attempt():
        async with session_factory() as session:
            return await AppointmentService(session).book(
                make_patient(), _booking(doctor, facility_id, slot_at(12, 0))
            )

    results = await asyncio.gather(*(attempt() for _ in range(8)), return_exceptions=True)

    winners = [result for result in results if isinstance(result, BookingResponse)]
    losers = [result for result in results if isinstance(result, SlotTakenException)]
    assert len(winners) == 1
    assert len(losers) == 7

    async with session_factory() as session:
        count = await session.execute(
            select(func.count()).select_from(appointments).where(appointments.c.doctor_id == doctor.actor_id)
        )
        assert count.scalar() == 1


@pytest.mark.asyncio
async def test_cancel_releases_slot_and_is_idempotent(
    db_session, patient, make_patient, doctor, facility_id, affiliation, slot_at
) -> None:
    """Test cancelling frees the instant and a second cancel changes nothing."""
    service = AppointmentService(db_session)
    booked = await service.book(patient, _booking(doctor, facility_id, slot_at(14, 0)))

    cancelled = await service.cancel(patient, booked.appointment_id, reason="Travelling")
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_by == patient.actor_id
    assert cancelled.cancelled_by_role == "patient"
    assert cancelled.cancel_reason == "Travelling"
    assert cancelled.version == 2

    again = await service.cancel(patient, booked.appointment_id)
    assert again.version == cancelled.version

    rebooked = await service.book(make_patient(), _booking(doctor, facility_id, slot_at(14, 0)))
    assert rebooked.status == AppointmentStatus.BOOKED


@pytest.mark.asyncio
async def test_other_patient_cannot_cancel(db_session, patient, make_patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test appointments are private to their patient."""
    service = AppointmentService(db_session)
    booked = await service.book(patient, _booking(doctor, facility_id, slot_at(15, 0)))

    with pytest.raises(ForbiddenException):
        await service.cancel(make_patient(), booked.appointment_id)
    with pytest.raises(ForbiddenException):
        await service.get_appointment(make_patient(), booked.appointment_id)


@pytest.mark.asyncio
async def test_skipped_appointment_cannot_be_cancelled(
    db_session, patient, doctor, staff, facility_id, affiliation, slot_at
) -> None:
    """Test terminal appointments reject cancellation."""
    service = AppointmentService(db_session)
    booked = await service.book(patient, _booking(doctor, facility_id, slot_at(15, 30)))
    current = await service.fetch(booked.appointment_id)
    await service.transition(current, AppointmentStatus.SKIPPED)

    with pytest.raises(InvalidTransitionException) as exc_info:
        await service.cancel(staff, booked.appointment_id)
    assert exc_info.value.current_status == "SKIPPED"


@pytest.mark.asyncio
async def test_staff_books_for_patient(db_session, staff, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test reception bookings need a patient and are marked as such."""
    service = AppointmentService(db_session)

    result = await service.book(staff, _booking(doctor, facility_id, slot_at(16, 0), patient_id=patient.actor_id))
    assert result.appointment.patient_id == patient.actor_id
    assert result.appointment.source == "reception"


@pytest.mark.asyncio
async def test_notification_failure_keeps_booking(
    db_session, patient, doctor, facility_id, affiliation, slot_at, monkeypatch
) -> None:
    """Test a broken notification path does not undo the booking."""

    async def broken(appointment):
        raise ConnectionError("FCM unreachable")

    monkeypatch.setattr(NotificationService, "send_booking_confirmation", broken)

    result = await AppointmentService(db_session).book(patient, _booking(doctor, facility_id, slot_at(16, 30)))

    stored = await AppointmentService(db_session).fetch(result.appointment_id)
    assert stored.status == AppointmentStatus.BOOKED


@pytest.mark.asyncio
async def test_vitals_are_merged(db_session, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test vitals accumulate across writes."""
    service = AppointmentService(db_session)
    booked = await service.book(patient, _booking(doctor, facility_id, slot_at(10, 30)))

    await service.update_vitals(doctor, booked.appointment_id, {"bp": "120/80"})
    updated = await service.update_vitals(doctor, booked.appointment_id, {"pulse": 72})

    assert updated.vitals == {"bp": "120/80", "pulse": 72}
    assert updated.status == AppointmentStatus.BOOKED

    with pytest.raises(ForbiddenException):
        await service.update_vitals(patient, booked.appointment_id, {"pulse": 90})


@pytest.mark.asyncio
async def test_stale_version_conflicts(db_session, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test a write based on an old read loses."""

    service = AppointmentService(db_session)
    booked = await service.book(patient, _booking(doctor, facility_id, slot_at(9, 0)))
    stale = await service.fetch(booked.appointment_id)
    await service.update_vitals(doctor, booked.appointment_id, {"temp": 37.2})

    with pytest.raises(VersionConflictException):
        await service.transition(stale, AppointmentStatus.CANCELLED)


@pytest.mark.asyncio
async def test_booking_api(client: AsyncClient, auth_headers, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test booking, reading and double booking over HTTP."""
    payload = {
        "doctor_id": str(doctor.actor_id),
        "facility_id": str(facility_id),
        "scheduled_time": slot_at(13, 45).isoformat(),
        "reason": "Follow up",
    }

    response = await client.post("/api/v1/appointments/book", json=payload, headers=auth_headers(patient))
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "BOOKED"
    assert "Token will be assigned upon arrival" in data["message"]

    response = await client.get(f"/api/v1/appointments/{data['appointment_id']}", headers=auth_headers(doctor))
    assert response.status_code == 200
    assert response.json()["reason"] == "Follow up"

    response = await client.post("/api/v1/appointments/book", json=payload, headers=auth_headers(patient))
    assert response.status_code == 409
    assert response.json()["error"] == "SlotTakenException"
    assert response.json()["details"]["action"] == "refetch_slots"


@pytest.mark.asyncio
async def test_naive_time_is_facility_local(client: AsyncClient, auth_headers, patient, doctor, facility_id, affiliation, slot_at) -> None:
    """Test times without an offset are read as facility wall-clock time."""
    local = slot_at(10, 45)
    response = await client.post(
        "/api/v1/appointments/book",
        json={
            "doctor_id": str(doctor.actor_id),
            "facility_id": str(facility_id),
            "scheduled_time": local.replace(tzinfo=None).isoformat(),
        },
        headers=auth_headers(patient),
    )

    assert response.status_code == 201

    assert datetime.fromisoformat(response.json()["appointment"]["scheduled_time"]) == local
