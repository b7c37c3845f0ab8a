"""Tests for doctor queue actions and queue views."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.core.exceptions import (
    ForbiddenException,
    InvalidActionException,
    InvalidTransitionException,
)
from app.schemas.actors import ActorContext, ActorRole
from app.schemas.appointments import AppointmentStatus, BookingRequest, CheckInRequest
from app.schemas.queue import DoctorStatus, PatientQueueMode, QueueAction, QueueActionRequest
from app.services.appointment_service import AppointmentService
from app.services.queue_service import QueueService, parse_action
from app.services.token_service import TokenService


@pytest.fixture
def queue_service(db_session, projector) -> QueueService:
    return QueueService(db_session, projector)


@pytest.fixture
def arrive(db_session, staff, doctor, facility_id, affiliation, slot_at, make_patient):
    """Book a slot today and check it in; returns the appointment."""

    async def _arrive(hour: int, minute: int = 0, patient: ActorContext | None = None):
        booked = await AppointmentService(db_session).book(
            patient or make_patient(),
            BookingRequest(
                doctor_id=doctor.actor_id,
                facility_id=facility_id,
                scheduled_time=slot_at(hour, minute, days=0),
            ),
        )
        result = await TokenService(db_session).check_in(staff, CheckInRequest(appointment_id=booked.appointment_id))
        return result.appointment

    return _arrive


def _action(appointment, action: str, **extra) -> QueueActionRequest:
    return QueueActionRequest(appointment_id=appointment.id, action=action, **extra)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("START_CONSULTATION", QueueAction.START_CONSULTATION),
        ("complete", QueueAction.COMPLETE),
        (" Skip ", QueueAction.SKIP),
    ],
)
def test_parse_action(raw: str, expected: QueueAction) -> None:
    """Test action names are case-insensitive."""
    assert parse_action(raw) == expected


def test_parse_unknown_action() -> None:
    """Test unknown actions are rejected with the offending name."""
    with pytest.raises(InvalidActionException) as exc_info:
        parse_action("RECALL")

    assert exc_info.value.status_code == 400
    assert "RECALL" in exc_info.value.message


@pytest.mark.asyncio
async def test_start_then_complete(queue_service, arrive, doctor) -> None:
    """Test the happy path through a consultation."""
    appointment = await arrive(9)

    started = await queue_service.perform_action(doctor, _action(appointment, "START_CONSULTATION"))
    assert started.appointment.status == AppointmentStatus.IN_CONSULTATION
    assert started.appointment.consultation_start_time is not None

    completed = await queue_service.perform_action(
        doctor, _action(appointment, "COMPLETE", notes="Rest and fluids")
    )
    assert completed.action == QueueAction.COMPLETE
    assert completed.appointment.status == AppointmentStatus.COMPLETED
    assert completed.appointment.consultation_end_time is not None
    assert completed.appointment.notes == "Rest and fluids"
    assert completed.appointment.version == appointment.version + 2


@pytest.mark.asyncio
async def test_complete_requires_consultation(queue_service, arrive, doctor) -> None:
    """Test COMPLETE on a waiting patient fails and changes nothing."""
    appointment = await arrive(9, 15)

    with pytest.raises(InvalidTransitionException) as exc_info:
        await queue_service.perform_action(doctor, _action(appointment, "COMPLETE"))
    assert exc_info.value.current_status == "CHECKED_IN"

    stored = await queue_service.ledger.fetch(appointment.id)
    assert stored.status == AppointmentStatus.CHECKED_IN
    assert stored.version == appointment.version


@pytest.mark.asyncio
async def test_one_consultation_at_a_time(queue_service, arrive, doctor) -> None:
    """Test a doctor cannot start a second consultation."""
    first = await arrive(9, 30)
    second = await arrive(9, 45)
    await queue_service.perform_action(doctor, _action(first, "START_CONSULTATION"))

    with pytest.raises(InvalidTransitionException) as exc_info:
        await queue_service.perform_action(doctor, _action(second, "START_CONSULTATION"))
    assert exc_info.value.message == "Finish the current consultation first"

    await queue_service.perform_action(doctor, _action(first, "COMPLETE"))
    started = await queue_service.perform_action(doctor, _action(second, "START_CONSULTATION"))
    assert started.appointment.status == AppointmentStatus.IN_CONSULTATION


@pytest.mark.asyncio
async def test_skip_records_who_and_why(queue_service, arrive, doctor) -> None:
    """Test skipping a no-show."""
    appointment = await arrive(10)

    result = await queue_service.perform_action(doctor, _action(appointment, "skip", reason="Not present"))

    skipped = result.appointment
    assert skipped.status == AppointmentStatus.SKIPPED
    assert skipped.skipped_at is not None
    assert skipped.skipped_by == doctor.actor_id
    assert skipped.skip_reason == "Not present"


@pytest.mark.asyncio
async def test_only_owning_doctor_acts(queue_service, arrive, staff) -> None:
    """Test other doctors and staff cannot drive the queue."""
    appointment = await arrive(10, 15)
    other_doctor = ActorContext(actor_id=uuid4(), role=ActorRole.DOCTOR)

    for actor in (other_doctor, staff):
        with pytest.raises(ForbiddenException):
            await queue_service.perform_action(actor, _action(appointment, "START_CONSULTATION"))


@pytest.mark.asyncio
async def test_doctor_queue(queue_service, arrive, doctor, staff, facility_id) -> None:
    """Test the console lists the consultation first, then waiting tokens."""
    first = await arrive(11)
    second = await arrive(11, 15)
    third = await arrive(11, 30)
    fourth = await arrive(11, 45)

    await queue_service.perform_action(doctor, _action(first, "START_CONSULTATION"))
    await queue_service.perform_action(doctor, _action(first, "COMPLETE"))
    await queue_service.perform_action(doctor, _action(second, "SKIP"))
    await queue_service.perform_action(doctor, _action(fourth, "START_CONSULTATION"))

    queue = await queue_service.get_doctor_queue(staff, facility_id, doctor.actor_id)

    assert [entry.token_number for entry in queue.entries] == [4, 3]
    assert queue.entries[0].status == AppointmentStatus.IN_CONSULTATION
    assert queue.current_token == 4
    assert queue.next_appointment_id == third.id
    assert queue.waiting_count == 1
    assert queue.completed_count == 1
    assert queue.skipped_count == 1


@pytest.mark.asyncio
async def test_current_token_falls_back_to_last_completed(queue_service, arrive, doctor, facility_id) -> None:
    """Test the current token once nobody is in consultation."""
    empty = await queue_service.get_doctor_queue(doctor, facility_id, doctor.actor_id)
    assert empty.current_token == 0

    appointment = await arrive(12)
    await queue_service.perform_action(doctor, _action(appointment, "START_CONSULTATION"))
    await queue_service.perform_action(doctor, _action(appointment, "COMPLETE"))

    queue = await queue_service.get_doctor_queue(doctor, facility_id, doctor.actor_id)
    assert queue.current_token == appointment.token_number


@pytest.mark.asyncio
async def test_doctor_queue_access(queue_service, doctor, facility_id, patient) -> None:
    """Test patients cannot read the console queue."""
    with pytest.raises(ForbiddenException):
        await queue_service.get_doctor_queue(patient, facility_id, doctor.actor_id)


@pytest.mark.asyncio
async def test_patient_view_modes(
    db_session, queue_service, arrive, doctor, patient, facility_id, slot_at, affiliation
) -> None:
    """Test RELAX, ACTIVE, PANIC and CLOSED screens."""
    booked = await AppointmentService(db_session).book(
        patient,
        BookingRequest(doctor_id=doctor.actor_id, facility_id=facility_id, scheduled_time=slot_at(13, 0)),
    )
    view = await queue_service.get_patient_queue_view(patient, booked.appointment_id)
    assert view.mode == PatientQueueMode.RELAX
    assert view.token_number is None

    first = await arrive(12, 0)
    await arrive(12, 15)
    mine = await arrive(12, 30, patient=patient)

    view = await queue_service.get_patient_queue_view(patient, mine.id)
    assert view.mode == PatientQueueMode.ACTIVE
    assert view.token_number == 3
    assert view.tokens_ahead == 2
    assert view.estimated_wait_minutes == 30
    assert view.is_next is False
    assert view.current_token == 0

    await queue_service.perform_action(doctor, _action(first, "START_CONSULTATION"))
    view = await queue_service.get_patient_queue_view(patient, mine.id)
    assert view.current_token == 1
    assert view.tokens_ahead == 1
    assert view.doctor_status == DoctorStatus.SERVING
    assert view.is_live is True

    await queue_service.perform_action(doctor, _action(mine, "SKIP"))
    view = await queue_service.get_patient_queue_view(patient, mine.id)
    assert view.mode == PatientQueueMode.PANIC

    await AppointmentService(db_session).cancel(patient, booked.appointment_id)
    view = await queue_service.get_patient_queue_view(patient, booked.appointment_id)
    assert view.mode == PatientQueueMode.CLOSED


@pytest.mark.asyncio
async def test_next_patient_view(queue_service, arrive, patient) -> None:
    """Test the first waiting patient is told they are next."""
    mine = await arrive(14, patient=patient)

    view = await queue_service.get_patient_queue_view(patient, mine.id)

    assert view.tokens_ahead == 0
    assert view.estimated_wait_minutes == 0
    assert view.is_next is True
    assert view.message == "You are next."


@pytest.mark.asyncio
async def test_start_updates_projection(queue_service, projector, arrive, doctor, facility_id) -> None:
    """Test starting a consultation publishes the served token."""
    appointment = await arrive(14, 15)

    await queue_service.perform_action(doctor, _action(appointment, "START_CONSULTATION"))

    projection = await projector.snapshot(facility_id, doctor.actor_id)
    assert projection.current_token == appointment.token_number
    assert projection.status == DoctorStatus.SERVING
    assert projection.is_live is True


@pytest.mark.asyncio
async def test_queue_action_api(client: AsyncClient, auth_headers, arrive, doctor, facility_id) -> None:
    """Test queue actions and the console over HTTP."""
    appointment = await arrive(15)
    other_doctor = ActorContext(actor_id=uuid4(), role=ActorRole.DOCTOR)
    payload = {"appointment_id": str(appointment.id), "action": "start_consultation"}

    response = await client.post("/api/v1/queue/action", json=payload, headers=auth_headers(other_doctor))
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/queue/action",
        json={**payload, "action": "RECALL"},
        headers=auth_headers(doctor),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidActionException"

    response = await client.post("/api/v1/queue/action", json=payload, headers=auth_headers(doctor))
    assert response.status_code == 200
    assert response.json()["action"] == "START_CONSULTATION"
    assert response.json()["appointment"]["status"] == "IN_CONSULTATION"

    response = await client.get(f"/api/v1/queue/{facility_id}/{doctor.actor_id}", headers=auth_headers(doctor))
    assert response.status_code == 200
    assert response.json()["current_token"] == appointment.token_number

    response = await client.post(
        "/api/v1/queue/action",
        json={"appointment_id": str(uuid4()), "action": "COMPLETE"},
        headers=auth_headers(doctor),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_patient_queue_view_api(client: AsyncClient, auth_headers, arrive, patient, make_patient) -> None:
    """Test the patient screen over HTTP."""
    mine = await arrive(15, 30, patient=patient)

    response = await client.get(f"/api/v1/appointments/{mine.id}/queue", headers=auth_headers(patient))
    assert response.status_code == 200
    assert response.json()["mode"] == "ACTIVE"
    assert response.json()["is_next"] is True

    response = await client.get(f"/api/v1/appointments/{mine.id}/queue", headers=auth_headers(make_patient()))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_visit_end_to_end(
    client: AsyncClient, auth_headers, patient, make_patient, staff, doctor, facility_id, affiliation, slot_at
) -> None:
    """Test a booked visit from booking to completion, with the next patient waiting."""
    appointment_ids = []
    for booker, hour in ((patient, 10), (make_patient(), 11)):
        response = await client.post(
            "/api/v1/appointments/book",
            json={
                "doctor_id": str(doctor.actor_id),
                "facility_id": str(facility_id),
                "scheduled_time": slot_at(hour, days=0).isoformat(),
            },
            headers=auth_headers(booker),
        )
        assert response.status_code == 201
        appointment_ids.append(response.json()["appointment_id"])

    tokens = []
    for appointment_id in appointment_ids:
        response = await client.post(
            "/api/v1/appointments/check-in",
            json={"appointment_id": appointment_id},
            headers=auth_headers(staff),
        )
        tokens.append(response.json()["token_number"])
    assert tokens == [1, 2]

    first, second = appointment_ids
    response = await client.post(
        "/api/v1/queue/action",
        json={"appointment_id": first, "action": "START_CONSULTATION"},
        headers=auth_headers(doctor),
    )
    assert response.status_code == 200

    projection_url = f"/api/v1/queue/{facility_id}/{doctor.actor_id}/projection"
    response = await client.get(projection_url, headers=auth_headers(patient))
    assert response.json()["current_token"] == 1

    response = await client.post(
        "/api/v1/queue/action",
        json={"appointment_id": first, "action": "COMPLETE"},
        headers=auth_headers(doctor),
    )
    assert response.json()["appointment"]["status"] == "COMPLETED"
    assert response.json()["appointment"]["consultation_end_time"] is not None

    response = await client.get(f"/api/v1/queue/{facility_id}/{doctor.actor_id}", headers=auth_headers(staff))
    assert response.json()["next_appointment_id"] == second
    assert response.json()["current_token"] == 1
