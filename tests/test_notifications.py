"""Tests for patient notifications."""

import threading
from uuid import uuid4

import pytest
from firebase_admin import messaging

from app.config import settings
from app.services import notification_service
from app.services.notification_service import NotificationService


@pytest.fixture
def sent(monkeypatch) -> list:
    """Capture FCM sends instead of calling Firebase."""
    calls = []

    def fake_send(message, app=None):
        calls.append({"message": message, "app": app, "thread": threading.get_ident()})
        return f"projects/qlinic/messages/{len(calls)}"

    monkeypatch.setattr(settings, "notifications_enabled", True)
    monkeypatch.setattr(messaging, "send", fake_send)
    monkeypatch.setattr(notification_service, "get_firebase_app", lambda: "firebase-app")
    return calls


@pytest.mark.asyncio
async def test_send_runs_off_the_event_loop(sent) -> None:
    """Test the blocking SDK call is made from a worker thread."""
    patient_id = uuid4()

    message_id = await NotificationService.send_to_patient(patient_id, "Hello", "Body", {"type": "test"})

    assert message_id == "projects/qlinic/messages/1"
    assert len(sent) == 1
    assert sent[0]["thread"] != threading.get_ident()
    assert sent[0]["app"] == "firebase-app"
    assert sent[0]["message"].topic == f"patient-{patient_id}"
    assert sent[0]["message"].data == {"type": "test"}


@pytest.mark.asyncio
async def test_disabled_notifications_send_nothing(sent, monkeypatch) -> None:
    """Test nothing reaches FCM when notifications are off."""
    monkeypatch.setattr(settings, "notifications_enabled", False)

    assert await NotificationService.send_to_patient(uuid4(), "Hello", "Body") is None
    assert sent == []
