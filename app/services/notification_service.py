"""Notification dispatcher: booking and cancellation messages via FCM."""

import asyncio
from typing import Any

import structlog
from firebase_admin import messaging

from app.config import settings
from app.core.clock import to_local
from app.core.firebase import get_firebase_app
from app.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)


class NotificationService:
    """Fire-and-forget patient notifications.

    Callers invoke these after their ledger transaction has committed and
    swallow any failure, so a dead notification path never undoes a booking
    or a cancellation.
    """

    @staticmethod
    def patient_topic(patient_id: Any) -> str:
        """FCM topic a patient's devices subscribe to."""
        return f"patient-{patient_id}"

    @staticmethod
    async def send_to_patient(
        patient_id: Any,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> str | None:
        """
        Send a notification to every device of a patient.

        Args:
            patient_id: Patient identifier
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            FCM message id, or None when notifications are disabled
        """
        if not settings.notifications_enabled:
            logger.debug("notifications_disabled", title=title)
            return None

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=data or {},
            topic=NotificationService.patient_topic(patient_id),
        )
        # The Admin SDK call is blocking HTTP
        message_id = await asyncio.to_thread(messaging.send, message, app=get_firebase_app())

        logger.info("patient_notification_sent", patient_id=str(patient_id), message_id=message_id)
        return message_id

    @staticmethod
    async def send_booking_confirmation(appointment: AppointmentResponse) -> str | None:
        """Tell the patient their slot is booked."""
        when = to_local(appointment.scheduled_time).strftime("%d %b %Y, %I:%M %p")
        return await NotificationService.send_to_patient(
            appointment.patient_id,
            title="Appointment confirmed",
            body=f"Your appointment on {when} is booked. Your token is issued on arrival.",
            data={
                "type": "appointment_booked",
                "appointment_id": str(appointment.id),
            },
        )

    @staticmethod
    async def send_cancellation_notice(appointment: AppointmentResponse) -> str | None:
        """Tell the patient their appointment was cancelled."""
        when = to_local(appointment.scheduled_time).strftime("%d %b %Y, %I:%M %p")
        body = f"Your appointment on {when} was cancelled."
        if appointment.cancel_reason:
            body = f"{body} Reason: {appointment.cancel_reason}"
        return await NotificationService.send_to_patient(
            appointment.patient_id,
            title="Appointment cancelled",
            body=body,
            data={
                "type": "appointment_cancelled",
                "appointment_id": str(appointment.id),
            },
        )
