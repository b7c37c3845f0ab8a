"""Appointment lifecycle transition table."""

from app.core.exceptions import InvalidTransitionException
from app.schemas.appointments import AppointmentStatus
from app.schemas.queue import QueueAction

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.SKIPPED,
        AppointmentStatus.CANCELLED,
    }
)

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset(
        {
            AppointmentStatus.CHECKED_IN,
            AppointmentStatus.SKIPPED,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.CHECKED_IN: frozenset(
        {
            AppointmentStatus.IN_CONSULTATION,
            AppointmentStatus.SKIPPED,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.IN_CONSULTATION: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.SKIPPED,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.SKIPPED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

ACTION_TARGETS: dict[QueueAction, AppointmentStatus] = {
    QueueAction.START_CONSULTATION: AppointmentStatus.IN_CONSULTATION,
    QueueAction.COMPLETE: AppointmentStatus.COMPLETED,
    QueueAction.SKIP: AppointmentStatus.SKIPPED,
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether the table allows moving from ``current`` to ``target``."""
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """
    Validate a transition against the table.

    Raises:
        InvalidTransitionException: If the move is not allowed, carrying the current status
    """
    if not can_transition(current, target):
        raise InvalidTransitionException(
            f"Cannot move appointment to {target.value}. Current status: {current.value}",
            current_status=current.value,
        )
