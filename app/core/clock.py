"""Time helpers bound to the facility operating time zone."""

from datetime import UTC, date, datetime, time, timedelta

from app.config import settings


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are read back from stores without time zone support and are
    always written as UTC, so they are tagged rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_client(value: datetime) -> datetime:
    """
    Normalize a client-supplied instant to aware UTC.

    Clients without an offset speak facility wall-clock time.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=settings.operating_tz)
    return value.astimezone(UTC)


def to_local(value: datetime) -> datetime:
    """Convert an instant to the operating time zone."""
    return as_utc(value).astimezone(settings.operating_tz)


def operating_date(value: datetime | None = None) -> date:
    """Calendar date of an instant (default: now) in the operating time zone."""
    return to_local(value or utcnow()).date()


def local_instant(day: date, at: time) -> datetime:
    """Aware instant for a wall-clock time on a calendar date in the operating zone."""
    return datetime.combine(day, at, tzinfo=settings.operating_tz)


def day_window(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a calendar day in the operating zone, as UTC instants."""
    start = local_instant(day, time.min)
    end = local_instant(day + timedelta(days=1), time.min)
    return start.astimezone(UTC), end.astimezone(UTC)


def epoch_millis(value: datetime | None = None) -> int:
    """Milliseconds since the epoch for an instant (default: now)."""
    return int(as_utc(value or utcnow()).timestamp() * 1000)
