"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, details=details)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class NotAffiliatedException(BadRequestException):
    """Doctor has no approved affiliation with the facility."""

    def __init__(self, message: str = "Doctor not affiliated with this facility"):
        """Initialize with 400 status code."""
        super().__init__(message)


class SlotTakenException(ConflictException):
    """Another active appointment already holds the requested instant."""

    def __init__(self, message: str = "Slot already booked"):
        """Initialize with 409 status code."""
        super().__init__(message, details={"action": "refetch_slots"})


class InvalidTransitionException(BadRequestException):
    """Requested state change is not allowed from the current status."""

    def __init__(self, message: str, current_status: str | None = None):
        """Initialize with 400 status code and the status that blocked the change."""
        details = {"current_status": current_status} if current_status else None
        super().__init__(message, details=details)
        self.current_status = current_status


class InvalidActionException(BadRequestException):
    """Unknown queue action name."""

    def __init__(self, action: str):
        """Initialize with 400 status code."""
        super().__init__(f"Invalid action type: {action}", details={"action": action})


class VersionConflictException(ConflictException):
    """Concurrent write lost an optimistic concurrency check. Safe to retry."""

    def __init__(self, message: str = "The record was modified concurrently, please retry"):
        """Initialize with 409 status code."""
        super().__init__(message, details={"retryable": True})
