"""
Error taxonomy for the scheduling engine.

Every failure the engine raises carries a stable ``code`` the UI can switch
on, a human-readable message, optional structured details and whether the
caller may safely retry the whole operation. Overlap conflicts are not
exceptions: they are returned as ``ConflictResult`` values.
"""

from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for all engine errors."""

    code: str = "INTERNAL_ERROR"
    http_status: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(SchedulingError):
    """Malformed request, rejected before any resource is looked at."""

    code = "BAD_REQUEST"
    http_status = 400


class InvalidTimeError(ValidationError):
    """Local wall-clock time is non-existent or ambiguous in the clinic zone."""

    code = "INVALID_TIME"


class ResourceUnavailableError(SchedulingError):
    """Professional or room is missing or inactive."""

    code = "RESOURCE_NOT_FOUND"
    http_status = 404

    def __init__(self, message: str, code: Optional[str] = None, details=None):
        super().__init__(message, code=code, details=details)
        if self.code == "RESOURCE_INACTIVE":
            self.http_status = 409


class IncompatibleResourceError(SchedulingError):
    """Resource exists but cannot take this appointment."""

    code = "INCOMPATIBLE_SPECIALTY"
    http_status = 409


class TransientInfraError(SchedulingError):
    """Timeout or connection failure; the whole operation may be retried."""

    code = "TIMEOUT"
    http_status = 503
    retryable = True


class BookingNotFoundError(SchedulingError):
    code = "NOT_FOUND"
    http_status = 404


class NotReschedulableError(SchedulingError):
    code = "NOT_RESCHEDULABLE"
    http_status = 422


class TransitionNotAllowedError(SchedulingError):
    code = "TRANSITION_NOT_ALLOWED"
    http_status = 422


class IntentAlreadyConsumedError(SchedulingError):
    """A RescheduleIntent was handed to the coordinator twice."""

    code = "INTENT_CONSUMED"
    http_status = 409
