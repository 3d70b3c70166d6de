"""Domain error taxonomy shared by the HTTP API and the realtime channel."""

from __future__ import annotations

from typing import Any, Dict

from rest_framework import status
from rest_framework.response import Response


class DomainError(Exception):
    """Base class for errors raised by domain operations."""

    category = "VALIDATION"
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION"

    def __init__(self, message: str, *, code: str | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra

    def as_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class DomainValidationError(DomainError):
    """Malformed input, bad span or missing required reason."""


class DomainPermissionError(DomainError):
    """Caller is not the participant or owner required by the operation."""

    category = "AUTH"
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class DomainNotFound(DomainError):
    """Referenced reservation, space or vehicle does not exist."""

    category = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class DomainConflict(DomainError):
    """Status precondition failed or a concurrent transition won."""

    category = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class CapacityExceeded(DomainConflict):
    """Space has no free capacity for the requested interval."""

    default_code = "CAPACITY_EXCEEDED"


class DeadlineExceeded(DomainConflict):
    """Check-in tolerance window elapsed; the reservation was expired."""

    default_code = "DEADLINE_EXCEEDED"


class DomainIntegrityError(DomainError):
    """Stored data violates an internal invariant."""

    category = "FATAL"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "FATAL"


def error_response(exc: DomainError) -> Response:
    """Translate a domain error into a DRF response."""
    return Response(exc.as_dict(), status=exc.status_code)


def ack_error(exc: DomainError) -> Dict[str, Any]:
    """Translate a domain error into a realtime acknowledgment payload."""
    return {
        "ok": False,
        "error": exc.code,
        "code": exc.status_code,
        "detail": exc.message,
        **exc.extra,
    }
