"""
Typed failures returned by the lifecycle operations.

Validation never raises: each check hands back a :class:`WorkflowError`
value which the caller propagates unchanged.  The HTTP layer turns it
into a response via :attr:`WorkflowError.http_status`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "BOOKING_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    INVALID_STATUS = "INVALID_STATUS"
    FORBIDDEN_STATUS = "FORBIDDEN_STATUS"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    LOCATION_REQUIRED = "LOCATION_REQUIRED"
    OUTSIDE_CONFIRMATION_RADIUS = "OUTSIDE_CONFIRMATION_RADIUS"
    STALE_EVENT = "STALE_EVENT"
    BOOKING_LOCKED = "BOOKING_LOCKED"
    TRANSITION_PERSIST_FAILED = "STATUS_TRANSITION_FAILED"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.INVALID_STATUS: 400,
    ErrorKind.FORBIDDEN_STATUS: 400,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.LOCATION_REQUIRED: 400,
    ErrorKind.OUTSIDE_CONFIRMATION_RADIUS: 400,
    ErrorKind.STALE_EVENT: 409,
    ErrorKind.BOOKING_LOCKED: 423,
    ErrorKind.TRANSITION_PERSIST_FAILED: 503,
}


@dataclass(frozen=True)
class WorkflowError:
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        """Whether the booking is known to be unchanged by the failed call."""
        return self.kind in (
            ErrorKind.TRANSITION_PERSIST_FAILED,
            ErrorKind.BOOKING_LOCKED,
            ErrorKind.STALE_EVENT,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.kind.value, **self.details}


def not_found(booking_id: str) -> WorkflowError:
    return WorkflowError(
        ErrorKind.NOT_FOUND, "Booking not found", {"booking_id": booking_id}
    )


def access_denied(message: str = "You can only update bookings assigned to you") -> WorkflowError:
    return WorkflowError(ErrorKind.ACCESS_DENIED, message)


def invalid_transition(current: str, requested: str, message: str | None = None) -> WorkflowError:
    return WorkflowError(
        ErrorKind.INVALID_STATE_TRANSITION,
        message or f"Cannot transition from {current} to {requested}",
        {"current_status": current, "requested_status": requested},
    )
