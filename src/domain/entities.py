"""
Domain entities.

``Booking`` is a plain snapshot of the stored record; it is never mutated
in place.  All status changes go through
:class:`src.services.state_machine.StateMachineEngine`, which writes a new
version to the store and re-reads it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .enums import ActorRole, BookingStatus


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None

    def is_valid(self) -> bool:
        """True when both coordinates are finite numbers inside WGS84 range."""
        for value, limit in ((self.latitude, 90.0), (self.longitude, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if not math.isfinite(value) or abs(value) > limit:
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"latitude": self.latitude, "longitude": self.longitude}
        if self.accuracy_m is not None:
            data["accuracy_m"] = self.accuracy_m
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["Location"]:
        if not data:
            return None
        return cls(
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            accuracy_m=data.get("accuracy_m"),
        )


@dataclass(frozen=True)
class Place:
    address: Optional[str] = None
    coordinates: Optional[Location] = None


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole
    source: str = "driver_app"

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


# ── Booking blocks ────────────────────────────────────────────────────


@dataclass(frozen=True)
class StatusMeta:
    sequence: int = 0
    last_event_id: Optional[str] = None
    last_event_source: Optional[str] = None
    last_event_at: Optional[datetime] = None
    last_status_before: Optional[str] = None
    last_status_after: Optional[str] = None
    last_heartbeat_at: Optional[datetime] = None
    last_heartbeat_source: Optional[str] = None
    last_heartbeat_id: Optional[str] = None
    recent_event_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Timing:
    arrived_pickup_at: Optional[datetime] = None
    arrived_dropoff_at: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None


@dataclass(frozen=True)
class DeliveryVerification:
    photo_ref: str
    verified_at: datetime
    verified_by: str
    location: Optional[Location] = None
    notes: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None


@dataclass(frozen=True)
class Booking:
    id: str
    customer_id: str
    status: BookingStatus = BookingStatus.PENDING
    driver_id: Optional[str] = None
    pickup: Place = field(default_factory=Place)
    dropoff: Place = field(default_factory=Place)
    timing: Timing = field(default_factory=Timing)
    status_meta: StatusMeta = field(default_factory=StatusMeta)
    driver_location: Optional[Location] = None
    status_notes: Optional[str] = None
    delivery_notes: Optional[str] = None
    delivery_verification: Optional[DeliveryVerification] = None
    recipient: Optional[dict[str, Any]] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def sequence(self) -> int:
        return self.status_meta.sequence

    @property
    def last_event_at(self) -> Optional[datetime]:
        return self.status_meta.last_event_at or self.updated_at


# ── Operation results ─────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionResult:
    booking_id: str
    new_status: BookingStatus
    previous_status: BookingStatus
    sequence: int
    idempotent: bool
    should_notify: bool
    event_at: datetime
    booking: Optional[Booking] = None
    location: Optional[Location] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class StatusChangeEvent:
    """Payload handed to the notification collaborator."""

    booking_id: str
    new_status: str
    previous_status: str
    sequence: int
    location: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: TransitionResult, **extra: Any) -> "StatusChangeEvent":
        return cls(
            booking_id=result.booking_id,
            new_status=result.new_status.value,
            previous_status=result.previous_status.value,
            sequence=result.sequence,
            location=result.location.to_dict() if result.location else None,
            notes=result.notes,
            extra={k: v for k, v in extra.items() if v is not None},
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "booking_id": self.booking_id,
            "new_status": self.new_status,
            "previous_status": self.previous_status,
            "sequence": self.sequence,
            "location": self.location,
            "notes": self.notes,
        }
        data.update(self.extra)
        return data
