"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from src.domain.entities import Booking, Location, TransitionResult

# ISO-8601 text or epoch milliseconds; unparseable values mean "now"
ClientTimestamp = Union[datetime, int, str]


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_m: Optional[float] = Field(None, ge=0)

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude, self.accuracy_m)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=64)
    location: Optional[LocationIn] = None
    notes: Optional[str] = Field(None, max_length=1000)
    event_id: Optional[str] = Field(
        None,
        max_length=128,
        description="Client-generated id; retries of the same attempt must reuse it.",
    )
    event_timestamp: Optional[ClientTimestamp] = None


class AcceptRequest(BaseModel):
    event_id: Optional[str] = Field(None, max_length=128)
    event_timestamp: Optional[ClientTimestamp] = None


class AssignRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)
    event_id: Optional[str] = Field(None, max_length=128)


class CompleteDeliveryRequest(BaseModel):
    location: Optional[LocationIn] = None
    notes: Optional[str] = Field(None, max_length=1000)
    photo_ref: Optional[str] = Field(None, max_length=512)
    recipient_name: Optional[str] = Field(None, max_length=120)
    recipient_phone: Optional[str] = Field(None, max_length=32)
    event_id: Optional[str] = Field(None, max_length=128)
    event_timestamp: Optional[ClientTimestamp] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


# ── Responses ─────────────────────────────────────────────────────────


class TransitionResponse(BaseModel):
    booking_id: str
    status: str
    previous_status: str
    sequence: int
    idempotent: bool
    should_notify: bool
    event_timestamp: datetime

    @classmethod
    def from_result(cls, result: TransitionResult) -> "TransitionResponse":
        return cls(
            booking_id=result.booking_id,
            status=result.new_status.value,
            previous_status=result.previous_status.value,
            sequence=result.sequence,
            idempotent=result.idempotent,
            should_notify=result.should_notify,
            event_timestamp=result.event_at,
        )


class BookingResponse(BaseModel):
    id: str
    customer_id: str
    driver_id: Optional[str] = None
    status: str
    sequence: int
    pickup_address: Optional[str] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_address: Optional[str] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    arrived_pickup_at: Optional[datetime] = None
    arrived_dropoff_at: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    delivery_verified: bool = False
    cancellation_reason: Optional[str] = None

    @classmethod
    def from_booking(cls, b: Booking) -> "BookingResponse":
        pickup = b.pickup.coordinates
        dropoff = b.dropoff.coordinates
        return cls(
            id=b.id,
            customer_id=b.customer_id,
            driver_id=b.driver_id,
            status=b.status.value,
            sequence=b.sequence,
            pickup_address=b.pickup.address,
            pickup_lat=pickup.latitude if pickup else None,
            pickup_lng=pickup.longitude if pickup else None,
            dropoff_address=b.dropoff.address,
            dropoff_lat=dropoff.latitude if dropoff else None,
            dropoff_lng=dropoff.longitude if dropoff else None,
            arrived_pickup_at=b.timing.arrived_pickup_at,
            arrived_dropoff_at=b.timing.arrived_dropoff_at,
            actual_delivery_time=b.timing.actual_delivery_time,
            last_event_at=b.status_meta.last_event_at,
            delivery_verified=b.delivery_verification is not None,
            cancellation_reason=b.cancellation_reason,
        )


class StatusHistoryEntry(BaseModel):
    status: str
    actor_id: Optional[str] = None
    source: Optional[str] = None
    event_id: Optional[str] = None
    event_at: Optional[datetime] = None
    idempotent: bool = False
    metadata: dict[str, Any] = {}


class LockStatusResponse(BaseModel):
    booking_id: str
    locked: bool
    owner: Optional[str] = None


class IntegrityResponse(BaseModel):
    booking_id: str
    valid: bool
    issues: list[str] = []


class HealthResponse(BaseModel):
    status: str = "ok"
