"""
State Machine Engine
====================

The single authority that changes a booking's status.

Algorithm for :meth:`StateMachineEngine.transition`
---------------------------------------------------
1. Load the booking (``BOOKING_NOT_FOUND``).
2. Check the actor may drive this booking (``ACCESS_DENIED``).
3. Normalise the requested status (``INVALID_STATUS``).
4. Refuse ``delivered`` / ``completed`` here (``FORBIDDEN_STATUS``); the
   completion operations own those.  Moving into ``driver_assigned`` /
   ``accepted`` is refused too: only accept / assign may claim a driver.
   Finished bookings accept nothing (``INVALID_STATE_TRANSITION``).
5. Ordering guard: duplicates and heartbeats short-circuit with
   ``idempotent=True``; old events fail with ``STALE_EVENT``.
6. Rule table (``INVALID_STATE_TRANSITION``).
7. Geofence (``LOCATION_REQUIRED`` / ``OUTSIDE_CONFIRMATION_RADIUS``).
8. One atomic write, conditional on the sequence read in step 1.

Concurrency safety
------------------
Every write carries ``expected={"sequence": n, "status": s}``.  Two
requests racing on the same booking both validate against version ``n``;
the store lets exactly one of them write version ``n + 1`` and the other
gets ``STALE_EVENT`` and must re-fetch.

Nothing is written before all validation has passed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from src.domain.entities import Actor, Booking, Location, TransitionResult
from src.domain.enums import ActorRole, BookingStatus
from src.domain.errors import (
    ErrorKind,
    WorkflowError,
    access_denied,
    invalid_transition,
    not_found,
)
from src.domain.geofence import GeofenceValidator
from src.domain.ordering import EventOrderingGuard, RawTimestamp
from src.domain.ports import (
    BOOKINGS,
    BookingStore,
    Increment,
    PreconditionFailed,
    StoreError,
    WriteOp,
)
from src.domain.statuses import (
    CLAIM_STATUSES,
    COMPLETION_STATUSES,
    TERMINAL_STATUSES,
    normalize_status,
    parse_status,
)
from src.domain.transitions import check_transition, rule_for

logger = logging.getLogger(__name__)

Outcome = Union[TransitionResult, WorkflowError]

# Audit timestamp written when a status is entered
_STATUS_TIMESTAMPS: dict[BookingStatus, str] = {
    BookingStatus.DRIVER_ASSIGNED: "assigned_at",
    BookingStatus.ACCEPTED: "accepted_at",
    BookingStatus.DRIVER_ENROUTE: "enroute_at",
    BookingStatus.PICKED_UP: "picked_up_at",
    BookingStatus.IN_TRANSIT: "in_transit_at",
    BookingStatus.DELIVERED: "delivered_at",
    BookingStatus.MONEY_COLLECTION: "money_collection_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
}

# Timing fields that keep their first value
_FIRST_WRITE_TIMESTAMPS: dict[BookingStatus, str] = {
    BookingStatus.DRIVER_ARRIVED: "arrived_pickup_at",
    BookingStatus.AT_DROPOFF: "arrived_dropoff_at",
}


def location_document(location: Location, at: datetime) -> dict[str, Any]:
    return {**location.to_dict(), "timestamp": at.isoformat()}


class StateMachineEngine:
    def __init__(
        self,
        store: BookingStore,
        geofence: GeofenceValidator,
        ordering: EventOrderingGuard,
    ):
        self.store = store
        self.geofence = geofence
        self.ordering = ordering

    # ── Lookups & guards ──────────────────────────────────────────────

    async def load(self, booking_id: str) -> Union[Booking, WorkflowError]:
        booking = await self.store.get(booking_id)
        return booking if booking is not None else not_found(booking_id)

    @staticmethod
    def check_driver_access(booking: Booking, actor: Actor) -> Optional[WorkflowError]:
        """Status changes: the assigned driver or an admin."""
        if actor.is_admin:
            return None
        if actor.role != ActorRole.DRIVER or booking.driver_id != actor.id:
            return access_denied()
        return None

    @staticmethod
    def check_read_access(booking: Booking, actor: Actor) -> Optional[WorkflowError]:
        if actor.is_admin:
            return None
        if actor.role == ActorRole.CUSTOMER and booking.customer_id == actor.id:
            return None
        if actor.role == ActorRole.DRIVER and booking.driver_id == actor.id:
            return None
        return access_denied("You do not have access to this booking")

    async def get_booking(self, booking_id: str, actor: Actor) -> Union[Booking, WorkflowError]:
        booking = await self.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking
        return self.check_read_access(booking, actor) or booking

    # ── Generic transition ────────────────────────────────────────────

    async def transition(
        self,
        booking_id: str,
        requested_status: Optional[str],
        actor: Actor,
        *,
        location: Optional[Location] = None,
        notes: Optional[str] = None,
        event_id: Optional[str] = None,
        event_timestamp: RawTimestamp = None,
    ) -> Outcome:
        booking = await self.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking

        error = self.check_driver_access(booking, actor)
        if error:
            return error

        status = parse_status(requested_status)
        if status is None:
            return WorkflowError(
                ErrorKind.INVALID_STATUS,
                "Invalid status value provided",
                {"requested_status": normalize_status(requested_status)},
            )

        if status in COMPLETION_STATUSES:
            return WorkflowError(
                ErrorKind.FORBIDDEN_STATUS,
                "Delivered/completed status must be confirmed via the delivery "
                "completion endpoint",
                {"requested_status": status.value},
            )

        if status in CLAIM_STATUSES and status != booking.status:
            return WorkflowError(
                ErrorKind.FORBIDDEN_STATUS,
                "Drivers are claimed via the accept or assign endpoints",
                {"requested_status": status.value},
            )

        if booking.status in TERMINAL_STATUSES:
            return invalid_transition(
                booking.status.value,
                status.value,
                f"Booking is already {booking.status.value}",
            )

        if self.ordering.is_duplicate(booking, event_id):
            return await self._duplicate(booking, status, event_id)

        event_at = self.ordering.resolve(booking, event_timestamp)
        if isinstance(event_at, WorkflowError):
            return event_at

        if status == booking.status:
            return await self._heartbeat(booking, actor, event_at, event_id, location, notes)

        error = check_transition(booking.status, status)
        if error:
            return error

        rule = rule_for(status)
        error = self.geofence.validate(booking, rule.require_location, location, status.value)
        if error:
            return error

        fields = self.entry_fields(booking, status, event_at)
        if notes:
            fields["status_notes"] = notes
        return await self.commit(
            booking, status, actor, event_at, event_id, fields, location=location, notes=notes
        )

    # ── Atomic commit primitive ───────────────────────────────────────

    def entry_fields(
        self, booking: Booking, status: BookingStatus, event_at: datetime
    ) -> dict[str, Any]:
        """Timestamps written when *booking* enters *status*."""
        fields: dict[str, Any] = {}
        if status in _STATUS_TIMESTAMPS:
            fields[_STATUS_TIMESTAMPS[status]] = event_at
        first_write = _FIRST_WRITE_TIMESTAMPS.get(status)
        if first_write and getattr(booking.timing, first_write) is None:
            fields[first_write] = event_at
        return fields

    async def commit(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        event_at: datetime,
        event_id: Optional[str],
        fields: dict[str, Any],
        *,
        expected: Optional[dict[str, Any]] = None,
        extra_ops: Iterable[WriteOp] = (),
        location: Optional[Location] = None,
        notes: Optional[str] = None,
        log_metadata: Optional[dict[str, Any]] = None,
    ) -> Outcome:
        """Write *booking* → *target* plus *fields* as one versioned update."""
        event_id = event_id or f"{actor.id}:{target.value}:{int(event_at.timestamp() * 1000)}"
        update = {
            **fields,
            "status": target.value,
            "last_event_id": event_id,
            "recent_event_ids": self.ordering.remember(booking, event_id),
            "last_event_source": actor.source,
            "last_event_at": event_at,
            "last_status_before": booking.status.value,
            "last_status_after": target.value,
            "sequence": Increment(1),
            "updated_at": self.ordering.now(),
        }
        if location is not None:
            update["driver_location"] = location_document(location, event_at)
        conditions = {
            "sequence": booking.sequence,
            "status": booking.status.value,
            **(expected or {}),
        }

        extra_ops = list(extra_ops)
        try:
            if extra_ops:
                await self.store.batch_commit(
                    [WriteOp(BOOKINGS, booking.id, update, conditions), *extra_ops]
                )
                updated = await self.store.get(booking.id)
            else:
                updated = await self.store.atomic_update(booking.id, update, conditions)
        except PreconditionFailed as exc:
            logger.info("Booking %s changed concurrently: %s", booking.id, exc)
            return WorkflowError(
                ErrorKind.STALE_EVENT,
                "Booking was updated by another request; re-fetch and retry",
                {"expected_sequence": booking.sequence},
            )
        except StoreError as exc:
            logger.error(
                "Persisting %s -> %s for booking %s failed: %s",
                booking.status.value, target.value, booking.id, exc,
            )
            return WorkflowError(
                ErrorKind.TRANSITION_PERSIST_FAILED,
                "Failed to update booking status",
                {"original_error": str(exc)},
            )

        sequence = updated.sequence if updated else booking.sequence + 1
        await self.record(
            booking.id, target, actor, event_at, event_id,
            idempotent=False, metadata={"notes": notes, **(log_metadata or {})},
        )
        logger.info(
            "Booking %s: %s -> %s by %s (seq=%d)",
            booking.id, booking.status.value, target.value, actor.id, sequence,
        )
        return TransitionResult(
            booking_id=booking.id,
            new_status=target,
            previous_status=booking.status,
            sequence=sequence,
            idempotent=False,
            should_notify=True,
            event_at=event_at,
            booking=updated,
            location=location,
            notes=notes,
        )

    def unchanged(self, booking: Booking, *, should_notify: bool = False) -> TransitionResult:
        """Result for a request that found the booking already where it wanted."""
        return TransitionResult(
            booking_id=booking.id,
            new_status=booking.status,
            previous_status=booking.status,
            sequence=booking.sequence,
            idempotent=True,
            should_notify=should_notify,
            event_at=self.ordering.now(),
            booking=booking,
        )

    async def record(
        self,
        booking_id: str,
        status: BookingStatus,
        actor: Actor,
        event_at: datetime,
        event_id: Optional[str],
        *,
        idempotent: bool,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append to the status log.  Best-effort."""
        try:
            await self.store.append_status_log(
                {
                    "booking_id": booking_id,
                    "status": status.value,
                    "actor_id": actor.id,
                    "source": actor.source,
                    "event_id": event_id,
                    "event_at": event_at,
                    "idempotent": idempotent,
                    "metadata": {k: v for k, v in (metadata or {}).items() if v is not None},
                }
            )
        except StoreError as exc:
            logger.warning("Failed to log status update for booking %s: %s", booking_id, exc)

    # ── Idempotent paths ──────────────────────────────────────────────

    async def _heartbeat(
        self,
        booking: Booking,
        actor: Actor,
        event_at: datetime,
        event_id: Optional[str],
        location: Optional[Location],
        notes: Optional[str],
    ) -> TransitionResult:
        fields: dict[str, Any] = {
            "last_heartbeat_at": event_at,
            "last_heartbeat_source": actor.source,
            "sequence": Increment(1),
            "updated_at": self.ordering.now(),
        }
        if event_id:
            fields["last_heartbeat_id"] = event_id
            fields["recent_event_ids"] = self.ordering.remember(booking, event_id)
        if location is not None:
            fields["driver_location"] = location_document(location, event_at)

        current = booking
        try:
            current = await self.store.atomic_update(
                booking.id, fields, {"sequence": booking.sequence}
            )
        except StoreError as exc:
            logger.warning("Heartbeat for booking %s not persisted: %s", booking.id, exc)

        await self.record(
            booking.id, booking.status, actor, event_at, event_id,
            idempotent=True, metadata={"heartbeat": True},
        )
        return TransitionResult(
            booking_id=booking.id,
            new_status=booking.status,
            previous_status=booking.status,
            sequence=current.sequence,
            idempotent=True,
            should_notify=location is not None,
            event_at=event_at,
            booking=current,
            location=location,
            notes=notes,
        )

    async def _duplicate(
        self, booking: Booking, requested: BookingStatus, event_id: str
    ) -> TransitionResult:
        meta = booking.status_meta
        applied = meta.last_status_after
        if event_id == meta.last_event_id and requested.value != applied:
            logger.warning(
                "Booking %s: event id %s reused for %s (already applied as %s)",
                booking.id, event_id, requested.value, applied,
            )
        try:
            now = self.ordering.now()
            await self.store.atomic_update(
                booking.id, {"last_heartbeat_at": now, "updated_at": now}
            )
        except StoreError as exc:
            logger.warning("Heartbeat for booking %s not persisted: %s", booking.id, exc)
        return self.unchanged(booking)
