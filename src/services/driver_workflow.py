"""
Driver Status Workflow
======================

Delivery-specific operations layered on :class:`StateMachineEngine`:

* ``update_status``     -- generic driver status change + notification.
* ``accept_booking`` /
  ``assign_driver``     -- claim a pending booking for one driver.  Runs
  under the booking lock and a conditional write on ``driver_id``.
* ``complete_delivery`` -- geofenced drop-off confirmation to
  ``delivered``; absorbs client retries.
* ``confirm_payment``   -- ``delivered`` / ``money_collection`` →
  ``completed``; frees the driver.
* ``cancel_booking``    -- any non-finished status → ``cancelled``.

Side effects (notifications, commission debit) fire only after the write
is committed and never change the returned result.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from src.domain.entities import (
    Actor,
    Booking,
    Location,
    StatusChangeEvent,
    TransitionResult,
)
from src.domain.enums import ActorRole, BookingStatus, DriverState, LocationTarget
from src.domain.errors import WorkflowError, access_denied, invalid_transition
from src.domain.ordering import RawTimestamp
from src.domain.ports import (
    DRIVERS,
    BookingLockManager,
    CommissionLedger,
    Notifier,
    WriteOp,
)
from src.domain.transitions import check_transition
from src.services.state_machine import Outcome, StateMachineEngine, location_document

logger = logging.getLogger(__name__)

# Statuses in which the delivery has already been confirmed
_DELIVERY_CONFIRMED = frozenset(
    {BookingStatus.DELIVERED, BookingStatus.MONEY_COLLECTION, BookingStatus.COMPLETED}
)

# Cancelling after hand-over would orphan the payment flow
_NOT_CANCELLABLE = _DELIVERY_CONFIRMED


class DriverStatusWorkflow:
    def __init__(
        self,
        engine: StateMachineEngine,
        locks: BookingLockManager,
        notifier: Notifier,
        ledger: CommissionLedger,
    ):
        self.engine = engine
        self.locks = locks
        self.notifier = notifier
        self.ledger = ledger

    # ── Status updates ────────────────────────────────────────────────

    async def update_status(
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
        result = await self.engine.transition(
            booking_id,
            requested_status,
            actor,
            location=location,
            notes=notes,
            event_id=event_id,
            event_timestamp=event_timestamp,
        )
        if isinstance(result, TransitionResult):
            await self._notify(result)
        return result

    # ── Acceptance / assignment ───────────────────────────────────────

    async def accept_booking(
        self,
        booking_id: str,
        actor: Actor,
        *,
        event_id: Optional[str] = None,
        event_timestamp: RawTimestamp = None,
    ) -> Outcome:
        if actor.role != ActorRole.DRIVER:
            return access_denied("Only drivers can accept bookings")
        return await self._claim(
            booking_id, actor.id, actor, BookingStatus.ACCEPTED, event_id, event_timestamp
        )

    async def assign_driver(
        self,
        booking_id: str,
        driver_id: str,
        actor: Actor,
        *,
        event_id: Optional[str] = None,
    ) -> Outcome:
        if not actor.is_admin:
            return access_denied("Only administrators can assign drivers")
        return await self._claim(
            booking_id, driver_id, actor, BookingStatus.DRIVER_ASSIGNED, event_id, None
        )

    async def _claim(
        self,
        booking_id: str,
        driver_id: str,
        actor: Actor,
        target: BookingStatus,
        event_id: Optional[str],
        event_timestamp: RawTimestamp,
    ) -> Outcome:
        booking = await self.engine.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking
        if booking.driver_id == driver_id and booking.status == target:
            return self.engine.unchanged(booking)

        lock = await self.locks.acquire(booking_id, driver_id)
        if isinstance(lock, WorkflowError):
            return lock

        try:
            # Re-read under the lock: the first read may predate a commit
            booking = await self.engine.load(booking_id)
            if isinstance(booking, WorkflowError):
                return booking
            if booking.driver_id == driver_id and booking.status == target:
                return self.engine.unchanged(booking)
            if booking.driver_id not in (None, driver_id):
                return invalid_transition(
                    booking.status.value,
                    target.value,
                    "Booking is already assigned to another driver",
                )
            error = check_transition(booking.status, target)
            if error:
                return error

            event_at = self.engine.ordering.resolve(booking, event_timestamp)
            if isinstance(event_at, WorkflowError):
                return event_at

            fields = {"driver_id": driver_id, **self.engine.entry_fields(booking, target, event_at)}
            driver_op = WriteOp(
                DRIVERS,
                driver_id,
                {
                    "is_available": False,
                    "current_booking_id": booking.id,
                    "status": DriverState.ON_TRIP.value,
                },
            )
            result = await self.engine.commit(
                booking,
                target,
                actor,
                event_at,
                event_id,
                fields,
                expected={"driver_id": (None, driver_id)},
                extra_ops=[driver_op],
                log_metadata={"driver_id": driver_id},
            )
        finally:
            await self.locks.release(booking_id, driver_id)

        if isinstance(result, TransitionResult):
            await self._notify(result, driver_id=driver_id)
        return result

    # ── Completion ────────────────────────────────────────────────────

    async def complete_delivery(
        self,
        booking_id: str,
        actor: Actor,
        location: Optional[Location],
        *,
        notes: Optional[str] = None,
        photo_ref: Optional[str] = None,
        recipient_name: Optional[str] = None,
        recipient_phone: Optional[str] = None,
        event_id: Optional[str] = None,
        event_timestamp: RawTimestamp = None,
    ) -> Outcome:
        engine = self.engine
        booking = await engine.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking
        error = engine.check_driver_access(booking, actor)
        if error:
            return error

        if booking.status in _DELIVERY_CONFIRMED:
            logger.info(
                "Booking %s already %s, completion is a no-op",
                booking.id, booking.status.value,
            )
            return engine.unchanged(booking)

        error = check_transition(booking.status, BookingStatus.DELIVERED)
        if error:
            return invalid_transition(
                booking.status.value,
                BookingStatus.DELIVERED.value,
                f"Cannot confirm delivery when booking is in '{booking.status.value}' status",
            )

        event_at = engine.ordering.resolve(booking, event_timestamp)
        if isinstance(event_at, WorkflowError):
            return event_at

        error = engine.geofence.validate(
            booking, LocationTarget.DROPOFF, location, BookingStatus.DELIVERED.value
        )
        if error:
            return error

        fields: dict[str, Any] = {
            **engine.entry_fields(booking, BookingStatus.DELIVERED, event_at),
            "actual_delivery_time": event_at,
        }
        if booking.timing.arrived_dropoff_at is None:
            fields["arrived_dropoff_at"] = event_at
        if notes:
            fields["delivery_notes"] = notes
        if photo_ref and booking.delivery_verification is None:
            fields["delivery_verification"] = {
                "photo_ref": photo_ref,
                "verified_at": event_at.isoformat(),
                "verified_by": actor.id,
                "location": location_document(location, event_at),
                "notes": notes,
                "recipient_name": recipient_name,
                "recipient_phone": recipient_phone,
            }
        if recipient_name or recipient_phone:
            previous = booking.recipient or {}
            fields["recipient"] = {
                "name": recipient_name or previous.get("name") or "Recipient",
                "phone": recipient_phone or previous.get("phone"),
                "confirmed_at": event_at.isoformat(),
                "confirmed_by": actor.id,
            }

        result = await engine.commit(
            booking,
            BookingStatus.DELIVERED,
            actor,
            event_at,
            event_id,
            fields,
            location=location,
            notes=notes,
            log_metadata={
                "photo_ref": photo_ref,
                "recipient_name": recipient_name,
                "recipient_phone": recipient_phone,
            },
        )
        if isinstance(result, TransitionResult):
            await self._debit_commission(result.booking or booking)
            await self._notify(
                result,
                photo_ref=photo_ref,
                recipient_name=recipient_name,
                recipient_phone=recipient_phone,
            )
        return result

    async def confirm_payment(self, booking_id: str, actor: Actor) -> Outcome:
        engine = self.engine
        booking = await engine.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking
        error = engine.check_driver_access(booking, actor)
        if error:
            return error
        if booking.status == BookingStatus.COMPLETED:
            return engine.unchanged(booking)
        error = check_transition(booking.status, BookingStatus.COMPLETED)
        if error:
            return error

        event_at = engine.ordering.now()
        result = await engine.commit(
            booking,
            BookingStatus.COMPLETED,
            actor,
            event_at,
            None,
            engine.entry_fields(booking, BookingStatus.COMPLETED, event_at),
            extra_ops=self._release_driver_ops(booking),
        )
        if isinstance(result, TransitionResult):
            await self._notify(result)
        return result

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel_booking(
        self, booking_id: str, actor: Actor, reason: Optional[str] = None
    ) -> Outcome:
        engine = self.engine
        booking = await engine.load(booking_id)
        if isinstance(booking, WorkflowError):
            return booking
        error = engine.check_read_access(booking, actor)
        if error:
            return error
        if booking.status == BookingStatus.CANCELLED:
            return engine.unchanged(booking)
        if booking.status in _NOT_CANCELLABLE:
            return invalid_transition(
                booking.status.value,
                BookingStatus.CANCELLED.value,
                f"Cannot cancel booking in status {booking.status.value}",
            )

        event_at = engine.ordering.now()
        fields = {
            **engine.entry_fields(booking, BookingStatus.CANCELLED, event_at),
            "cancellation_reason": reason or "No reason provided",
        }
        result = await engine.commit(
            booking,
            BookingStatus.CANCELLED,
            actor,
            event_at,
            None,
            fields,
            extra_ops=self._release_driver_ops(booking),
            log_metadata={"reason": reason, "cancelled_by": actor.role.value},
        )
        if isinstance(result, TransitionResult):
            await self._notify(result, reason=reason)
        return result

    # ── Side effects ──────────────────────────────────────────────────

    @staticmethod
    def _release_driver_ops(booking: Booking) -> list[WriteOp]:
        if not booking.driver_id:
            return []
        return [
            WriteOp(
                DRIVERS,
                booking.driver_id,
                {
                    "is_available": True,
                    "current_booking_id": None,
                    "status": DriverState.AVAILABLE.value,
                },
            )
        ]

    async def _notify(self, result: TransitionResult, **extra: Any) -> None:
        if not result.should_notify:
            return
        try:
            await self.notifier.publish(StatusChangeEvent.from_result(result, **extra))
        except Exception:
            logger.warning(
                "Notification for booking %s (%s) not delivered",
                result.booking_id, result.new_status.value, exc_info=True,
            )

    async def _debit_commission(self, booking: Booking) -> None:
        try:
            await self.ledger.debit_commission(booking)
        except Exception:
            logger.error(
                "Commission debit failed for delivered booking %s", booking.id, exc_info=True
            )
