"""
Repository Pattern -- the booking record store on top of SQLAlchemy.

The lifecycle services treat the store as an atomic document store: read
a booking, update several of its fields all-or-nothing, or commit a batch
of updates across bookings and drivers in one transaction.  Every update
may carry compare-and-set conditions; if any does not hold, the whole
batch rolls back and :class:`PreconditionFailed` is raised.

Field names in updates are column names of :class:`BookingModel` /
:class:`DriverModel`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import BookingModel, BookingStatusUpdateModel, DriverModel
from src.domain.entities import (
    Booking,
    DeliveryVerification,
    Location,
    Place,
    StatusMeta,
    Timing,
)
from src.domain.enums import BookingStatus
from src.domain.ordering import as_utc, parse_timestamp
from src.domain.ports import (
    BOOKINGS,
    DRIVERS,
    Increment,
    PreconditionFailed,
    StoreError,
    WriteOp,
)

logger = logging.getLogger(__name__)

_COLLECTIONS = {BOOKINGS: BookingModel, DRIVERS: DriverModel}


def _place(address: Optional[str], lat: Optional[float], lng: Optional[float]) -> Place:
    coordinates = None if lat is None and lng is None else Location(lat, lng)
    return Place(address=address, coordinates=coordinates)


def _verification(data: Optional[dict[str, Any]]) -> Optional[DeliveryVerification]:
    if not data:
        return None
    return DeliveryVerification(
        photo_ref=data["photo_ref"],
        verified_at=parse_timestamp(data.get("verified_at")),
        verified_by=data.get("verified_by"),
        location=Location.from_dict(data.get("location")),
        notes=data.get("notes"),
        recipient_name=data.get("recipient_name"),
        recipient_phone=data.get("recipient_phone"),
    )


def to_booking(row: BookingModel) -> Booking:
    """Map an ORM row to the immutable domain snapshot."""
    return Booking(
        id=row.id,
        customer_id=row.customer_id,
        driver_id=row.driver_id,
        status=BookingStatus(row.status),
        pickup=_place(row.pickup_address, row.pickup_lat, row.pickup_lng),
        dropoff=_place(row.dropoff_address, row.dropoff_lat, row.dropoff_lng),
        timing=Timing(
            arrived_pickup_at=as_utc(row.arrived_pickup_at),
            arrived_dropoff_at=as_utc(row.arrived_dropoff_at),
            actual_delivery_time=as_utc(row.actual_delivery_time),
        ),
        status_meta=StatusMeta(
            sequence=row.sequence or 0,
            last_event_id=row.last_event_id,
            last_event_source=row.last_event_source,
            last_event_at=as_utc(row.last_event_at),
            last_status_before=row.last_status_before,
            last_status_after=row.last_status_after,
            last_heartbeat_at=as_utc(row.last_heartbeat_at),
            last_heartbeat_source=row.last_heartbeat_source,
            last_heartbeat_id=row.last_heartbeat_id,
            recent_event_ids=tuple(row.recent_event_ids or ()),
        ),
        driver_location=Location.from_dict(row.driver_location),
        status_notes=row.status_notes,
        delivery_notes=row.delivery_notes,
        delivery_verification=_verification(row.delivery_verification),
        recipient=row.recipient,
        cancellation_reason=row.cancellation_reason,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlBookingStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, booking_id: str) -> Optional[Booking]:
        async with self.session_factory() as session:
            row = await session.get(BookingModel, booking_id)
            return to_booking(row) if row else None

    async def get_driver(self, driver_id: str) -> Optional[DriverModel]:
        async with self.session_factory() as session:
            return await session.get(DriverModel, driver_id)

    async def status_history(self, booking_id: str) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(BookingStatusUpdateModel)
                .where(BookingStatusUpdateModel.booking_id == booking_id)
                .order_by(BookingStatusUpdateModel.id)
            )
            return [
                {
                    "status": r.status,
                    "actor_id": r.actor_id,
                    "source": r.source,
                    "event_id": r.event_id,
                    "event_at": as_utc(r.event_at),
                    "idempotent": r.idempotent,
                    "metadata": r.details or {},
                }
                for r in result.scalars().all()
            ]

    # ── Creation (used by the booking-creation flow and seeding) ─────

    async def create_booking(
        self,
        *,
        booking_id: str,
        customer_id: str,
        pickup: Place,
        dropoff: Place,
        status: BookingStatus = BookingStatus.PENDING,
        driver_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Booking:
        pickup_loc = pickup.coordinates
        dropoff_loc = dropoff.coordinates
        row = BookingModel(
            id=booking_id,
            customer_id=customer_id,
            driver_id=driver_id,
            status=status.value,
            pickup_address=pickup.address,
            pickup_lat=pickup_loc.latitude if pickup_loc else None,
            pickup_lng=pickup_loc.longitude if pickup_loc else None,
            dropoff_address=dropoff.address,
            dropoff_lat=dropoff_loc.latitude if dropoff_loc else None,
            dropoff_lng=dropoff_loc.longitude if dropoff_loc else None,
            sequence=0,
        )
        if created_at is not None:
            row.created_at = created_at
            row.updated_at = created_at
        async with self.session_factory() as session:
            async with session.begin():
                session.add(row)
        return await self.get(booking_id)

    async def create_driver(self, driver_id: str, name: Optional[str] = None) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(DriverModel(id=driver_id, name=name, is_available=True))

    # ── Writes ────────────────────────────────────────────────────────

    async def atomic_update(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
    ) -> Booking:
        await self.batch_commit([WriteOp(BOOKINGS, booking_id, fields, expected or {})])
        booking = await self.get(booking_id)
        if booking is None:
            raise StoreError(f"Booking {booking_id} disappeared after update")
        return booking

    async def batch_commit(self, ops: list[WriteOp]) -> None:
        """Apply every op in one transaction, or none of them."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for op in ops:
                        await self._apply(session, op)
        except PreconditionFailed:
            raise
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    async def append_status_log(self, entry: dict[str, Any]) -> None:
        row = BookingStatusUpdateModel(
            booking_id=entry["booking_id"],
            status=entry["status"],
            actor_id=entry.get("actor_id"),
            source=entry.get("source"),
            event_id=entry.get("event_id"),
            event_at=entry.get("event_at"),
            idempotent=bool(entry.get("idempotent")),
            details=entry.get("metadata") or {},
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    async def _apply(session: AsyncSession, op: WriteOp) -> None:
        model = _COLLECTIONS[op.collection]

        values: dict[str, Any] = {}
        for name, value in op.fields.items():
            column = getattr(model, name)
            values[name] = column + value.amount if isinstance(value, Increment) else value

        conditions = [model.id == op.key]
        for name, value in op.expected.items():
            column = getattr(model, name)
            if isinstance(value, tuple):
                options = [v for v in value if v is not None]
                clauses = [column.in_(options)] if options else []
                if None in value:
                    clauses.append(column.is_(None))
                conditions.append(or_(*clauses))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)

        result = await session.execute(
            update(model)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if op.expected:
                raise PreconditionFailed(
                    f"{op.collection}/{op.key}: expected {op.expected} no longer holds"
                )
            logger.warning("Batch write matched no %s record %s", op.collection, op.key)
