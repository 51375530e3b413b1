"""
SQLAlchemy ORM models.

Tables
------
* ``bookings``                -- one row per delivery booking; nested
  blocks of the booking document (timing, status meta) are flattened
  into columns, free-form blocks are JSON.
* ``drivers``                 -- driver availability record, updated in the
  same transaction as the booking on accept / complete / cancel.
* ``booking_status_updates``  -- append-only log of applied updates and
  heartbeats.

Indexes
-------
* **B-Tree** on ``status``, ``driver_id``, ``customer_id`` for dashboard
  look-ups and on ``booking_status_updates.booking_id`` for history reads.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=True)
    status = Column(String(32), default="pending", nullable=False)

    pickup_address = Column(String(255), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_address = Column(String(255), nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    # Timing (first write wins for the arrival / delivery fields)
    arrived_pickup_at = Column(DateTime(timezone=True), nullable=True)
    arrived_dropoff_at = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_time = Column(DateTime(timezone=True), nullable=True)

    # Per-status audit timestamps
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    enroute_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    money_collection_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    # Status meta
    sequence = Column(Integer, default=0, nullable=False)
    last_event_id = Column(String(128), nullable=True)
    last_event_source = Column(String(64), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    last_status_before = Column(String(32), nullable=True)
    last_status_after = Column(String(32), nullable=True)
    last_heartbeat_at = Column(DateTime(timezone=True), nullable=True)
    last_heartbeat_source = Column(String(64), nullable=True)
    last_heartbeat_id = Column(String(128), nullable=True)
    recent_event_ids = Column(JSON, nullable=True)

    driver_location = Column(JSON, nullable=True)
    status_notes = Column(Text, nullable=True)
    delivery_notes = Column(Text, nullable=True)
    delivery_verification = Column(JSON, nullable=True)
    recipient = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_driver", "driver_id"),
        Index("idx_bookings_customer", "customer_id"),
    )


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True)
    name = Column(String(120), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    current_booking_id = Column(String(64), nullable=True)
    status = Column(String(20), default="available")
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_drivers_available", "is_available"),)


class BookingStatusUpdateModel(Base):
    __tablename__ = "booking_status_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False)
    actor_id = Column(String(64), nullable=True)
    source = Column(String(64), nullable=True)
    event_id = Column(String(128), nullable=True)
    event_at = Column(DateTime(timezone=True), nullable=True)
    idempotent = Column(Boolean, default=False, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_status_updates_booking", "booking_id"),
    )
