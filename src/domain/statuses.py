"""
Status normalisation and groupings.

Older driver-app builds still send deprecated status names.  They are
mapped onto canonical :class:`BookingStatus` values here so that nothing
downstream ever sees (or stores) an alias.
"""

from __future__ import annotations

from typing import Optional

from .entities import Booking
from .enums import BookingStatus

STATUS_ALIASES: dict[str, str] = {
    "driver_arrived_pickup": "driver_arrived",
    "arrived_pickup": "driver_arrived",
    "arrived_at_pickup": "driver_arrived",
    "driver_arrived_dropoff": "at_dropoff",
    "arrived_dropoff": "at_dropoff",
    "arrived_at_dropoff": "at_dropoff",
    "at_drop_off": "at_dropoff",
    "enroute_dropoff": "in_transit",
    "enroute_to_dropoff": "in_transit",
    "en_route_dropoff": "in_transit",
    "en_route_to_dropoff": "in_transit",
    "delivering": "in_transit",
    "delivery_in_progress": "in_transit",
    "money_collection_pending": "money_collection",
    "payment_collection": "money_collection",
    "delivery_completed": "delivered",
    "completed_delivery": "delivered",
}

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# Statuses that may only be reached through the completion operations
COMPLETION_STATUSES = frozenset({BookingStatus.DELIVERED, BookingStatus.COMPLETED})

# Statuses that claim a driver; only the accept / assign operations enter them
CLAIM_STATUSES = frozenset({BookingStatus.DRIVER_ASSIGNED, BookingStatus.ACCEPTED})

DRIVER_REQUIRED_STATUSES = frozenset(
    {
        BookingStatus.DRIVER_ASSIGNED,
        BookingStatus.ACCEPTED,
        BookingStatus.DRIVER_ENROUTE,
        BookingStatus.DRIVER_ARRIVED,
        BookingStatus.PICKED_UP,
        BookingStatus.IN_TRANSIT,
        BookingStatus.AT_DROPOFF,
        BookingStatus.DELIVERED,
        BookingStatus.MONEY_COLLECTION,
        BookingStatus.COMPLETED,
    }
)


def normalize_status(raw: Optional[str]) -> Optional[str]:
    """Map *raw* to its canonical spelling; ``None`` for empty input.

    Unknown values pass through (trimmed and lower-cased) so callers can
    report what the client actually sent.
    """
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if not value:
        return None
    return STATUS_ALIASES.get(value, value)


def check_integrity(booking: Booking) -> list[str]:
    """List inconsistencies between a booking's status and its driver."""
    issues = []
    if booking.driver_id and booking.status == BookingStatus.PENDING:
        issues.append("Booking has driverId but status is pending")
    if booking.status in DRIVER_REQUIRED_STATUSES and not booking.driver_id:
        issues.append(f"Booking status is {booking.status.value} but no driverId assigned")
    if booking.sequence < 0:
        issues.append("Negative status sequence")
    return issues


def parse_status(raw: Optional[str]) -> Optional[BookingStatus]:
    """Normalise and convert to :class:`BookingStatus`, or ``None``."""
    value = normalize_status(raw)
    if value is None:
        return None
    try:
        return BookingStatus(value)
    except ValueError:
        return None
