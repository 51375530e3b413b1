"""
Geofence checks for pickup / dropoff confirmations.

Fails closed on a missing device location.  A missing or malformed
*target* coordinate skips the check with a warning instead: some historical
bookings carry broken coordinates, and blocking the courier on them would
strand the delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .distance import haversine_m
from .entities import Booking, Location
from .enums import LocationTarget
from .errors import ErrorKind, WorkflowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeofenceCheck:
    passed: bool
    distance_m: Optional[float]
    limit_m: float
    skipped: bool = False


class GeofenceValidator:
    def __init__(self, pickup_radius_m: float = 100.0, dropoff_radius_m: float = 100.0):
        self.radius_m = {
            LocationTarget.PICKUP: pickup_radius_m,
            LocationTarget.DROPOFF: dropoff_radius_m,
        }

    def measure(
        self, reported: Location, target: Optional[Location], radius_m: float
    ) -> GeofenceCheck:
        if target is None or not target.is_valid():
            return GeofenceCheck(passed=True, distance_m=None, limit_m=radius_m, skipped=True)
        distance = haversine_m(
            reported.latitude, reported.longitude, target.latitude, target.longitude
        )
        return GeofenceCheck(passed=distance <= radius_m, distance_m=distance, limit_m=radius_m)

    def validate(
        self,
        booking: Booking,
        target: Optional[LocationTarget],
        location: Optional[Location],
        status_label: str,
    ) -> Optional[WorkflowError]:
        """Check *location* against the booking's *target* coordinate.

        Returns ``None`` on pass (or when no proof is required for this
        status), else ``LOCATION_REQUIRED`` / ``OUTSIDE_CONFIRMATION_RADIUS``.
        """
        if target is None:
            return None

        if location is None or not location.is_valid():
            return WorkflowError(
                ErrorKind.LOCATION_REQUIRED,
                f"Location is required to confirm {status_label.replace('_', ' ')}",
                {"required_location": target.value},
            )

        place = booking.pickup if target == LocationTarget.PICKUP else booking.dropoff
        check = self.measure(location, place.coordinates, self.radius_m[target])

        if check.skipped:
            logger.warning(
                "Geofence skipped for booking %s: %s coordinates missing or malformed (%r)",
                booking.id,
                target.value,
                place.coordinates,
            )
            return None

        if not check.passed:
            return WorkflowError(
                ErrorKind.OUTSIDE_CONFIRMATION_RADIUS,
                f"You must be within {check.limit_m:.0f}m of the {target.value} location "
                f"to confirm this status. You are currently {check.distance_m:.0f}m away.",
                {
                    "distance_m": round(check.distance_m, 1),
                    "limit_m": check.limit_m,
                    "required_location": target.value,
                },
            )
        return None
