"""
Distance calculation using the Haversine formula.

Great-circle distance is what the geofence checks compare against the
confirmation radius; road distance is irrelevant for "is the courier
standing at the pickup point".

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Same as :func:`haversine_km` but in metres."""
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0
