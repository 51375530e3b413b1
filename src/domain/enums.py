"""Domain enumerations."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    DRIVER_ASSIGNED = "driver_assigned"
    ACCEPTED = "accepted"
    DRIVER_ENROUTE = "driver_enroute"
    DRIVER_ARRIVED = "driver_arrived"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    AT_DROPOFF = "at_dropoff"
    DELIVERED = "delivered"
    MONEY_COLLECTION = "money_collection"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


class LocationTarget(str, enum.Enum):
    """Which booking coordinate a status confirmation is checked against."""

    PICKUP = "pickup"
    DROPOFF = "dropoff"


class DriverState(str, enum.Enum):
    AVAILABLE = "available"
    ON_TRIP = "on_trip"
