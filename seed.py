"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 drivers
  - 6 bookings around Krishnagiri, all ``pending`` except two that are
    already assigned, so every lifecycle endpoint has something to act on
"""

import asyncio

from src.domain.entities import Location, Place
from src.domain.enums import BookingStatus
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.repositories import SqlBookingStore

DRIVERS = [
    ("drv-001", "Ravi Kumar"),
    ("drv-002", "Lakshmi Devi"),
    ("drv-003", "Suresh Babu"),
    ("drv-004", "Anitha Raj"),
]

BOOKINGS = [
    # id, customer, pickup (addr, lat, lng), dropoff (addr, lat, lng), status, driver
    ("bk-1001", "cust-01", ("Bus Stand", 12.4974, 78.5604), ("Collectorate", 12.5186, 78.2137), BookingStatus.PENDING, None),
    ("bk-1002", "cust-02", ("Railway Station", 12.5205, 78.2140), ("Market Road", 12.5142, 78.2108), BookingStatus.PENDING, None),
    ("bk-1003", "cust-03", ("Hospital Road", 12.5230, 78.2165), ("Old Town", 12.5101, 78.2201), BookingStatus.PENDING, None),
    ("bk-1004", "cust-04", ("Fort Gate", 12.5150, 78.2120), ("Lake View", 12.5302, 78.2251), BookingStatus.DRIVER_ASSIGNED, "drv-001"),
    ("bk-1005", "cust-05", ("College Road", 12.5079, 78.2094), ("Main Bazaar", 12.5161, 78.2139), BookingStatus.ACCEPTED, "drv-002"),
    # Historical record with a broken pickup coordinate
    ("bk-1006", "cust-06", ("Unknown", None, None), ("Temple Street", 12.5190, 78.2170), BookingStatus.PENDING, None),
]


def _place(address, lat, lng) -> Place:
    coordinates = Location(lat, lng) if lat is not None else None
    return Place(address=address, coordinates=coordinates)


async def seed() -> None:
    store = SqlBookingStore(async_session_factory)

    for driver_id, name in DRIVERS:
        await store.create_driver(driver_id, name)

    for booking_id, customer, pickup, dropoff, status, driver in BOOKINGS:
        await store.create_booking(
            booking_id=booking_id,
            customer_id=customer,
            pickup=_place(*pickup),
            dropoff=_place(*dropoff),
            status=status,
            driver_id=driver,
        )

    print(f"Seeded {len(DRIVERS)} drivers and {len(BOOKINGS)} bookings")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
