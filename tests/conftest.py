"""
Shared test fixtures.

Uses a throwaway SQLite database per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  The production models use portable
column types only, so the real ``Base.metadata`` is created as-is.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import Settings
from src.domain.entities import Actor, Location, Place
from src.domain.enums import ActorRole, BookingStatus
from src.infrastructure.database import Base, build_session_factory
from src.infrastructure.locks import InMemoryBookingLockManager
from src.services.wiring import Components, build_components

# Krishnagiri bus stand -> collectorate
PICKUP = Location(12.4974, 78.5604)
DROPOFF = Location(12.5186, 78.2137)

# ~11 m from the pickup / dropoff coordinates
NEAR_PICKUP = Location(12.4974, 78.5605)
NEAR_DROPOFF = Location(12.5186, 78.2138)

# ~333 m north of the pickup / dropoff coordinates
FAR_FROM_PICKUP = Location(12.5004, 78.5604)
FAR_FROM_DROPOFF = Location(12.5216, 78.2137)

DRIVER = Actor("drv-1", ActorRole.DRIVER)
OTHER_DRIVER = Actor("drv-2", ActorRole.DRIVER)
CUSTOMER = Actor("cust-1", ActorRole.CUSTOMER, source="customer_app")
ADMIN = Actor("admin-1", ActorRole.ADMIN, source="admin_panel")


class FakeClock:
    """Deterministic clock; call :meth:`advance` to move time forward."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def lock_clock():
    """Millisecond clock for the lock manager, as a mutable cell."""
    state = {"now": 1_000_000}
    return state


@pytest.fixture
def test_settings() -> Settings:
    return Settings(lock_backend="memory", notifier_backend="log")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Create tables in a fresh SQLite file, yield a factory, then dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def components(session_factory, clock, lock_clock, test_settings) -> Components:
    locks = InMemoryBookingLockManager(
        test_settings.booking_lock_timeout_seconds,
        clock_ms=lambda: lock_clock["now"],
    )
    return build_components(session_factory, cfg=test_settings, clock=clock, locks=locks)


@pytest_asyncio.fixture
async def make_booking(components, clock):
    """Factory creating a booking (and the driver rows) in the test store."""
    created: set[str] = set()

    async def _make(
        booking_id: str = "bk-1",
        *,
        status: BookingStatus = BookingStatus.ACCEPTED,
        driver_id: str | None = DRIVER.id,
        customer_id: str = CUSTOMER.id,
        pickup: Location | None = PICKUP,
        dropoff: Location | None = DROPOFF,
    ):
        for actor_id in (DRIVER.id, OTHER_DRIVER.id, driver_id):
            if actor_id and actor_id not in created:
                await components.store.create_driver(actor_id, name=actor_id)
                created.add(actor_id)
        return await components.store.create_booking(
            booking_id=booking_id,
            customer_id=customer_id,
            pickup=Place("Bus Stand", pickup),
            dropoff=Place("Collectorate", dropoff),
            status=status,
            driver_id=driver_id,
            created_at=clock() - timedelta(minutes=10),
        )

    return _make


@pytest.fixture
def store(components):
    return components.store
