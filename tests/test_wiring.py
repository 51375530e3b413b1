"""Tests for component wiring and the Redis-backed collaborators (mocked Redis)."""

import json
from unittest.mock import AsyncMock

import pytest

from src.config import Settings
from src.domain.entities import Location, StatusChangeEvent, TransitionResult
from src.domain.enums import BookingStatus, LocationTarget
from src.infrastructure.locks import InMemoryBookingLockManager, RedisBookingLockManager
from src.infrastructure.notifications import LoggingNotifier, RedisNotifier
from src.services.wiring import build_components, needs_redis


class TestBuildComponents:
    @pytest.mark.asyncio
    async def test_defaults_are_in_process(self, session_factory):
        components = build_components(session_factory, cfg=Settings())
        assert isinstance(components.locks, InMemoryBookingLockManager)
        assert isinstance(components.notifier, LoggingNotifier)
        assert components.workflow.engine is components.engine

    @pytest.mark.asyncio
    async def test_redis_backends(self, session_factory):
        cfg = Settings(lock_backend="redis", notifier_backend="redis")
        components = build_components(session_factory, cfg=cfg, redis=AsyncMock())
        assert needs_redis(cfg)
        assert isinstance(components.locks, RedisBookingLockManager)
        assert isinstance(components.notifier, RedisNotifier)

    @pytest.mark.asyncio
    async def test_redis_backend_without_client(self, session_factory):
        with pytest.raises(ValueError, match="requires a Redis client"):
            build_components(session_factory, cfg=Settings(lock_backend="redis"))

    @pytest.mark.asyncio
    async def test_radii_come_from_settings(self, session_factory):
        cfg = Settings(pickup_radius_m=250.0, clock_skew_tolerance_seconds=2.0)
        components = build_components(session_factory, cfg=cfg)
        assert components.engine.geofence.radius_m[LocationTarget.PICKUP] == 250.0
        assert components.engine.ordering.tolerance.total_seconds() == 2.0


class TestStatusChangeEvent:
    def test_from_result_drops_empty_extras(self, clock):
        result = TransitionResult(
            booking_id="bk-1",
            new_status=BookingStatus.IN_TRANSIT,
            previous_status=BookingStatus.PICKED_UP,
            sequence=4,
            idempotent=False,
            should_notify=True,
            event_at=clock(),
            location=Location(12.5, 78.2, 8.0),
        )

        event = StatusChangeEvent.from_result(result, reason=None, photo_ref="p.jpg")

        assert event.to_dict() == {
            "booking_id": "bk-1",
            "new_status": "in_transit",
            "previous_status": "picked_up",
            "sequence": 4,
            "location": {"latitude": 12.5, "longitude": 78.2, "accuracy_m": 8.0},
            "notes": None,
            "photo_ref": "p.jpg",
        }


class TestRedisNotifier:
    @pytest.mark.asyncio
    async def test_publishes_to_booking_and_admin_channels(self):
        mock_redis = AsyncMock()
        notifier = RedisNotifier(mock_redis)
        event = StatusChangeEvent("bk-1", "delivered", "at_dropoff", 7)

        await notifier.publish(event)

        channels = [c.args[0] for c in mock_redis.publish.await_args_list]
        assert channels == ["booking:bk-1", "bookings:admin"]
        payload = json.loads(mock_redis.publish.await_args_list[0].args[1])
        assert payload["new_status"] == "delivered"
        assert payload["sequence"] == 7
