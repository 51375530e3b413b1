"""
Notification fan-out adapters.

Delivery is best-effort: the workflow logs and swallows publish failures,
since the status change is already committed by the time we get here.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as aioredis

from src.domain.entities import StatusChangeEvent

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes events to the log.  Default for local runs and tests."""

    def __init__(self):
        self.published: list[StatusChangeEvent] = []

    async def publish(self, event: StatusChangeEvent) -> None:
        self.published.append(event)
        logger.info(
            "Booking %s: %s -> %s (seq=%d)",
            event.booking_id,
            event.previous_status,
            event.new_status,
            event.sequence,
        )


class RedisNotifier:
    """Publishes each event as JSON on ``booking:{id}`` and the admin feed."""

    ADMIN_CHANNEL = "bookings:admin"

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, event: StatusChangeEvent) -> None:
        payload = json.dumps(event.to_dict(), default=str)
        await self.redis.publish(f"booking:{event.booking_id}", payload)
        await self.redis.publish(self.ADMIN_CHANNEL, payload)
