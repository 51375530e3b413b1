"""
Booking locks for the driver-acceptance step.

Two interchangeable implementations:

* ``InMemoryBookingLockManager`` -- process-local map with a fixed expiry.
  Narrows the race between two drivers accepting the same booking on one
  instance; the conditional write in the store still has the final word.
* ``RedisBookingLockManager`` -- the same contract on Redis for
  multi-instance deployments.  Uses SET NX PX for acquire and a Lua
  script for atomic check-and-delete on release.

A lock that outlives ``timeout_seconds`` is treated as abandoned by a
crashed holder and silently replaced.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Union

import redis.asyncio as aioredis

from src.domain.errors import ErrorKind, WorkflowError
from src.domain.ports import LockEntry

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def booking_locked(booking_id: str, owner: Optional[str]) -> WorkflowError:
    return WorkflowError(
        ErrorKind.BOOKING_LOCKED,
        "Another driver is accepting this booking. Please try again shortly.",
        {"booking_id": booking_id, "locked_by": owner},
    )


class InMemoryBookingLockManager:
    def __init__(self, timeout_seconds: int = 30, clock_ms: Callable[[], int] = _now_ms):
        self.timeout_ms = timeout_seconds * 1000
        self.clock_ms = clock_ms
        self._locks: dict[str, LockEntry] = {}
        self._mutex = threading.Lock()

    def _expired(self, entry: LockEntry, now: int) -> bool:
        return now - entry.acquired_at_ms >= self.timeout_ms

    def _live(self, booking_id: str) -> Optional[LockEntry]:
        entry = self._locks.get(booking_id)
        if entry is None:
            return None
        if self._expired(entry, self.clock_ms()):
            del self._locks[booking_id]
            return None
        return entry

    async def acquire(
        self, booking_id: str, holder_id: str
    ) -> Union[LockEntry, WorkflowError]:
        """Take the lock, refresh our own, or replace an abandoned one."""
        with self._mutex:
            now = self.clock_ms()
            current = self._locks.get(booking_id)
            if current is not None and current.holder_id != holder_id:
                if not self._expired(current, now):
                    logger.info(
                        "Booking %s locked by %s, rejecting %s",
                        booking_id, current.holder_id, holder_id,
                    )
                    return booking_locked(booking_id, current.holder_id)
                logger.warning(
                    "Replacing expired lock on booking %s held by %s",
                    booking_id, current.holder_id,
                )
            entry = LockEntry(booking_id, holder_id, now)
            self._locks[booking_id] = entry
            return entry

    async def release(self, booking_id: str, holder_id: str) -> bool:
        """Release only if *holder_id* owns the lock."""
        with self._mutex:
            current = self._locks.get(booking_id)
            if current is None or current.holder_id != holder_id:
                return False
            del self._locks[booking_id]
            return True

    async def is_locked(self, booking_id: str) -> bool:
        with self._mutex:
            return self._live(booking_id) is not None

    async def owner(self, booking_id: str) -> Optional[str]:
        with self._mutex:
            entry = self._live(booking_id)
            return entry.holder_id if entry else None

    async def force_release(self, booking_id: str) -> bool:
        with self._mutex:
            removed = self._locks.pop(booking_id, None)
        if removed:
            logger.warning(
                "Force released lock on booking %s held by %s",
                booking_id, removed.holder_id,
            )
        return removed is not None

    async def sweep(self) -> int:
        """Drop every expired entry.  Returns how many were removed."""
        with self._mutex:
            now = self.clock_ms()
            expired = [k for k, v in self._locks.items() if self._expired(v, now)]
            for key in expired:
                del self._locks[key]
        if expired:
            logger.info("Swept %d expired booking locks", len(expired))
        return len(expired)


class RedisBookingLockManager:
    _RELEASE_LUA = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        client: aioredis.Redis,
        timeout_seconds: int = 30,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.redis = client
        self.timeout_ms = timeout_seconds * 1000
        self.clock_ms = clock_ms

    @staticmethod
    def _key(booking_id: str) -> str:
        return f"lock:booking:{booking_id}"

    async def acquire(
        self, booking_id: str, holder_id: str
    ) -> Union[LockEntry, WorkflowError]:
        key = self._key(booking_id)
        now = self.clock_ms()
        if await self.redis.set(key, holder_id, nx=True, px=self.timeout_ms):
            return LockEntry(booking_id, holder_id, now)

        current = await self.redis.get(key)
        if current == holder_id:
            await self.redis.set(key, holder_id, xx=True, px=self.timeout_ms)
            return LockEntry(booking_id, holder_id, now)
        return booking_locked(booking_id, current)

    async def release(self, booking_id: str, holder_id: str) -> bool:
        return bool(
            await self.redis.eval(self._RELEASE_LUA, 1, self._key(booking_id), holder_id)
        )

    async def is_locked(self, booking_id: str) -> bool:
        return bool(await self.redis.exists(self._key(booking_id)))

    async def owner(self, booking_id: str) -> Optional[str]:
        return await self.redis.get(self._key(booking_id))

    async def force_release(self, booking_id: str) -> bool:
        removed = bool(await self.redis.delete(self._key(booking_id)))
        if removed:
            logger.warning("Force released lock on booking %s", booking_id)
        return removed

    async def sweep(self) -> int:
        # Keys carry a PX expiry; Redis drops them on its own
        return 0
