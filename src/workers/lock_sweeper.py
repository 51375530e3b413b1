"""
Background Lock Sweeper
=======================

Runs every ``LOCK_SWEEP_INTERVAL_SECONDS`` (default 60 s) and drops booking
locks whose holder never released them (crashed request, killed worker).
Expired locks are already ignored by ``acquire``; the sweep only keeps the
map from growing.
"""

from __future__ import annotations

import asyncio
import logging

from src.domain.ports import BookingLockManager

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop(locks: BookingLockManager, interval_seconds: float) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(locks, interval_seconds))
    logger.info("Lock sweeper started (interval=%ss)", interval_seconds)


async def stop_sweep_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Lock sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(locks: BookingLockManager, interval_seconds: float) -> None:
    """Periodic loop: sweep then sleep."""
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            await locks.sweep()
        except Exception:
            logger.exception("Unhandled error in lock sweep")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass  # next sweep
