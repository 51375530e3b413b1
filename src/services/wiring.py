"""
Component wiring.

Builds the lifecycle services once at startup and hands them to the API
via ``app.state``.  Tests call :func:`build_components` directly with their
own session factory, clock and lock manager.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings
from src.domain.geofence import GeofenceValidator
from src.domain.ordering import Clock, EventOrderingGuard, utc_now
from src.domain.ports import BookingLockManager, CommissionLedger, Notifier
from src.infrastructure.ledger import LoggingCommissionLedger
from src.infrastructure.locks import InMemoryBookingLockManager, RedisBookingLockManager
from src.infrastructure.notifications import LoggingNotifier, RedisNotifier
from src.infrastructure.repositories import SqlBookingStore
from src.services.driver_workflow import DriverStatusWorkflow
from src.services.state_machine import StateMachineEngine


@dataclass
class Components:
    store: SqlBookingStore
    locks: BookingLockManager
    engine: StateMachineEngine
    workflow: DriverStatusWorkflow
    notifier: Notifier
    ledger: CommissionLedger


def needs_redis(cfg: Settings) -> bool:
    return cfg.lock_backend == "redis" or cfg.notifier_backend == "redis"


def build_components(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cfg: Settings = settings,
    redis: Optional[aioredis.Redis] = None,
    clock: Clock = utc_now,
    locks: Optional[BookingLockManager] = None,
    notifier: Optional[Notifier] = None,
    ledger: Optional[CommissionLedger] = None,
) -> Components:
    if locks is None:
        if cfg.lock_backend == "redis":
            if redis is None:
                raise ValueError("lock_backend=redis requires a Redis client")
            locks = RedisBookingLockManager(redis, cfg.booking_lock_timeout_seconds)
        else:
            locks = InMemoryBookingLockManager(cfg.booking_lock_timeout_seconds)

    if notifier is None:
        if cfg.notifier_backend == "redis":
            if redis is None:
                raise ValueError("notifier_backend=redis requires a Redis client")
            notifier = RedisNotifier(redis)
        else:
            notifier = LoggingNotifier()

    ledger = ledger or LoggingCommissionLedger()
    store = SqlBookingStore(session_factory)
    engine = StateMachineEngine(
        store,
        GeofenceValidator(cfg.pickup_radius_m, cfg.dropoff_radius_m),
        EventOrderingGuard(cfg.clock_skew_tolerance_seconds, clock),
    )
    workflow = DriverStatusWorkflow(engine, locks, notifier, ledger)
    return Components(store, locks, engine, workflow, notifier, ledger)
