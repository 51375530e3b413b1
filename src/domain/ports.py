"""
Interfaces of the collaborators the lifecycle core calls into.

Concrete implementations live in ``src.infrastructure``; the services only
depend on these protocols and receive implementations via their
constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

from .entities import Booking, StatusChangeEvent
from .errors import WorkflowError

# Collections a WriteOp may target
BOOKINGS = "bookings"
DRIVERS = "drivers"


class StoreError(Exception):
    """The record store failed to apply a write; nothing was changed."""


class PreconditionFailed(StoreError):
    """A compare-and-set condition did not hold (another writer won)."""


@dataclass(frozen=True)
class Increment:
    """Field value meaning "add *amount* to the stored value"."""

    amount: int = 1


@dataclass
class WriteOp:
    """One document update inside a batch commit.

    ``expected`` holds field -> value conditions that must all match the
    stored document, otherwise the whole batch is rejected with
    :class:`PreconditionFailed`.  A tuple value means "any of these".
    """

    collection: str
    key: str
    fields: dict[str, Any]
    expected: dict[str, Union[Any, tuple]] = field(default_factory=dict)


class BookingStore(Protocol):
    async def get(self, booking_id: str) -> Optional[Booking]: ...

    async def atomic_update(
        self, booking_id: str, fields: dict[str, Any], expected: Optional[dict[str, Any]] = None
    ) -> Booking: ...

    async def batch_commit(self, ops: list[WriteOp]) -> None: ...

    async def append_status_log(self, entry: dict[str, Any]) -> None: ...

    async def status_history(self, booking_id: str) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class LockEntry:
    booking_id: str
    holder_id: str
    acquired_at_ms: int


class BookingLockManager(Protocol):
    async def acquire(
        self, booking_id: str, holder_id: str
    ) -> Union[LockEntry, WorkflowError]: ...

    async def release(self, booking_id: str, holder_id: str) -> bool: ...

    async def is_locked(self, booking_id: str) -> bool: ...

    async def owner(self, booking_id: str) -> Optional[str]: ...

    async def force_release(self, booking_id: str) -> bool: ...

    async def sweep(self) -> int: ...


class Notifier(Protocol):
    async def publish(self, event: StatusChangeEvent) -> None: ...


class CommissionLedger(Protocol):
    async def debit_commission(self, booking: Booking) -> None: ...
