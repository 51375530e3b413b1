"""
Event ordering guard.

Mobile clocks drift and the network reorders requests, so a strict
"newer than the last event" rule rejects legitimate updates.  Events up to
``tolerance`` older than the last applied event are accepted with their
timestamp replaced by server time; anything older is ``STALE_EVENT``.
Timestamps more than ``tolerance`` ahead of server time are clamped to it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from .entities import Booking
from .errors import ErrorKind, WorkflowError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RawTimestamp = Union[datetime, str, int, float, None]

# Applied event ids remembered per booking for duplicate detection
RECENT_EVENT_IDS = 20


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: RawTimestamp) -> Optional[datetime]:
    """Accept a datetime, an ISO-8601 string or epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


class EventOrderingGuard:
    def __init__(
        self,
        tolerance_seconds: float = 5.0,
        clock: Clock = utc_now,
        recent_ids: int = RECENT_EVENT_IDS,
    ):
        self.tolerance = timedelta(seconds=tolerance_seconds)
        self.clock = clock
        self.recent_ids = recent_ids

    def now(self) -> datetime:
        return as_utc(self.clock())

    def is_duplicate(self, booking: Booking, event_id: Optional[str]) -> bool:
        """An event id already applied to *booking* (as transition or heartbeat)."""
        if not event_id:
            return False
        meta = booking.status_meta
        return event_id in (meta.last_event_id, meta.last_heartbeat_id) or (
            event_id in meta.recent_event_ids
        )

    def remember(self, booking: Booking, event_id: str) -> list[str]:
        """The booking's recent event ids with *event_id* appended, oldest dropped."""
        recent = [i for i in booking.status_meta.recent_event_ids if i != event_id]
        recent.append(event_id)
        return recent[-self.recent_ids:]

    def resolve(
        self, booking: Booking, event_timestamp: RawTimestamp
    ) -> Union[datetime, WorkflowError]:
        """Return the effective event time, or ``STALE_EVENT``."""
        now = self.now()
        event_at = parse_timestamp(event_timestamp) or now
        if event_at - now > self.tolerance:
            logger.warning(
                "Booking %s: event timestamp %s is ahead of server time, using server time",
                booking.id,
                event_at.isoformat(),
            )
            event_at = now

        last_event_at = as_utc(booking.last_event_at)
        if last_event_at is None or event_at >= last_event_at:
            return event_at

        lag = last_event_at - event_at
        if lag > self.tolerance:
            return WorkflowError(
                ErrorKind.STALE_EVENT,
                f"Event timestamp {event_at.isoformat()} is older than the last "
                f"recorded update {last_event_at.isoformat()}",
                {
                    "event_at": event_at.isoformat(),
                    "last_event_at": last_event_at.isoformat(),
                    "tolerance_seconds": self.tolerance.total_seconds(),
                },
            )

        logger.info(
            "Booking %s: event timestamp %.0fms behind last update, using server time",
            booking.id,
            lag.total_seconds() * 1000,
        )
        return self.now()
