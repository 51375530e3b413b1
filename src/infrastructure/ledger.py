"""Commission ledger adapter.  The wallet service itself lives elsewhere."""

from __future__ import annotations

import logging

from src.domain.entities import Booking

logger = logging.getLogger(__name__)


class LoggingCommissionLedger:
    def __init__(self):
        self.debited: list[str] = []

    async def debit_commission(self, booking: Booking) -> None:
        self.debited.append(booking.id)
        logger.info(
            "Commission debit requested for booking %s (driver %s)",
            booking.id,
            booking.driver_id,
        )
