"""Background worker for releasing lapsed pending reservations."""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.database import async_session_factory
from ..core.observability import metrics_collector
from ..services.reservation_service import ReservationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Background worker that cancels pending reservations past their hold window.

    Availability already ignores lapsed holds at read time; the sweep makes
    the ledger itself reflect that, so lapsed rows show as cancelled with
    reason ``hold_expired``.
    """

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
    ):
        super().__init__(
            name="HoldExpiry",
            interval_seconds=interval_seconds or settings.expiry_sweep_interval_seconds,
        )
        self.batch_size = batch_size or settings.expiry_sweep_batch_size
        self.session_factory = session_factory

    async def process(self, now: Optional[datetime] = None) -> int:
        """
        Expire lapsed holds in batches until none are left.

        Returns:
            Total number of reservations expired
        """
        now = now or utcnow()
        total = 0

        async with self.session_factory() as db:
            reservation_service = ReservationService(db)
            while True:
                expired = await reservation_service.expire_pending_reservations(
                    now=now, batch_size=self.batch_size
                )
                total += expired
                if expired < self.batch_size:
                    break

            metrics_collector.set_pending_reservations(
                await reservation_service.count_live_pending(now)
            )

        if total > 0:
            logger.info(
                "Expired lapsed holds",
                extra={
                    "expired_count": total,
                    "reference_time": now.isoformat(),
                    "worker": self.name
                }
            )
        return total
