"""Per-slot serialization for the capacity check-and-reserve critical section."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import is_postgresql
from .exceptions import BusyError

logger = logging.getLogger(__name__)


def slot_lock_key(tour_id: UUID, booking_date: date, slot_id: UUID) -> str:
    """Lock key identifying one (tour, date, slot) capacity bucket."""
    return f"slot:{tour_id}:{booking_date.isoformat()}:{slot_id}"


class KeyedLockRegistry:
    """
    Registry of asyncio locks keyed by string.

    Locks are created on first use and dropped once no coroutine holds or
    waits on them, so the registry does not grow with the number of slots
    ever booked.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def acquire(self, key: str, timeout: float) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            BusyError: If the lock could not be acquired within ``timeout`` seconds
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Timed out waiting for slot lock",
                    extra={"lock_key": key, "timeout_seconds": timeout}
                )
                raise BusyError(detail="Another checkout is reserving this slot, please retry") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


# Process-wide registry shared by all requests
slot_locks = KeyedLockRegistry()


async def acquire_advisory_lock(db: AsyncSession, key: str, timeout: float) -> None:
    """
    Take a transaction-scoped PostgreSQL advisory lock for ``key``.

    Serializes reservations across worker processes. The lock is released
    automatically when the surrounding transaction commits or rolls back.
    No-op on other backends (SQLite in tests), where the in-process registry
    is the only serialization.
    """
    if not is_postgresql(db):
        return

    try:
        await db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
        await db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
            {"lock_key": key}
        )
    except DBAPIError as e:
        await db.rollback()
        logger.warning(
            "Timed out waiting for advisory slot lock",
            extra={"lock_key": key, "error": str(e)}
        )
        raise BusyError(detail="Another checkout is reserving this slot, please retry") from e

    logger.debug("Acquired advisory lock for slot", extra={"lock_key": key})
