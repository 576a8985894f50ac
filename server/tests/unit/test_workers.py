"""Unit tests for background workers."""

import asyncio
from datetime import timedelta

import pytest

from tourslots.core.clock import utcnow
from tourslots.models.idempotency import IdempotencyRecord
from tourslots.models.reservation import ReservationStatus
from tourslots.services.idempotency_service import IdempotencyService
from tourslots.services.reservation_service import ReservationService
from tourslots.workers.base import BaseWorker
from tourslots.workers.hold_expiry_worker import HoldExpiryWorker
from tourslots.workers.idempotency_cleanup_worker import IdempotencyCleanupWorker
from tourslots.workers.manager import WorkerManager


async def place_holds(session, tour, booking_date, count, now):
    service = ReservationService(session)
    reservations = [
        service.add_pending(
            customer_ref=f"customer-{i}",
            slot=tour.slots[0],
            booking_date=booking_date,
            party_size=1,
            unit_price_amount=8000,
            currency="JPY",
            now=now,
        )
        for i in range(count)
    ]
    await session.commit()
    return reservations


@pytest.mark.asyncio
async def test_hold_expiry_worker_drains_all_batches(test_session, session_factory, tour, booking_date):
    now = utcnow()
    lapsed = await place_holds(test_session, tour, booking_date, 5, now - timedelta(hours=1))
    live = await place_holds(test_session, tour, booking_date, 1, now)
    worker = HoldExpiryWorker(interval_seconds=1, batch_size=2, session_factory=session_factory)

    expired = await worker.process(now=now)

    assert expired == 5
    reservations = await ReservationService(test_session).get_reservations([r.id for r in lapsed + live])
    statuses = {r.id: r.status for r in reservations}
    assert all(statuses[r.id] == ReservationStatus.CANCELLED for r in lapsed)
    assert statuses[live[0].id] == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_hold_expiry_worker_with_nothing_to_do(session_factory):
    worker = HoldExpiryWorker(interval_seconds=1, session_factory=session_factory)

    assert await worker.process() == 0


@pytest.mark.asyncio
async def test_idempotency_cleanup_worker(test_session, session_factory):
    service = IdempotencyService(test_session)
    await service.store_response("fresh", "checkout", {"a": 1}, 201, {"ok": True})
    test_session.add(IdempotencyRecord(
        idempotency_key="stale",
        method="checkout",
        request_body_hash=service.compute_request_hash({"a": 2}),
        response_status_code=201,
        response_body="{}",
        expires_at=utcnow() - timedelta(minutes=1),
    ))
    await test_session.commit()

    deleted = await IdempotencyCleanupWorker(session_factory=session_factory).process()

    assert deleted == 1
    assert await service.check_idempotency("fresh", "checkout", {"a": 1}) == (201, {"ok": True})


class CountingWorker(BaseWorker):
    def __init__(self, fail=False):
        super().__init__(name="Counting", interval_seconds=0.01)
        self.calls = 0
        self.fail = fail

    async def process(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_worker_loop_survives_failures():
    worker = CountingWorker(fail=True)

    await worker.start()
    await asyncio.sleep(0.05)
    await worker.stop()

    assert worker.calls >= 2
    assert worker.is_running is False


@pytest.mark.asyncio
async def test_worker_manager_status():
    manager = WorkerManager(workers={"counting": CountingWorker()})

    await manager.start_all()
    assert manager.get_worker_status() == {"counting": True}
    await asyncio.sleep(0.02)

    await manager.stop_all()
    assert manager.get_worker_status() == {"counting": False}
    assert manager.get_worker("counting").calls >= 1

    with pytest.raises(KeyError):
        manager.get_worker("missing")


def test_default_workers():
    manager = WorkerManager()

    assert set(manager.workers) == {"hold_expiry", "idempotency_cleanup"}
