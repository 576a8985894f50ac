"""Concurrency tests for checkout, confirmation and expiry."""

import asyncio
from datetime import date, timedelta
from uuid import UUID

import pytest

from conftest import FakePaymentGateway
from tourslots.core.clock import utcnow
from tourslots.core.exceptions import CapacityExceededError
from tourslots.models.reservation import ReservationStatus
from tourslots.schemas.checkout import CheckoutRequest
from tourslots.schemas.tour import CreateTourRequest
from tourslots.services.availability_service import AvailabilityService
from tourslots.services.checkout_service import CheckoutService
from tourslots.services.payment_callback_service import PaymentCallbackService
from tourslots.services.reservation_service import ReservationService
from tourslots.services.tour_service import TourService

BOOKING_DATE = date.today() + timedelta(days=30)


async def create_tour(session_factory, sample_tour_data):
    async with session_factory() as session:
        return await TourService(session).create_tour(CreateTourRequest(**sample_tour_data))


def cart(tour, customer_id, time_slot="11:00-12:30", quantity=1):
    return CheckoutRequest(
        customer_id=customer_id,
        selections=[{
            "tour_id": str(tour.id),
            "date": BOOKING_DATE.isoformat(),
            "time_slot": time_slot,
            "quantity": quantity,
            "unit_price": 8000,
        }],
    )


@pytest.mark.asyncio
async def test_concurrent_checkouts_no_overbooking(file_session_factory, sample_tour_data):
    """Twelve customers race for a slot that seats five; exactly five get in."""
    tour = await create_tour(file_session_factory, sample_tour_data)
    gateway = FakePaymentGateway()

    async def checkout(customer_number: int):
        async with file_session_factory() as session:
            try:
                return await CheckoutService(session, gateway).initiate_checkout(
                    cart(tour, f"customer_{customer_number}")
                )
            except CapacityExceededError as e:
                return e

    results = await asyncio.gather(*(checkout(i) for i in range(12)))

    successes = [r for r in results if not isinstance(r, CapacityExceededError)]
    rejections = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(successes) == 5
    assert len(rejections) == 7
    assert all(r.remaining_capacity == 0 for r in rejections)

    async with file_session_factory() as session:
        snapshot = await AvailabilityService(session).compute_availability(tour.id, BOOKING_DATE)
    assert snapshot.slots[1].booked == 5
    assert snapshot.slots[1].remaining == 0


@pytest.mark.asyncio
async def test_concurrent_mixed_party_sizes(file_session_factory, sample_tour_data):
    tour = await create_tour(file_session_factory, sample_tour_data)
    gateway = FakePaymentGateway()
    party_sizes = [3, 2, 4, 1, 5, 2, 3, 1]

    async def checkout(index: int, quantity: int):
        async with file_session_factory() as session:
            try:
                await CheckoutService(session, gateway).initiate_checkout(
                    cart(tour, f"customer_{index}", time_slot="09:00-10:30", quantity=quantity)
                )
                return quantity
            except CapacityExceededError:
                return 0

    accepted = await asyncio.gather(*(checkout(i, q) for i, q in enumerate(party_sizes)))

    async with file_session_factory() as session:
        booked = await ReservationService(session).committed_quantity(tour.id, BOOKING_DATE, tour.slots[0].id)
    assert booked == sum(accepted) <= 10


@pytest.mark.asyncio
async def test_different_slots_do_not_block_each_other(file_session_factory, sample_tour_data):
    tour = await create_tour(file_session_factory, sample_tour_data)
    gateway = FakePaymentGateway()

    async def checkout(customer: str, time_slot: str, quantity: int):
        async with file_session_factory() as session:
            return await CheckoutService(session, gateway).initiate_checkout(
                cart(tour, customer, time_slot=time_slot, quantity=quantity)
            )

    results = await asyncio.gather(
        checkout("customer_a", "09:00-10:30", 10),
        checkout("customer_b", "11:00-12:30", 5),
    )

    assert all(len(r.reservation_ids) == 1 for r in results)


@pytest.mark.asyncio
async def test_confirmation_racing_release_settles_once(file_session_factory, sample_tour_data):
    """A webhook and a cancellation racing on one hold leave exactly one outcome."""
    tour = await create_tour(file_session_factory, sample_tour_data)
    gateway = FakePaymentGateway()

    async with file_session_factory() as session:
        checkout = await CheckoutService(session, gateway).initiate_checkout(cart(tour, "customer_1"))
    ids = [UUID(value) for value in checkout.reservation_ids]

    async def confirm():
        async with file_session_factory() as session:
            return await PaymentCallbackService(session, gateway).on_payment_succeeded(checkout.session_id, ids)

    async def cancel():
        async with file_session_factory() as session:
            return await ReservationService(session).release(ids, "customer_request")

    ack, released = await asyncio.gather(confirm(), cancel())

    async with file_session_factory() as session:
        reservation = (await ReservationService(session).get_reservations(ids))[0]

    if reservation.status == ReservationStatus.CONFIRMED:
        assert ack.confirmed == checkout.reservation_ids
        assert released == []
    else:
        assert reservation.status == ReservationStatus.CANCELLED
        assert released == ids
        assert ack.unconfirmable == checkout.reservation_ids


@pytest.mark.asyncio
async def test_sweep_racing_checkout(file_session_factory, sample_tour_data, restore_settings):
    """Lapsed holds swept while new checkouts arrive never overbook the slot."""
    restore_settings.hold_window_minutes = 30
    tour = await create_tour(file_session_factory, sample_tour_data)
    gateway = FakePaymentGateway()
    started = utcnow() - timedelta(minutes=31)

    # Fill the slot with holds that have already lapsed
    async with file_session_factory() as session:
        await CheckoutService(session, gateway).initiate_checkout(
            cart(tour, "customer_old", quantity=5), now=started
        )

    async def sweep():
        async with file_session_factory() as session:
            return await ReservationService(session).expire_pending_reservations()

    async def checkout(customer_number: int):
        async with file_session_factory() as session:
            try:
                await CheckoutService(session, gateway).initiate_checkout(cart(tour, f"customer_{customer_number}"))
                return 1
            except CapacityExceededError:
                return 0

    results = await asyncio.gather(sweep(), *(checkout(i) for i in range(7)))

    assert results[0] == 1
    assert sum(results[1:]) == 5
    async with file_session_factory() as session:
        booked = await ReservationService(session).committed_quantity(tour.id, BOOKING_DATE, tour.slots[1].id)
    assert booked == 5
