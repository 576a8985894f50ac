"""Checkout workflow: place pending holds for a cart and open a payment session."""

import asyncio
import logging
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import (
    BusyError,
    CapacityExceededError,
    InvalidInputError,
    PartialBatchFailureError,
    PaymentSessionFailedError,
    ProblemDetailsException,
    SlotInactiveError,
    SlotNotFoundError,
)
from ..core.locks import KeyedLockRegistry, acquire_advisory_lock, slot_lock_key, slot_locks
from ..core.observability import metrics_collector
from ..models.reservation import Reservation
from ..models.tour import Tour, TourTimeSlot
from ..schemas.checkout import CheckoutRequest, CheckoutResponse, CheckoutSelection
from .availability_service import parse_booking_date
from .payment_gateway import LineItem, PaymentGateway, PaymentGatewayError
from .reservation_service import ReservationService
from .tour_service import TourService, booking_date_violation

logger = logging.getLogger(__name__)

LOCK_RETRY_BACKOFF_SECONDS = 0.05


class CheckoutService:
    """
    Service turning a cart into pending reservations plus a payment session.

    Each selection is reserved in its own short transaction inside the
    per-slot critical section. Reservations written so far are tracked in a
    rollback list and cancelled if a later step of the checkout fails.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        locks: KeyedLockRegistry | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.locks = locks or slot_locks
        self.tours = TourService(db)
        self.reservations = ReservationService(db)

    async def initiate_checkout(
        self,
        request: CheckoutRequest,
        now: datetime | None = None,
    ) -> CheckoutResponse:
        """
        Reserve every selection of the cart and create the payment session.

        Raises:
            NotFoundError, SlotNotFoundError, SlotInactiveError, InvalidInputError,
            CapacityExceededError, BusyError: The first selection failed
            PartialBatchFailureError: A later selection failed; earlier holds were released
            PaymentSessionFailedError: The payment provider failed; all holds were released
            BusyError: The checkout did not finish within the configured deadline
        """
        if len(request.selections) > settings.max_selections_per_checkout:
            raise InvalidInputError(
                detail=f"A checkout may contain at most {settings.max_selections_per_checkout} selections",
                field="selections"
            )

        created_ids: list[UUID] = []
        try:
            return await asyncio.wait_for(
                self._run_checkout(request, now or utcnow(), created_ids),
                timeout=settings.checkout_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self.db.rollback()
            released = await self._compensate(created_ids, "checkout_timeout")
            metrics_collector.record_checkout_failure("CHECKOUT_TIMEOUT")
            logger.error(
                "Checkout timed out",
                extra={
                    "customer_id": request.customer_id,
                    "timeout_seconds": settings.checkout_timeout_seconds,
                    "released_count": len(released)
                }
            )
            raise BusyError(detail="Checkout did not complete in time, please retry").annotate(
                released_reservation_ids=released
            ) from None

    async def _run_checkout(
        self,
        request: CheckoutRequest,
        now: datetime,
        created_ids: list[UUID],
    ) -> CheckoutResponse:
        # Plain values only: a rollback later in the cart expires earlier rows
        line_items: list[LineItem] = []
        tour_ids: list[str] = []
        expirations: list[datetime] = []

        for index, selection in enumerate(request.selections):
            try:
                tour, reservation = await self._reserve_selection(request.customer_id, selection, now)
            except ProblemDetailsException as e:
                e.annotate(
                    selection_index=index,
                    tour_id=selection.tour_id,
                    date=selection.date,
                    time_slot=selection.time_slot,
                )
                metrics_collector.record_checkout_failure(e.code or "UNKNOWN")
                if not created_ids:
                    raise

                released = await self._compensate(created_ids, "checkout_failed")
                logger.warning(
                    "Checkout selection failed after earlier holds, batch released",
                    extra={
                        "customer_id": request.customer_id,
                        "selection_index": index,
                        "error_code": e.code,
                        "released_count": len(released)
                    }
                )
                raise PartialBatchFailureError(index, e, released).annotate(
                    tour_id=selection.tour_id,
                    date=selection.date,
                    time_slot=selection.time_slot,
                ) from e
            except Exception:
                await self.db.rollback()
                await self._compensate(created_ids, "checkout_failed")
                raise

            created_ids.append(reservation.id)
            tour_ids.append(str(reservation.tour_id))
            expirations.append(reservation.expires_at)
            line_items.append(self._line_item(tour, reservation, selection))

        reservation_ids = [str(reservation_id) for reservation_id in created_ids]
        expires_at = min(expirations)
        try:
            session = await self.gateway.create_checkout_session(
                request.customer_id, line_items, reservation_ids, expires_at=expires_at
            )
        except PaymentGatewayError as e:
            released = await self._compensate(created_ids, "payment_session_failed")
            metrics_collector.record_checkout_failure("PAYMENT_SESSION_FAILED")
            raise PaymentSessionFailedError(
                detail=f"The payment provider could not start checkout: {e}",
                released_reservation_ids=released,
            ) from e

        await self.reservations.attach_payment_session(list(created_ids), session.session_id)

        for tour_id in tour_ids:
            metrics_collector.record_reservation_created(tour_id)

        logger.info(
            "Checkout started",
            extra={
                "customer_id": request.customer_id,
                "session_id": session.session_id,
                "reservation_ids": reservation_ids
            }
        )

        return CheckoutResponse(
            session_id=session.session_id,
            checkout_url=session.url,
            reservation_ids=reservation_ids,
            expires_at=expires_at,
        )

    async def _reserve_selection(
        self,
        customer_ref: str,
        selection: CheckoutSelection,
        now: datetime,
    ) -> tuple[Tour, Reservation]:
        """Validate one selection against the catalog and hold capacity for it."""
        booking_date = parse_booking_date(selection.date)
        retries = settings.reservation_lock_retries
        attempt = 0
        while True:
            # Re-read the catalog on every attempt; a failed attempt rolls back
            # and expires what the session had loaded
            tour = await self.tours.get_tour_by_id_or_raise(selection.tour_id, active_only=True)

            slot = tour.find_slot(selection.time_slot)
            if slot is None:
                raise SlotNotFoundError(str(tour.id), selection.time_slot)
            if not slot.is_active:
                raise SlotInactiveError(str(tour.id), selection.time_slot)

            violation = booking_date_violation(tour, booking_date, now.date())
            if violation:
                raise InvalidInputError(detail=violation, field="date")

            key = slot_lock_key(tour.id, booking_date, slot.id)
            try:
                reservation = await self._hold_capacity(
                    key, customer_ref, tour, slot, booking_date, selection, now
                )
                return tour, reservation
            except BusyError:
                metrics_collector.record_lock_contention()
                if attempt >= retries:
                    raise
                logger.info(
                    "Slot busy, retrying",
                    extra={"lock_key": key, "attempt": attempt + 1}
                )
                attempt += 1
                await asyncio.sleep(LOCK_RETRY_BACKOFF_SECONDS * attempt)

    async def _hold_capacity(
        self,
        key: str,
        customer_ref: str,
        tour: Tour,
        slot: TourTimeSlot,
        booking_date: date,
        selection: CheckoutSelection,
        now: datetime,
    ) -> Reservation:
        """Check remaining capacity and insert the pending row as one critical section."""
        tour_id, slot_id = tour.id, slot.id
        max_capacity, label, currency = slot.max_capacity, slot.label, tour.price_currency
        timeout = settings.reservation_lock_timeout_seconds

        async with self.locks.acquire(key, timeout):
            try:
                await acquire_advisory_lock(self.db, key, timeout)

                committed = await self.reservations.committed_quantity(
                    tour_id, booking_date, slot_id, now
                )
                remaining = max_capacity - committed
                if selection.quantity > remaining:
                    metrics_collector.record_capacity_rejection(str(tour_id))
                    raise CapacityExceededError(
                        time_slot=label,
                        requested_quantity=selection.quantity,
                        remaining_capacity=max(remaining, 0),
                        max_capacity=max_capacity,
                    )

                reservation = self.reservations.add_pending(
                    customer_ref=customer_ref,
                    slot=slot,
                    booking_date=booking_date,
                    party_size=selection.quantity,
                    unit_price_amount=selection.unit_price,
                    currency=currency,
                    now=now,
                )
                await self.db.commit()
            except ProblemDetailsException:
                # Nothing staged; close the transaction without expiring loaded rows
                await self.db.commit()
                raise
            except Exception:
                await self.db.rollback()
                raise

        logger.debug(
            "Placed pending hold",
            extra={
                "reservation_id": str(reservation.id),
                "lock_key": key,
                "party_size": selection.quantity,
                "remaining_after": remaining - selection.quantity
            }
        )
        return reservation

    async def _compensate(self, reservation_ids: list[UUID], reason: str) -> list[str]:
        """Release every hold written so far by this checkout."""
        if not reservation_ids:
            return []
        released = await self.reservations.release(list(reservation_ids), reason)
        return [str(reservation_id) for reservation_id in released]

    @staticmethod
    def _line_item(tour: Tour, reservation: Reservation, selection: CheckoutSelection) -> LineItem:
        return LineItem(
            name=selection.name or tour.name,
            unit_amount=reservation.unit_price_amount,
            quantity=reservation.party_size,
            currency=reservation.currency,
            description=f"{reservation.booking_date.isoformat()} {reservation.time_slot}",
            image=selection.image,
        )
