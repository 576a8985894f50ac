"""Reservation ledger service: capacity queries, lifecycle transitions and expiry."""

import logging
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import BusyError, InvalidStateTransitionError, NotFoundError
from ..core.observability import metrics_collector
from ..models.reservation import Reservation, ReservationStatus
from ..models.tour import TourTimeSlot
from .tour_service import parse_uuid

logger = logging.getLogger(__name__)

# Conditional updates lost to concurrent writers before giving up
TRANSITION_ATTEMPTS = 3


def holds_capacity(now: datetime):
    """
    SQL condition selecting reservations that occupy capacity at ``now``.

    Confirmed rows always count; pending rows count only until their hold
    expires, so an abandoned checkout stops blocking the slot even before the
    sweep has cancelled it.
    """
    return or_(
        Reservation.status == ReservationStatus.CONFIRMED,
        and_(
            Reservation.status == ReservationStatus.PENDING,
            or_(Reservation.expires_at.is_(None), Reservation.expires_at > now),
        ),
    )


class ReservationService:
    """Service for reads and writes against the reservation ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def hold_window(self) -> timedelta:
        return timedelta(minutes=settings.hold_window_minutes)

    async def committed_quantity(
        self,
        tour_id: UUID,
        booking_date: date,
        slot_id: UUID,
        now: datetime | None = None,
    ) -> int:
        """Sum of party sizes currently holding capacity in one slot on one date."""
        now = now or utcnow()
        stmt = select(func.coalesce(func.sum(Reservation.party_size), 0)).where(
            Reservation.tour_id == tour_id,
            Reservation.booking_date == booking_date,
            Reservation.slot_id == slot_id,
            holds_capacity(now),
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def booked_by_slot(
        self,
        tour_id: UUID,
        booking_date: date,
        now: datetime | None = None,
    ) -> dict[UUID, int]:
        """Party units holding capacity per slot for a tour on a date."""
        now = now or utcnow()
        stmt = (
            select(Reservation.slot_id, func.sum(Reservation.party_size))
            .where(
                Reservation.tour_id == tour_id,
                Reservation.booking_date == booking_date,
                holds_capacity(now),
            )
            .group_by(Reservation.slot_id)
        )
        result = await self.db.execute(stmt)
        return {slot_id: int(total) for slot_id, total in result.all()}

    def add_pending(
        self,
        customer_ref: str,
        slot: TourTimeSlot,
        booking_date: date,
        party_size: int,
        unit_price_amount: int,
        currency: str,
        now: datetime,
    ) -> Reservation:
        """Stage a pending reservation whose hold expires after the hold window."""
        reservation = Reservation(
            customer_ref=customer_ref,
            tour_id=slot.tour_id,
            slot_id=slot.id,
            slot=slot,
            booking_date=booking_date,
            party_size=party_size,
            unit_price_amount=unit_price_amount,
            total_price_amount=unit_price_amount * party_size,
            currency=currency,
            status=ReservationStatus.PENDING,
            expires_at=now + self.hold_window,
            created_at=now,
            updated_at=now,
        )
        self.db.add(reservation)
        return reservation

    async def get_reservation_by_id(self, reservation_id: UUID) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_reservation_by_id_or_raise(self, reservation_id: str | UUID) -> Reservation:
        reservation = await self.get_reservation_by_id(parse_uuid(reservation_id, "reservation"))
        if not reservation:
            logger.warning(
                "Reservation not found",
                extra={"reservation_id": str(reservation_id)}
            )
            raise NotFoundError(resource_type="reservation", resource_id=str(reservation_id))
        return reservation

    async def get_reservations(self, reservation_ids: list[UUID]) -> list[Reservation]:
        """Fresh copies of the given reservations, bypassing the identity map."""
        if not reservation_ids:
            return []
        stmt = (
            select(Reservation)
            .where(Reservation.id.in_(reservation_ids))
            .order_by(Reservation.created_at, Reservation.id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique())

    async def list_by_session(self, session_id: str) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.payment_session_id == session_id)
            .order_by(Reservation.created_at, Reservation.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique())

    async def list_by_customer(self, customer_ref: str) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.customer_ref == customer_ref)
            .order_by(Reservation.created_at.desc(), Reservation.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique())

    async def list_all(
        self,
        status: ReservationStatus | None = None,
        limit: int = 100,
    ) -> list[Reservation]:
        """Every reservation, newest first, for the operator orders view."""
        stmt = select(Reservation).order_by(Reservation.created_at.desc(), Reservation.id).limit(limit)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        result = await self.db.execute(stmt)
        return list(result.scalars().unique())

    async def attach_payment_session(self, reservation_ids: list[UUID], session_id: str) -> None:
        """Tag a checkout batch with the payment session that will settle it."""
        await self.db.execute(
            update(Reservation)
            .where(Reservation.id.in_(reservation_ids))
            .values(payment_session_id=session_id, updated_at=utcnow())
        )
        await self.db.commit()

    async def release(self, reservation_ids: list[UUID], reason: str) -> list[UUID]:
        """
        Cancel the still-pending reservations among ``reservation_ids``.

        The status guard makes this safe to race against confirmation: a row
        the webhook confirmed first is left untouched.

        Returns:
            IDs that were actually moved to cancelled
        """
        if not reservation_ids:
            return []

        stmt = (
            update(Reservation)
            .where(
                Reservation.id.in_(reservation_ids),
                Reservation.status == ReservationStatus.PENDING,
            )
            .values(
                status=ReservationStatus.CANCELLED,
                cancellation_reason=reason,
                expires_at=None,
                updated_at=utcnow(),
            )
            .returning(Reservation.id)
        )
        result = await self.db.execute(stmt)
        released = list(result.scalars())
        await self.db.commit()

        metrics_collector.record_reservations_cancelled(reason, len(released))
        logger.info(
            "Released pending reservations",
            extra={
                "reason": reason,
                "requested": len(reservation_ids),
                "released": len(released)
            }
        )
        return released

    async def transition(
        self,
        reservation_id: str | UUID,
        target: ReservationStatus,
        reason: str | None = None,
    ) -> Reservation:
        """
        Move one reservation along the lifecycle state machine.

        Re-applying the current status is a no-op.

        Raises:
            NotFoundError: If the reservation does not exist
            InvalidStateTransitionError: If the state machine forbids the move
            BusyError: If concurrent writers kept changing the row
        """
        for _ in range(TRANSITION_ATTEMPTS):
            reservation = await self.get_reservation_by_id_or_raise(reservation_id)
            current = ReservationStatus(reservation.status)

            if current == target:
                return reservation

            if not current.can_transition_to(target):
                logger.warning(
                    "Rejected reservation state transition",
                    extra={
                        "reservation_id": str(reservation.id),
                        "current_status": current.value,
                        "target_status": target.value
                    }
                )
                raise InvalidStateTransitionError(str(reservation.id), current.value, target.value)

            values: dict = {"status": target, "updated_at": utcnow()}
            if target == ReservationStatus.CANCELLED:
                values["cancellation_reason"] = reason or "cancelled"
                values["expires_at"] = None
            elif target == ReservationStatus.CONFIRMED:
                values["expires_at"] = None

            # Conditional on the status we validated against
            result = await self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation.id, Reservation.status == current)
                .values(**values)
            )
            await self.db.commit()

            if result.rowcount == 0:
                # Lost a race with the webhook or the sweep; re-evaluate against the new state
                reservation_id = reservation.id
                continue

            if target == ReservationStatus.CANCELLED:
                metrics_collector.record_reservations_cancelled(values["cancellation_reason"])

            logger.info(
                "Reservation state changed",
                extra={
                    "reservation_id": str(reservation.id),
                    "from_status": current.value,
                    "to_status": target.value
                }
            )
            refreshed = await self.get_reservations([reservation.id])
            return refreshed[0]

        logger.warning(
            "Reservation kept changing during transition",
            extra={"reservation_id": str(reservation_id), "target_status": target.value}
        )
        raise BusyError(detail="Reservation is being updated concurrently, please retry")

    async def expire_pending_reservations(
        self,
        now: datetime | None = None,
        batch_size: int | None = None,
    ) -> int:
        """
        Cancel pending reservations whose hold window has passed.

        Args:
            now: Reference time (defaults to the current UTC time)
            batch_size: Maximum reservations to release in one call

        Returns:
            Number of reservations expired
        """
        now = now or utcnow()
        batch_size = batch_size or settings.expiry_sweep_batch_size

        stmt = (
            select(Reservation.id)
            .where(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.expires_at <= now,
            )
            .order_by(Reservation.expires_at)
            .limit(batch_size)
        )
        result = await self.db.execute(stmt)
        expired_ids = list(result.scalars())

        if not expired_ids:
            return 0

        # Same guard as release(): rows confirmed since the select stay confirmed
        update_result = await self.db.execute(
            update(Reservation)
            .where(
                Reservation.id.in_(expired_ids),
                Reservation.status == ReservationStatus.PENDING,
                Reservation.expires_at <= now,
            )
            .values(
                status=ReservationStatus.CANCELLED,
                cancellation_reason="hold_expired",
                expires_at=None,
                updated_at=now,
            )
        )
        await self.db.commit()

        expired_count = update_result.rowcount or 0
        metrics_collector.record_reservations_expired(expired_count)
        metrics_collector.record_reservations_cancelled("hold_expired", expired_count)

        logger.info(
            "Pending reservation expiry batch completed",
            extra={
                "expired_count": expired_count,
                "batch_size": batch_size,
                "reference_time": now.isoformat()
            }
        )
        return expired_count

    async def count_live_pending(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        stmt = select(func.count(Reservation.id)).where(
            Reservation.status == ReservationStatus.PENDING,
            Reservation.expires_at > now,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
