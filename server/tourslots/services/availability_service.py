"""Availability service computing per-slot occupancy snapshots."""

import logging
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import InvalidInputError
from ..schemas.availability import AvailabilityResponse, SlotAvailability, SlotState
from .reservation_service import ReservationService
from .tour_service import TourService, booking_date_violation

logger = logging.getLogger(__name__)

BINARY_POLICY = "binary"
REMAINING_POLICY = "remaining"


def parse_booking_date(value: str | date, field: str = "date") -> date:
    """
    Parse a ``YYYY-MM-DD`` booking date.

    Raises:
        InvalidInputError: If the value is not a calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidInputError(
            detail=f"Invalid date '{value}', expected YYYY-MM-DD",
            field=field
        ) from None


def slot_state(booked: int, remaining: int, policy: str) -> SlotState:
    """
    Displayable state of a slot.

    The binary policy shows a slot as full as soon as anyone holds it, which
    suits private tours sold one party per slot. The remaining policy only
    reports full when no capacity is left.
    """
    if policy == BINARY_POLICY:
        return SlotState.OPEN if booked == 0 else SlotState.FULL
    return SlotState.FULL if remaining == 0 else SlotState.OPEN


class AvailabilityService:
    """Service for reading slot availability."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tours = TourService(db)
        self.reservations = ReservationService(db)

    async def compute_availability(
        self,
        tour_id: str | UUID,
        booking_date: str | date,
        now: datetime | None = None,
        policy: str | None = None,
    ) -> AvailabilityResponse:
        """
        Compute the occupancy snapshot of every active slot of a tour on a date.

        Reads the ledger fresh on every call; pending holds past their expiry
        are not counted even when the sweep has not released them yet.

        Raises:
            InvalidInputError: If the date is malformed
            NotFoundError: If the tour does not exist
        """
        parsed_date = parse_booking_date(booking_date)
        now = now or utcnow()
        policy = policy or settings.availability_policy

        tour = await self.tours.get_tour_by_id_or_raise(tour_id)
        booked_by_slot = await self.reservations.booked_by_slot(tour.id, parsed_date, now)

        slots = []
        for slot in tour.slots:
            if not slot.is_active:
                continue
            booked = booked_by_slot.get(slot.id, 0)
            remaining = max(slot.max_capacity - booked, 0)
            slots.append(
                SlotAvailability(
                    slot_index=slot.position,
                    slot_id=str(slot.id),
                    label=slot.label,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    max_capacity=slot.max_capacity,
                    booked=booked,
                    remaining=remaining,
                    status=slot_state(booked, remaining, policy),
                )
            )

        if not tour.is_active:
            reason = "Tour is not currently offered"
        else:
            reason = booking_date_violation(tour, parsed_date, now.date())

        logger.debug(
            "Computed availability",
            extra={
                "tour_id": str(tour.id),
                "date": parsed_date.isoformat(),
                "policy": policy,
                "active_slots": len(slots)
            }
        )

        return AvailabilityResponse(
            tour_id=str(tour.id),
            date=parsed_date,
            policy=policy,
            bookable=reason is None,
            reason=reason,
            slots=slots,
            availability={str(s.slot_index): s.booked for s in slots},
        )
