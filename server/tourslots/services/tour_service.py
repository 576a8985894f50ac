"""Tour service for slot catalog operations."""

import logging
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError
from ..models.tour import WEEKDAYS, Tour, TourTimeSlot
from ..schemas.tour import CreateTourRequest

logger = logging.getLogger(__name__)


def parse_uuid(value: str | UUID, resource_type: str) -> UUID:
    """Parse an identifier, treating malformed IDs as missing resources."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        raise NotFoundError(resource_type=resource_type, resource_id=str(value)) from None


def booking_date_violation(tour: Tour, booking_date: date, today: date) -> Optional[str]:
    """
    Check a date against the tour's calendar rule.

    Returns:
        A human-readable reason when the date cannot be booked, None otherwise
    """
    weekday = WEEKDAYS[booking_date.weekday()]
    if not tour.operates_on(weekday):
        return f"Tour does not operate on {weekday}s"

    earliest = today + timedelta(days=tour.advance_booking_days)
    if booking_date < earliest:
        return (
            f"Bookings must be made at least {tour.advance_booking_days} day(s) in advance "
            f"(earliest date {earliest.isoformat()})"
        )
    return None


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_tour(self, request: CreateTourRequest) -> Tour:
        """
        Create a new tour with its slot catalog.

        Slots receive stable identifiers here; their list order becomes the
        display position.

        Raises:
            ConflictError: If tour with same slug already exists
        """
        existing_tour = await self.get_tour_by_slug(request.slug)
        if existing_tour:
            logger.warning(
                "Tour creation failed - slug already exists",
                extra={
                    "slug": request.slug,
                    "existing_tour_id": str(existing_tour.id)
                }
            )
            raise ConflictError(
                detail=f"Tour with slug '{request.slug}' already exists",
                conflicting_resource={
                    "id": str(existing_tour.id),
                    "slug": existing_tour.slug,
                    "name": existing_tour.name
                }
            )

        tour = Tour(
            name=request.name,
            slug=request.slug,
            description=request.description,
            price_amount=request.price.amount,
            discounted_price_amount=request.discounted_price_amount,
            price_currency=request.price.currency,
            operating_days=list(request.operating_days),
            advance_booking_days=request.advance_booking_days,
            slots=[
                TourTimeSlot(
                    position=position,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    max_capacity=slot.max_capacity,
                    is_active=slot.is_active,
                )
                for position, slot in enumerate(request.time_slots)
            ],
        )

        try:
            self.db.add(tour)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={"slug": request.slug, "error": str(e)}
            )
            raise ConflictError(detail=f"Tour with slug '{request.slug}' could not be created") from e

        logger.info(
            "Tour created successfully",
            extra={
                "tour_id": str(tour.id),
                "slug": tour.slug,
                "slot_count": len(tour.slots)
            }
        )
        return tour

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        """Get tour (with its slots) by ID."""
        stmt = select(Tour).where(Tour.id == tour_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_slug(self, slug: str) -> Optional[Tour]:
        """Get tour by slug."""
        stmt = select(Tour).where(Tour.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: str | UUID, active_only: bool = False) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Args:
            tour_id: Tour ID, as UUID or string
            active_only: Treat deactivated tours as missing

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(parse_uuid(tour_id, "tour"))
        if not tour or (active_only and not tour.is_active):
            logger.warning(
                "Tour not found",
                extra={"tour_id": str(tour_id)}
            )
            raise NotFoundError(
                resource_type="tour",
                resource_id=str(tour_id)
            )
        return tour

    async def set_slot_active(self, tour_id: str | UUID, slot_id: str | UUID, is_active: bool) -> TourTimeSlot:
        """
        Switch a slot on or off without touching existing reservations.

        Raises:
            NotFoundError: If the tour or slot does not exist
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)
        slot_uuid = parse_uuid(slot_id, "time_slot")
        slot = next((s for s in tour.slots if s.id == slot_uuid), None)
        if slot is None:
            raise NotFoundError(resource_type="time_slot", resource_id=str(slot_id))

        slot.is_active = is_active
        await self.db.commit()

        logger.info(
            "Time slot availability changed",
            extra={
                "tour_id": str(tour.id),
                "slot_id": str(slot.id),
                "label": slot.label,
                "is_active": is_active
            }
        )
        return slot
