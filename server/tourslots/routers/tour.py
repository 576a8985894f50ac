"""Tour router for slot catalog and availability operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import RequiredAdmin
from ..core.exceptions import ProblemDetailsException
from ..models.tour import Tour as TourModel
from ..models.tour import TourTimeSlot
from ..schemas.availability import AvailabilityResponse
from ..schemas.common import Money, problem_responses
from ..schemas.tour import CreateTourRequest, TimeSlot, Tour, UpdateSlotRequest
from ..services.availability_service import AvailabilityService
from ..services.tour_service import TourService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tours", tags=["tour"])

DB_DEPENDENCY = Depends(get_db)


def _convert_slot_to_schema(slot: TourTimeSlot) -> TimeSlot:
    return TimeSlot(
        id=str(slot.id),
        index=slot.position,
        label=slot.label,
        start_time=slot.start_time,
        end_time=slot.end_time,
        max_capacity=slot.max_capacity,
        is_active=slot.is_active,
    )


def _convert_tour_to_schema(tour: TourModel) -> Tour:
    """Convert tour model to schema."""
    return Tour(
        id=str(tour.id),
        name=tour.name,
        slug=tour.slug,
        description=tour.description,
        price=Money(amount=tour.price_amount, currency=tour.price_currency),
        discounted_price_amount=tour.discounted_price_amount,
        operating_days=list(tour.operating_days or []),
        advance_booking_days=tour.advance_booking_days,
        is_active=tour.is_active,
        time_slots=[_convert_slot_to_schema(slot) for slot in tour.slots],
    )


@router.post("", response_model=Tour, status_code=201)
async def create_tour(
    request: CreateTourRequest,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = RequiredAdmin,
) -> JSONResponse:
    """
    Create a new tour with its slot catalog.

    Requires an administrator bearer token.
    """
    tour_service = TourService(db)

    try:
        tour = await tour_service.create_tour(request)
        return JSONResponse(
            status_code=201,
            content=_convert_tour_to_schema(tour).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in tour creation",
            extra={
                "slug": request.slug,
                "admin": admin["user_id"],
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/{tour_id}", response_model=Tour)
async def get_tour(
    tour_id: str,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Get a tour and its slot catalog."""
    tour = await TourService(db).get_tour_by_id_or_raise(tour_id)
    return JSONResponse(
        status_code=200,
        content=_convert_tour_to_schema(tour).model_dump(mode="json")
    )


@router.patch("/{tour_id}/slots/{slot_id}", response_model=TimeSlot)
async def update_slot(
    tour_id: str,
    slot_id: str,
    request: UpdateSlotRequest,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = RequiredAdmin,
) -> JSONResponse:
    """
    Switch a slot on or off.

    Existing reservations keep their slot; only new checkouts are affected.
    """
    slot = await TourService(db).set_slot_active(tour_id, slot_id, request.is_active)
    return JSONResponse(
        status_code=200,
        content=_convert_slot_to_schema(slot).model_dump(mode="json")
    )


@router.get(
    "/{tour_id}/availability",
    response_model=AvailabilityResponse,
    responses=problem_responses(400, 404),
)
async def get_availability(
    tour_id: str,
    date: str = Query(..., description="Booking date (YYYY-MM-DD)"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """
    Get the availability snapshot of a tour's active slots on a date.

    Always computed from the current ledger; responses must not be cached.
    """
    try:
        snapshot = await AvailabilityService(db).compute_availability(tour_id, date)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error computing availability",
            extra={"tour_id": tour_id, "date": date, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(
            status_code=503,
            detail="Availability information is temporarily unavailable, please try again"
        ) from e

    return JSONResponse(
        status_code=200,
        content=snapshot.model_dump(mode="json"),
        headers={"Cache-Control": "no-store"}
    )
