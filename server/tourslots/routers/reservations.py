"""Reservation ledger router: lookups and lifecycle transitions."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import OptionalUser, RequiredAdmin, require_admin
from ..core.exceptions import AuthenticationError
from ..models.reservation import Reservation as ReservationModel
from ..models.reservation import ReservationStatus
from ..schemas.common import Money
from ..schemas.reservation import CancelReservationRequest, Reservation, ReservationList
from ..services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reservations", tags=["reservations"])

DB_DEPENDENCY = Depends(get_db)


def _convert_reservation_to_schema(reservation: ReservationModel) -> Reservation:
    """Convert reservation model to schema."""
    return Reservation(
        id=str(reservation.id),
        customer_id=reservation.customer_ref,
        tour_id=str(reservation.tour_id),
        slot_id=str(reservation.slot_id),
        slot_index=reservation.slot_index,
        time_slot=reservation.time_slot,
        booking_date=reservation.booking_date,
        quantity=reservation.party_size,
        total_price=Money(amount=reservation.total_price_amount, currency=reservation.currency),
        status=ReservationStatus(reservation.status).value,
        expires_at=reservation.expires_at,
        payment_session_id=reservation.payment_session_id,
        payment_intent_id=reservation.payment_intent_id,
        cancellation_reason=reservation.cancellation_reason,
        created_at=reservation.created_at,
    )


def _list_response(reservations: list[ReservationModel]) -> JSONResponse:
    body = ReservationList(items=[_convert_reservation_to_schema(r) for r in reservations])
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.get("", response_model=ReservationList)
async def list_reservations(
    customer_id: Optional[str] = Query(None, min_length=1, max_length=128),
    status: Optional[ReservationStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = DB_DEPENDENCY,
    user: Optional[dict] = OptionalUser,
) -> JSONResponse:
    """
    List reservations, newest first.

    With ``customer_id`` this is the customer's booking history. Without it,
    every reservation is listed for the operator orders view, which needs an
    admin token.
    """
    service = ReservationService(db)
    if customer_id is not None:
        return _list_response(await service.list_by_customer(customer_id))

    if user is None:
        raise AuthenticationError(detail="Authorization header missing")
    await require_admin(user)
    return _list_response(await service.list_all(status=status, limit=limit))


@router.get("/session/{session_id}", response_model=ReservationList)
async def list_session_reservations(
    session_id: str,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """List the reservations settled by one payment session (booking success page)."""
    reservations = await ReservationService(db).list_by_session(session_id)
    return _list_response(reservations)


@router.get("/{reservation_id}", response_model=Reservation)
async def get_reservation(
    reservation_id: str,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    reservation = await ReservationService(db).get_reservation_by_id_or_raise(reservation_id)
    return JSONResponse(
        status_code=200,
        content=_convert_reservation_to_schema(reservation).model_dump(mode="json")
    )


@router.post("/{reservation_id}/cancel", response_model=Reservation)
async def cancel_reservation(
    reservation_id: str,
    request: CancelReservationRequest | None = None,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = RequiredAdmin,
) -> JSONResponse:
    """
    Cancel a pending or confirmed reservation, returning its capacity.

    Cancelling an already-cancelled reservation is a no-op.
    """
    reason = request.reason if request else "customer_request"
    reservation = await ReservationService(db).transition(
        reservation_id, ReservationStatus.CANCELLED, reason=reason
    )
    logger.info(
        "Reservation cancelled by operator",
        extra={"reservation_id": str(reservation.id), "admin": admin["user_id"], "reason": reason}
    )
    return JSONResponse(
        status_code=200,
        content=_convert_reservation_to_schema(reservation).model_dump(mode="json")
    )


@router.post("/{reservation_id}/complete", response_model=Reservation)
async def complete_reservation(
    reservation_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = RequiredAdmin,
) -> JSONResponse:
    """Mark a confirmed reservation as completed after the tour has run."""
    reservation = await ReservationService(db).transition(reservation_id, ReservationStatus.COMPLETED)
    logger.info(
        "Reservation completed by operator",
        extra={"reservation_id": str(reservation.id), "admin": admin["user_id"]}
    )
    return JSONResponse(
        status_code=200,
        content=_convert_reservation_to_schema(reservation).model_dump(mode="json")
    )
