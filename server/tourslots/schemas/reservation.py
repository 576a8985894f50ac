"""Reservation ledger Pydantic schemas."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .common import Money


class Reservation(BaseModel):
    """Reservation response schema."""

    id: str = Field(..., description="Unique reservation ID")
    customer_id: str = Field(..., description="Customer reference")
    tour_id: str
    slot_id: str = Field(..., description="Stable slot identifier")
    slot_index: int = Field(..., description="Display position of the slot")
    time_slot: str = Field(..., description="Slot label (HH:MM-HH:MM)")
    booking_date: date
    quantity: int = Field(..., ge=1, description="Party size")
    total_price: Money
    status: str
    expires_at: datetime | None = Field(None, description="Hold expiry while pending")
    payment_session_id: str | None = None
    payment_intent_id: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime


class ReservationList(BaseModel):
    """List of reservations."""

    items: list[Reservation]


class CancelReservationRequest(BaseModel):
    """Request schema for cancelling a reservation."""

    reason: str = Field("customer_request", min_length=1, max_length=64, description="Cancellation reason")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    event_type: str
    confirmed: list[str] = Field(default_factory=list)
    already_confirmed: list[str] = Field(default_factory=list)
    released: list[str] = Field(default_factory=list)
    unconfirmable: list[str] = Field(default_factory=list)
