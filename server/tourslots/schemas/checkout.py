"""Checkout Pydantic schemas."""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .tour import TIME_PATTERN


class CheckoutSelection(BaseModel):
    """One cart item: a party for one slot of one tour on one date."""

    tour_id: str = Field(..., description="Tour to book")
    date: str = Field(..., description="Booking date (YYYY-MM-DD)")
    time_slot: str = Field(..., description="Slot label (HH:MM-HH:MM)")
    quantity: int = Field(..., ge=1, le=100, description="Party size")
    unit_price: int = Field(..., ge=0, description="Price per person in minor units")
    name: str | None = Field(None, max_length=255, description="Line item name shown at checkout")
    image: str | None = Field(None, max_length=2048, description="Line item image URL")

    @field_validator("time_slot")
    @classmethod
    def normalize_time_slot(cls, v: str) -> str:
        parts = [part.strip() for part in v.split("-")]
        if len(parts) != 2 or not all(re.match(TIME_PATTERN, part) for part in parts):
            raise ValueError("time_slot must look like HH:MM-HH:MM")
        return "-".join(f"{int(h):02d}:{m}" for h, m in (part.split(":") for part in parts))


class CheckoutRequest(BaseModel):
    """Request schema for starting checkout."""

    customer_id: str = Field(..., min_length=1, max_length=128, description="Customer reference")
    selections: list[CheckoutSelection] = Field(..., min_length=1, description="Cart items, processed in order")


class CheckoutResponse(BaseModel):
    """Response schema for a started checkout."""

    session_id: str = Field(..., description="Payment provider checkout session ID")
    checkout_url: str | None = Field(None, description="Hosted payment page URL")
    reservation_ids: list[str] = Field(..., description="Pending reservations held for this session")
    expires_at: datetime = Field(..., description="When the pending holds are released if unpaid")

