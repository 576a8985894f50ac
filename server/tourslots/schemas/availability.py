"""Availability snapshot Pydantic schemas."""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


class SlotState(str, Enum):
    """Displayable state of a slot on a date."""
    OPEN = "open"
    FULL = "full"


class SlotAvailability(BaseModel):
    """Occupancy of one active slot on the requested date."""

    slot_index: int = Field(..., ge=0, description="Display position within the tour")
    slot_id: str = Field(..., description="Stable slot identifier")
    label: str = Field(..., description="Time range label (HH:MM-HH:MM)")
    start_time: str
    end_time: str
    max_capacity: int = Field(..., ge=1)
    booked: int = Field(..., ge=0, description="Party units held by pending or confirmed reservations")
    remaining: int = Field(..., ge=0, description="Party units still bookable")
    status: SlotState = Field(..., description="Display state under the configured policy")


class AvailabilityResponse(BaseModel):
    """Availability snapshot for one tour and date."""

    tour_id: str
    date: date
    policy: str = Field(..., description="Display policy used to derive slot status")
    bookable: bool = Field(..., description="Whether the date satisfies the tour's calendar rule")
    reason: str | None = Field(None, description="Why the date is not bookable")
    slots: list[SlotAvailability]
    availability: dict[str, int] = Field(
        ...,
        description="Booked party units keyed by slot index, for clients of the legacy map format"
    )
