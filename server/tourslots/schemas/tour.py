"""Tour and slot catalog Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common import Money

TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _normalize_time(value: str) -> str:
    """Zero-pad ``H:MM`` to ``HH:MM`` so slot labels compare exactly."""
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{minutes}"


class TimeSlotDefinition(BaseModel):
    """One slot of a tour's catalog as submitted by an administrator."""

    start_time: str = Field(..., pattern=TIME_PATTERN, description="Start time (HH:MM, 24h)")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="End time (HH:MM, 24h)")
    max_capacity: int = Field(..., ge=1, le=1000, description="Maximum party units per date")
    is_active: bool = Field(True, description="Whether the slot accepts bookings")

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v: str) -> str:
        return _normalize_time(v)

    @model_validator(mode="after")
    def check_window(self) -> "TimeSlotDefinition":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour with its slot catalog."""

    name: str = Field(..., min_length=1, max_length=255, description="Tour name")
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$", description="URL-friendly slug")
    description: str | None = Field(None, max_length=5000, description="Tour description")
    price: Money = Field(..., description="Price per person")
    discounted_price_amount: int | None = Field(None, ge=0, description="Discounted price per person, same currency")
    time_slots: list[TimeSlotDefinition] = Field(..., min_length=1, max_length=48, description="Ordered slot catalog")
    operating_days: list[str] = Field(default_factory=list, description="Weekdays the tour runs; empty means every day")
    advance_booking_days: int = Field(1, ge=0, le=365, description="Minimum days between booking and tour date")

    @field_validator("operating_days")
    @classmethod
    def validate_operating_days(cls, v: list[str]) -> list[str]:
        days = [day.strip().lower() for day in v]
        unknown = sorted(set(days) - set(WEEKDAY_NAMES))
        if unknown:
            raise ValueError(f"Unknown operating days: {unknown}")
        # Keep calendar order and drop duplicates
        return [day for day in WEEKDAY_NAMES if day in days]

    @model_validator(mode="after")
    def check_unique_slots(self) -> "CreateTourRequest":
        labels = [f"{slot.start_time}-{slot.end_time}" for slot in self.time_slots]
        if len(labels) != len(set(labels)):
            raise ValueError("time_slots must not repeat the same time range")
        if self.discounted_price_amount is not None and self.discounted_price_amount > self.price.amount:
            raise ValueError("discounted_price_amount cannot exceed the regular price")
        return self


class TimeSlot(BaseModel):
    """Slot response schema."""

    id: str = Field(..., description="Stable slot identifier")
    index: int = Field(..., ge=0, description="Display position within the tour")
    label: str = Field(..., description="Time range label (HH:MM-HH:MM)")
    start_time: str
    end_time: str
    max_capacity: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class Tour(BaseModel):
    """Tour response schema."""

    id: str = Field(..., description="Unique tour ID")
    name: str = Field(..., description="Tour name")
    slug: str = Field(..., description="URL-friendly slug")
    description: str | None = Field(None, description="Tour description")
    price: Money
    discounted_price_amount: int | None = None
    operating_days: list[str]
    advance_booking_days: int
    is_active: bool
    time_slots: list[TimeSlot]

    model_config = ConfigDict(from_attributes=True)


class UpdateSlotRequest(BaseModel):
    """Request schema for switching a slot on or off."""

    is_active: bool = Field(..., description="Whether the slot accepts new bookings")
