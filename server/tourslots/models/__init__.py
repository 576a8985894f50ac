"""Models module exporting all database models."""

from .idempotency import IdempotencyRecord
from .reservation import ALLOWED_TRANSITIONS, HOLDING_STATUSES, Reservation, ReservationStatus
from .tour import WEEKDAYS, Tour, TourTimeSlot

__all__ = [
    # Slot catalog
    "Tour",
    "TourTimeSlot",
    "WEEKDAYS",

    # Reservation ledger
    "Reservation",
    "ReservationStatus",
    "ALLOWED_TRANSITIONS",
    "HOLDING_STATUSES",

    # Idempotency
    "IdempotencyRecord",
]
