"""Reservation ledger model definition."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .tour import TourTimeSlot


class ReservationStatus(str, Enum):
    """Reservation lifecycle status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    def can_transition_to(self, target: "ReservationStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}

# Statuses whose party size counts against slot capacity
HOLDING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class Reservation(Base):
    """One party's claim on one slot of a tour on one date."""

    __tablename__ = "reservations"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    customer_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    slot_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tour_time_slots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Party and price (minor units)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[ReservationStatus] = mapped_column(
        SAEnum(
            ReservationStatus,
            name="reservation_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [status.value for status in statuses],
        ),
        nullable=False,
        default=ReservationStatus.PENDING,
        index=True
    )
    # Set while pending; the hold is released once this passes
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Payment provider references
    payment_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_reservation_party_size_positive"),
        CheckConstraint("unit_price_amount >= 0", name="ck_reservation_unit_price_non_negative"),
        CheckConstraint("total_price_amount >= 0", name="ck_reservation_total_price_non_negative"),
        CheckConstraint("length(customer_ref) > 0", name="ck_reservation_customer_ref_not_empty"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="ck_reservation_status_valid"
        ),
        Index("ix_reservations_slot_bucket", "tour_id", "booking_date", "slot_id", "status"),
    )

    slot: Mapped["TourTimeSlot"] = relationship("TourTimeSlot", lazy="joined")

    @property
    def slot_index(self) -> int:
        """Display position of the reserved slot in its tour."""
        return self.slot.position

    @property
    def time_slot(self) -> str:
        return self.slot.label

    def is_expired(self, now: datetime) -> bool:
        return (
            self.status == ReservationStatus.PENDING
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, tour_id={self.tour_id}, slot_id={self.slot_id}, "
            f"booking_date={self.booking_date}, party_size={self.party_size}, status={self.status})>"
        )
