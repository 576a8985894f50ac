"""Tour and time slot model definitions (the slot catalog)."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class Tour(Base):
    """Tour package that owns an ordered catalog of bookable time slots."""

    __tablename__ = "tours"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour information
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Price information (stored as minor units)
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discounted_price_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="JPY")

    # Calendar rule
    operating_days: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    advance_booking_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

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
        CheckConstraint("price_amount >= 0", name="ck_tour_price_amount_non_negative"),
        CheckConstraint(
            "discounted_price_amount IS NULL OR discounted_price_amount >= 0",
            name="ck_tour_discounted_price_non_negative"
        ),
        CheckConstraint("advance_booking_days >= 0", name="ck_tour_advance_booking_days_non_negative"),
        CheckConstraint("length(price_currency) = 3", name="ck_tour_price_currency_length"),
    )

    # Relationships
    slots: Mapped[list["TourTimeSlot"]] = relationship(
        "TourTimeSlot",
        back_populates="tour",
        cascade="all, delete-orphan",
        order_by="TourTimeSlot.position",
        lazy="selectin",
    )

    @property
    def effective_price_amount(self) -> int:
        """Price a customer pays per person, honouring any discount."""
        if self.discounted_price_amount is not None:
            return self.discounted_price_amount
        return self.price_amount

    def find_slot(self, label: str) -> "TourTimeSlot | None":
        """Resolve a ``HH:MM-HH:MM`` label against the catalog."""
        for slot in self.slots:
            if slot.label == label:
                return slot
        return None

    def operates_on(self, weekday: str) -> bool:
        return not self.operating_days or weekday in self.operating_days

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, name='{self.name}', slug='{self.slug}')>"


class TourTimeSlot(Base):
    """
    One bookable time window of a tour.

    Reservations reference slots by ``id``, which never changes; ``position``
    is only the display order inside the tour and may be rearranged.
    """

    __tablename__ = "tour_time_slots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="ck_slot_max_capacity_positive"),
        CheckConstraint("position >= 0", name="ck_slot_position_non_negative"),
        UniqueConstraint("tour_id", "position", name="uq_slot_tour_position"),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="slots")

    @property
    def label(self) -> str:
        return f"{self.start_time}-{self.end_time}"

    def __repr__(self) -> str:
        return (
            f"<TourTimeSlot(id={self.id}, tour_id={self.tour_id}, position={self.position}, "
            f"label='{self.label}', max_capacity={self.max_capacity}, is_active={self.is_active})>"
        )
