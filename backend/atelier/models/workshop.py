"""Workshop, scheduled session and reservation models."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.db.base import Base
from atelier.models.mixins import TimestampMixin
from atelier.models.payment import PaymentTrackingMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from atelier.models.user import User


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class ReservationStatus(str, enum.Enum):
    """Lifecycle states for workshop reservations."""

    WAITLIST = "waitlist"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


SEAT_HOLDING_STATUSES = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.CONFIRMED}
)
TERMINAL_RESERVATION_STATUSES = frozenset(
    {ReservationStatus.CANCELLED, ReservationStatus.REFUNDED}
)


class Workshop(TimestampMixin, Base):
    """A class offered by the studio."""

    __tablename__ = "workshops"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text())
    level: Mapped[str | None] = mapped_column(String(60))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=120, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, default=8, nullable=False)
    image: Mapped[str | None] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    sessions: Mapped[list["WorkshopSession"]] = relationship(
        "WorkshopSession",
        back_populates="workshop",
        cascade="all, delete-orphan",
        order_by="WorkshopSession.session_date",
    )


class WorkshopSession(TimestampMixin, Base):
    """One scheduled occurrence of a workshop with a fixed seat capacity."""

    __tablename__ = "workshop_sessions"
    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_workshop_sessions_capacity"),
        CheckConstraint(
            "booked_count >= 0", name="ck_workshop_sessions_booked_count"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workshop_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus), default=SessionStatus.SCHEDULED, nullable=False
    )

    workshop: Mapped[Workshop] = relationship("Workshop", back_populates="sessions")

    @property
    def available_spots(self) -> int:
        return max(self.capacity - self.booked_count, 0)


class Reservation(TimestampMixin, PaymentTrackingMixin, Base):
    """A booking of one or more seats on a workshop session."""

    __tablename__ = "reservations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workshop_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workshop_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    guest_name: Mapped[str | None] = mapped_column(String(255))
    guest_email: Mapped[str | None] = mapped_column(String(320), index=True)
    guest_phone: Mapped[str | None] = mapped_column(String(32))
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False
    )
    waitlist_position: Mapped[int | None] = mapped_column(Integer)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text())
    cancellation_reason: Mapped[str | None] = mapped_column(Text())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    workshop: Mapped[Workshop] = relationship("Workshop", lazy="selectin")
    workshop_session: Mapped[WorkshopSession] = relationship(
        "WorkshopSession", lazy="selectin"
    )
    user: Mapped["User | None"] = relationship("User", lazy="selectin")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RESERVATION_STATUSES

    @property
    def holds_seats(self) -> bool:
        return self.status in SEAT_HOLDING_STATUSES

    @property
    def contact_email(self) -> str | None:
        if self.user is not None:
            return self.user.email
        return self.guest_email

    @property
    def contact_name(self) -> str | None:
        if self.user is not None:
            return self.user.full_name
        return self.guest_name
