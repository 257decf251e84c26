"""Gift card and append-only gift card ledger models."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.db.base import Base
from atelier.models.mixins import TimestampMixin, utcnow


class GiftCardStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class GiftCardTransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"


class GiftCard(TimestampMixin, Base):
    """Stored-value card identified by a short code."""

    __tablename__ = "gift_cards"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_gift_cards_balance_positive"),
        CheckConstraint("balance <= amount", name="ck_gift_cards_balance_cap"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[GiftCardStatus] = mapped_column(
        Enum(GiftCardStatus), default=GiftCardStatus.ACTIVE, nullable=False
    )
    expiry_date: Mapped[date | None] = mapped_column(Date)
    category: Mapped[str | None] = mapped_column(String(60))
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    purchaser_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    purchaser_name: Mapped[str | None] = mapped_column(String(255))
    purchaser_email: Mapped[str | None] = mapped_column(String(320))
    recipient_name: Mapped[str | None] = mapped_column(String(255))
    recipient_email: Mapped[str | None] = mapped_column(String(320))
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    transactions: Mapped[list["GiftCardTransaction"]] = relationship(
        "GiftCardTransaction",
        back_populates="gift_card",
        order_by="GiftCardTransaction.created_at",
    )


class GiftCardTransaction(Base):
    """Immutable record of a balance change on a gift card."""

    __tablename__ = "gift_card_transactions"
    __table_args__ = (
        Index(
            "ux_gift_card_usage_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("transaction_type = 'USAGE' AND order_id IS NOT NULL"),
            postgresql_where=text(
                "transaction_type = 'USAGE' AND order_id IS NOT NULL"
            ),
        ),
        Index(
            "ux_gift_card_usage_per_reservation",
            "reservation_id",
            unique=True,
            sqlite_where=text(
                "transaction_type = 'USAGE' AND reservation_id IS NOT NULL"
            ),
            postgresql_where=text(
                "transaction_type = 'USAGE' AND reservation_id IS NOT NULL"
            ),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    gift_card_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("gift_cards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    transaction_type: Mapped[GiftCardTransactionType] = mapped_column(
        Enum(GiftCardTransactionType), nullable=False
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL")
    )
    reservation_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL")
    )
    notes: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    gift_card: Mapped[GiftCard] = relationship(
        "GiftCard", back_populates="transactions"
    )
