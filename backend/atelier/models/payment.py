"""Payment enums, webhook event records and refund step log."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from atelier.db.base import Base
from atelier.models.mixins import JSONB_TYPE, TimestampMixin, utcnow


class PaymentStatus(str, enum.Enum):
    """Settlement state of an order or reservation."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentProvider(str, enum.Enum):
    """Payment processors the studio accepts."""

    STRIPE = "stripe"
    SQUARE = "square"


class PaymentMethod(str, enum.Enum):
    """How the customer ultimately paid."""

    STRIPE = "stripe"
    SQUARE = "square"
    GIFT_CARD = "gift_card"
    ON_SITE = "on_site"
    FREE = "free"


class RefundTarget(str, enum.Enum):
    ORDER = "order"
    RESERVATION = "reservation"


class RefundStepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class WebhookEvent(Base):
    """Raw provider webhook events for auditing and idempotency."""

    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    provider: Mapped[PaymentProvider] = mapped_column(
        Enum(PaymentProvider), nullable=False
    )
    provider_event_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(120), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    target_kind: Mapped[RefundTarget | None] = mapped_column(Enum(RefundTarget))
    target_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    raw: Mapped[dict[str, Any]] = mapped_column(JSONB_TYPE, nullable=False)


class RefundStep(TimestampMixin, Base):
    """One recorded step of a refund run against an order or reservation."""

    __tablename__ = "refund_steps"
    __table_args__ = (Index("ix_refund_steps_target", "target_kind", "target_id"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    target_kind: Mapped[RefundTarget] = mapped_column(
        Enum(RefundTarget), nullable=False
    )
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    step: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[RefundStepStatus] = mapped_column(
        Enum(RefundStepStatus), nullable=False
    )
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    gift_card_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    detail: Mapped[str | None] = mapped_column(Text())
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class PaymentTrackingMixin:
    """Settlement, provider reference and refund columns shared by orders
    and reservations."""

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False
    )
    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod))
    payment_provider: Mapped[PaymentProvider | None] = mapped_column(
        Enum(PaymentProvider)
    )
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(
        String(255), index=True
    )
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(
        String(255), index=True
    )
    square_checkout_id: Mapped[str | None] = mapped_column(String(255), index=True)
    square_order_id: Mapped[str | None] = mapped_column(String(255), index=True)
    square_payment_id: Mapped[str | None] = mapped_column(String(255), index=True)
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    gift_card_code: Mapped[str | None] = mapped_column(String(16))
    gift_card_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )

    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    refund_reason: Mapped[str | None] = mapped_column(Text())
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_details: Mapped[dict[str, Any] | None] = mapped_column(JSONB_TYPE)
