"""Pydantic schemas for gift cards and their ledger."""
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from atelier.models import GiftCardStatus, GiftCardTransactionType


class GiftCardApplyRequest(BaseModel):
    code: str
    order_total: Decimal


class GiftCardApplyRead(BaseModel):
    code: str
    balance: Decimal
    amount_applied: Decimal
    remaining_to_pay: Decimal
    fully_covered: bool


class GiftCardCheckRead(BaseModel):
    """Public view of a card; the balance is shown only while usable."""

    code: str
    status: GiftCardStatus
    valid: bool
    balance: Decimal | None = None
    expiry_date: date | None = None


class GiftCardPurchaseCreate(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"))
    category: str | None = None
    purchaser_name: str | None = None
    purchaser_email: str | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None


class GiftCardPurchaseRead(BaseModel):
    """The code is withheld until the payment completes."""

    gift_card_id: uuid.UUID
    amount: Decimal
    checkout_url: str | None = None
    checkout_session_id: str


class GiftCardTransactionRead(BaseModel):
    id: uuid.UUID
    amount: Decimal
    transaction_type: GiftCardTransactionType
    order_id: uuid.UUID | None = None
    reservation_id: uuid.UUID | None = None
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GiftCardRead(BaseModel):
    id: uuid.UUID
    code: str
    amount: Decimal
    balance: Decimal
    status: GiftCardStatus
    expiry_date: date | None = None
    category: str | None = None
    used: bool
    purchaser_name: str | None = None
    purchaser_email: str | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None
    delivered_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GiftCardDetail(GiftCardRead):
    transactions: list[GiftCardTransactionRead] = Field(default_factory=list)
    ledger_balance: Decimal


class GiftCardIssue(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"))
    category: str | None = None
    code: str | None = None
    expiry_date: date | None = None
    purchaser_name: str | None = None
    purchaser_email: str | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None


class GiftCardUpdate(BaseModel):
    balance: Decimal | None = Field(default=None, ge=Decimal("0"))
    expiry_date: date | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None
    category: str | None = None
