"""Schemas for provider payment endpoints and refund logs."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, model_validator

from atelier.models import RefundStepStatus, RefundTarget


class SquarePaymentCreate(BaseModel):
    """Card nonce from the Web Payments SDK plus the target it pays for."""

    source_id: str
    order_id: uuid.UUID | None = None
    reservation_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _one_target(self) -> "SquarePaymentCreate":
        if (self.order_id is None) == (self.reservation_id is None):
            raise ValueError("Provide exactly one of order_id or reservation_id")
        return self


class SquarePaymentConfirm(BaseModel):
    payment_id: str
    order_id: uuid.UUID | None = None
    reservation_id: uuid.UUID | None = None


class SquarePaymentRead(BaseModel):
    payment_id: str
    status: str
    outcome: str
    amount: Decimal | None = None


class SquareConfigRead(BaseModel):
    configured: bool
    environment: str
    application_id: str | None = None
    location_id: str | None = None
    webhook_signature_enforced: bool


class RefundStepRead(BaseModel):
    id: uuid.UUID
    target_kind: RefundTarget
    target_id: uuid.UUID
    step: str
    status: RefundStepStatus
    amount: Decimal | None = None
    gift_card_id: uuid.UUID | None = None
    detail: str | None = None
    attempts: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
