"""Pydantic schemas for workshops, sessions and reservations."""
from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from atelier.models import (
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    ReservationStatus,
    SessionStatus,
)
from atelier.schemas.common import ProviderChoice


class WorkshopSessionRead(BaseModel):
    id: uuid.UUID
    workshop_id: uuid.UUID
    session_date: date
    start_time: time
    capacity: int
    booked_count: int
    available_spots: int
    status: SessionStatus

    model_config = ConfigDict(from_attributes=True)


class WorkshopBase(BaseModel):
    title: str
    description: str | None = None
    level: str | None = None
    price: Decimal = Field(ge=Decimal("0"))
    duration_minutes: int = Field(default=120, ge=1)
    max_participants: int = Field(default=8, ge=1)
    image: str | None = None
    is_active: bool = True


class WorkshopCreate(WorkshopBase):
    pass


class WorkshopUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    level: str | None = None
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    duration_minutes: int | None = Field(default=None, ge=1)
    max_participants: int | None = Field(default=None, ge=1)
    image: str | None = None
    is_active: bool | None = None


class WorkshopRead(WorkshopBase):
    id: uuid.UUID
    sessions: list[WorkshopSessionRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SessionCreate(BaseModel):
    session_date: date
    start_time: time
    capacity: int | None = Field(default=None, ge=1)


class CalendarEntry(WorkshopSessionRead):
    workshop_title: str


class GuestDetails(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class BookingCreate(BaseModel):
    session_id: uuid.UUID
    quantity: int = 1
    guest: GuestDetails = Field(default_factory=GuestDetails)
    gift_card_code: str | None = None
    payment_provider: ProviderChoice = None
    notes: str | None = None


class ManualBookingCreate(BaseModel):
    session_id: uuid.UUID
    quantity: int = 1
    guest: GuestDetails
    notes: str | None = None


class ReservationRead(BaseModel):
    id: uuid.UUID
    workshop_id: uuid.UUID
    session_id: uuid.UUID
    user_id: uuid.UUID | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    quantity: int
    status: ReservationStatus
    waitlist_position: int | None = None
    total_amount: Decimal
    payment_status: PaymentStatus
    payment_method: PaymentMethod | None = None
    payment_provider: PaymentProvider | None = None
    gift_card_code: str | None = None
    gift_card_amount: Decimal
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    refund_amount: Decimal | None = None
    refund_details: dict[str, Any] | None = None
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingRead(BaseModel):
    reservation: ReservationRead
    waitlisted: bool
    checkout_url: str | None = None
    checkout_session_id: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None
    notify: bool = True


class StaleHoldSweep(BaseModel):
    older_than_minutes: int = Field(default=60, ge=1)
