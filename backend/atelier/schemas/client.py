"""Pydantic schemas for the client directory."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from atelier.schemas.order import OrderRead
from atelier.schemas.workshop import ReservationRead


class ClientRead(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    total_orders: int
    last_order_date: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ClientDetail(ClientRead):
    orders: list[OrderRead] = Field(default_factory=list)
    reservations: list[ReservationRead] = Field(default_factory=list)
