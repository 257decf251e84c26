"""Customer directory built from checkouts."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from atelier.db.base import Base
from atelier.models.mixins import TimestampMixin


class Client(TimestampMixin, Base):
    """Purchase history summary keyed by lowercased email."""

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(120))
    last_name: Mapped[str | None] = mapped_column(String(120))
    phone: Mapped[str | None] = mapped_column(String(32))
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_order_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
