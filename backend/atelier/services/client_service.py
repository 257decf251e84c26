"""Client directory maintenance and lookups."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import NotFound
from atelier.models import Client, Order, Reservation, User

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: str | None) -> bool:
    return bool(value) and _EMAIL_PATTERN.match(value or "") is not None


def _split_name(full_name: str | None) -> tuple[str | None, str | None]:
    if not full_name:
        return None, None
    first, _, last = full_name.strip().partition(" ")
    return first or None, last.strip() or None


async def sync_client(
    session: AsyncSession,
    *,
    email: str,
    full_name: str | None = None,
    phone: str | None = None,
) -> Client:
    """Upsert the client row for a checkout and bump its order counters."""

    normalized = email.strip().lower()
    stmt = select(Client).where(func.lower(Client.email) == normalized)
    client = (await session.execute(stmt)).scalar_one_or_none()
    first_name, last_name = _split_name(full_name)
    now = datetime.now(UTC)
    if client is None:
        client = Client(
            email=normalized,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            total_orders=1,
            last_order_date=now,
        )
        session.add(client)
    else:
        client.total_orders = (client.total_orders or 0) + 1
        client.last_order_date = now
        client.first_name = client.first_name or first_name
        client.last_name = client.last_name or last_name
        client.phone = phone or client.phone
    await session.flush()
    return client


async def list_clients(
    session: AsyncSession,
    *,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> Sequence[Client]:
    stmt = select(Client).order_by(Client.last_order_date.desc().nulls_last())
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Client.email.ilike(pattern),
                Client.first_name.ilike(pattern),
                Client.last_name.ilike(pattern),
                Client.phone.ilike(pattern),
            )
        )
    result = await session.execute(stmt.offset(skip).limit(limit))
    return result.scalars().all()


async def get_client(session: AsyncSession, *, client_id: UUID) -> Client:
    client = await session.get(Client, client_id)
    if client is None:
        raise NotFound("Client not found")
    return client


async def client_orders(session: AsyncSession, *, client: Client) -> Sequence[Order]:
    stmt = (
        select(Order)
        .outerjoin(User, Order.user_id == User.id)
        .where(
            or_(
                func.lower(Order.guest_email) == client.email,
                func.lower(User.email) == client.email,
            )
        )
        .order_by(Order.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().unique().all()


async def client_reservations(
    session: AsyncSession, *, client: Client
) -> Sequence[Reservation]:
    stmt = (
        select(Reservation)
        .outerjoin(User, Reservation.user_id == User.id)
        .where(
            or_(
                func.lower(Reservation.guest_email) == client.email,
                func.lower(User.email) == client.email,
            )
        )
        .order_by(Reservation.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().unique().all()
