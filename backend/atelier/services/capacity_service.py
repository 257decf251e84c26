"""Seat accounting for workshop sessions."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import ValidationFailed
from atelier.models import Reservation, ReservationStatus, WorkshopSession

logger = logging.getLogger(__name__)


async def try_reserve_seats(
    session: AsyncSession, *, session_id: UUID, quantity: int
) -> bool:
    """Atomically hold ``quantity`` seats; False when the session lacks room."""

    if quantity <= 0:
        raise ValidationFailed("Seat quantity must be positive")
    stmt = (
        update(WorkshopSession)
        .where(
            WorkshopSession.id == session_id,
            WorkshopSession.booked_count + quantity <= WorkshopSession.capacity,
        )
        .values(booked_count=WorkshopSession.booked_count + quantity)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    reserved = result.rowcount == 1
    await _refresh_loaded(session, session_id)
    return reserved


async def release_seats(
    session: AsyncSession, *, session_id: UUID, quantity: int
) -> None:
    """Give back seats previously held, never dropping below zero."""

    if quantity <= 0:
        return
    stmt = (
        update(WorkshopSession)
        .where(
            WorkshopSession.id == session_id,
            WorkshopSession.booked_count >= quantity,
        )
        .values(booked_count=WorkshopSession.booked_count - quantity)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        logger.warning(
            "Seat release of %s on session %s exceeded booked count; clamping to 0",
            quantity,
            session_id,
        )
        await session.execute(
            update(WorkshopSession)
            .where(WorkshopSession.id == session_id)
            .values(booked_count=0)
            .execution_options(synchronize_session=False)
        )
    await _refresh_loaded(session, session_id)


async def next_waitlist_position(session: AsyncSession, *, session_id: UUID) -> int:
    stmt = select(func.count(Reservation.id)).where(
        Reservation.session_id == session_id,
        Reservation.status == ReservationStatus.WAITLIST,
    )
    waiting = (await session.execute(stmt)).scalar_one()
    return int(waiting) + 1


async def _refresh_loaded(session: AsyncSession, session_id: UUID) -> None:
    for instance in list(session.sync_session.identity_map.values()):
        if isinstance(instance, WorkshopSession) and instance.id == session_id:
            await session.refresh(instance, attribute_names=["booked_count"])
