"""Client directory built from orders and bookings."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.models import User
from atelier.schemas import (
    ApiResponse,
    ClientDetail,
    ClientRead,
    OrderRead,
    ReservationRead,
    ok,
)
from atelier.services import client_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[ClientRead]], summary="List clients")
async def list_clients(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> ApiResponse[list[ClientRead]]:
    clients = await client_service.list_clients(
        session, search=search, skip=skip, limit=min(limit, 200)
    )
    return ok([ClientRead.model_validate(client) for client in clients])


@router.get(
    "/{client_id}",
    response_model=ApiResponse[ClientDetail],
    summary="Client with order and booking history",
)
async def get_client(
    client_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[ClientDetail]:
    try:
        client = await client_service.get_client(session, client_id=client_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    orders = await client_service.client_orders(session, client=client)
    reservations = await client_service.client_reservations(session, client=client)
    return ok(
        ClientDetail(
            **ClientRead.model_validate(client).model_dump(),
            orders=[OrderRead.model_validate(order) for order in orders],
            reservations=[ReservationRead.model_validate(item) for item in reservations],
        )
    )
