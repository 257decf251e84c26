"""Back-office gift card management."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.models import GiftCard, GiftCardStatus, User
from atelier.schemas import (
    ApiResponse,
    GiftCardDetail,
    GiftCardIssue,
    GiftCardRead,
    GiftCardTransactionRead,
    GiftCardUpdate,
    ok,
)
from atelier.services import gift_card_service

router = APIRouter()


async def _detail(session: AsyncSession, card: GiftCard) -> GiftCardDetail:
    return GiftCardDetail(
        **GiftCardRead.model_validate(card).model_dump(),
        transactions=[
            GiftCardTransactionRead.model_validate(item) for item in card.transactions
        ],
        ledger_balance=await gift_card_service.ledger_balance(session, card),
    )


@router.get("", response_model=ApiResponse[list[GiftCardRead]], summary="List gift cards")
async def list_gift_cards(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    status_filter: Annotated[GiftCardStatus | None, Query(alias="status")] = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> ApiResponse[list[GiftCardRead]]:
    cards = await gift_card_service.list_gift_cards(
        session, status=status_filter, search=search, skip=skip, limit=min(limit, 200)
    )
    return ok([GiftCardRead.model_validate(card) for card in cards])


@router.post(
    "",
    response_model=ApiResponse[GiftCardDetail],
    status_code=status.HTTP_201_CREATED,
    summary="Issue a gift card",
)
async def issue_gift_card(
    payload: GiftCardIssue,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[GiftCardDetail]:
    try:
        card = await gift_card_service.issue_and_deliver(
            session, background_tasks=background_tasks, **payload.model_dump()
        )
        card = await gift_card_service.get_gift_card(session, gift_card_id=card.id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(await _detail(session, card), message="Gift card issued")


@router.get(
    "/check/{code}",
    response_model=ApiResponse[GiftCardDetail],
    summary="Look up a card by code",
)
async def check_gift_card(
    code: str,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[GiftCardDetail]:
    try:
        card = await gift_card_service.check_gift_card(session, code=code)
        card = await gift_card_service.get_gift_card(session, gift_card_id=card.id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(await _detail(session, card))


@router.get(
    "/{gift_card_id}",
    response_model=ApiResponse[GiftCardDetail],
    summary="Get gift card with ledger",
)
async def get_gift_card(
    gift_card_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[GiftCardDetail]:
    try:
        card = await gift_card_service.get_gift_card(session, gift_card_id=gift_card_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(await _detail(session, card))


@router.patch(
    "/{gift_card_id}",
    response_model=ApiResponse[GiftCardDetail],
    summary="Update a gift card",
)
async def update_gift_card(
    gift_card_id: uuid.UUID,
    payload: GiftCardUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[GiftCardDetail]:
    try:
        card = await gift_card_service.update_gift_card(
            session, gift_card_id=gift_card_id, **payload.model_dump(exclude_unset=True)
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(await _detail(session, card), message="Gift card updated")


@router.delete(
    "/{gift_card_id}", response_model=ApiResponse[None], summary="Delete a gift card"
)
async def delete_gift_card(
    gift_card_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[None]:
    try:
        await gift_card_service.delete_gift_card(session, gift_card_id=gift_card_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(message="Gift card deleted")
