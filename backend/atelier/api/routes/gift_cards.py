"""Public gift card endpoints: balance checks, checkout preview and purchase."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.integrations import StripeClient
from atelier.models import GiftCard, GiftCardStatus, User
from atelier.schemas import (
    ApiResponse,
    GiftCardApplyRead,
    GiftCardApplyRequest,
    GiftCardCheckRead,
    GiftCardPurchaseCreate,
    GiftCardPurchaseRead,
    ok,
)
from atelier.services import gift_card_service

router = APIRouter()


def _check_view(card: GiftCard) -> GiftCardCheckRead:
    derived = gift_card_service.derive_status(card)
    if card.status is not GiftCardStatus.ACTIVE and derived is GiftCardStatus.ACTIVE:
        derived = card.status
    awaiting_payment = bool(card.stripe_checkout_session_id) and card.delivered_at is None
    valid = derived is GiftCardStatus.ACTIVE and not awaiting_payment
    return GiftCardCheckRead(
        code=card.code,
        status=derived,
        valid=valid,
        balance=card.balance if valid else None,
        expiry_date=card.expiry_date,
    )


@router.get(
    "/check/{code}",
    response_model=ApiResponse[GiftCardCheckRead],
    summary="Check a gift card",
)
async def check_gift_card(
    code: str,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[GiftCardCheckRead]:
    try:
        card = await gift_card_service.check_gift_card(session, code=code)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(_check_view(card))


@router.post(
    "/apply",
    response_model=ApiResponse[GiftCardApplyRead],
    summary="Preview a gift card against a total",
)
async def apply_gift_card(
    payload: GiftCardApplyRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[GiftCardApplyRead]:
    try:
        application = await gift_card_service.apply_gift_card(
            session, code=payload.code, order_total=payload.order_total
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(
        GiftCardApplyRead(
            code=application.code,
            balance=application.balance,
            amount_applied=application.amount_applied,
            remaining_to_pay=application.remaining_to_pay,
            fully_covered=application.fully_covered,
        )
    )


@router.post(
    "/purchase",
    response_model=ApiResponse[GiftCardPurchaseRead],
    status_code=status.HTTP_201_CREATED,
    summary="Buy a gift card",
)
async def purchase_gift_card(
    payload: GiftCardPurchaseCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
) -> ApiResponse[GiftCardPurchaseRead]:
    try:
        card, checkout = await gift_card_service.purchase_gift_card(
            session,
            amount=payload.amount,
            stripe=stripe_client if stripe_client.configured else None,
            category=payload.category,
            purchaser=current_user,
            purchaser_name=payload.purchaser_name,
            purchaser_email=payload.purchaser_email,
            recipient_name=payload.recipient_name,
            recipient_email=payload.recipient_email,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(
        GiftCardPurchaseRead(
            gift_card_id=card.id,
            amount=card.amount,
            checkout_url=checkout.url,
            checkout_session_id=checkout.id,
        ),
        message="Checkout created; the card is emailed once paid",
    )
