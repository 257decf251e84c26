"""Shop checkout and customer order history."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.integrations import SquareClient, StripeClient
from atelier.models import User
from atelier.schemas import (
    ApiResponse,
    CheckoutRead,
    GiftCardSummary,
    OrderCreate,
    OrderRead,
    ok,
)
from atelier.services import order_service

router = APIRouter()


@router.post(
    "",
    response_model=ApiResponse[CheckoutRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
)
async def create_order(
    payload: OrderCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[CheckoutRead]:
    shipping = payload.shipping
    try:
        result = await order_service.create_order(
            session,
            items=[
                order_service.CartLine(product_id=item.product_id, quantity=item.quantity)
                for item in payload.items
            ],
            user=current_user,
            contact=order_service.ContactDetails(
                name=shipping.name,
                email=shipping.email,
                phone=shipping.phone,
                address=shipping.address,
                city=shipping.city,
                postal_code=shipping.postal_code,
                country=shipping.country,
            ),
            gift_card_code=payload.gift_card_code,
            payment_provider=payload.payment_provider,
            notes=payload.notes,
            stripe=stripe_client if stripe_client.configured else None,
            square=square_client if square_client.configured else None,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc

    gift_card = None
    if result.gift_card is not None:
        gift_card = GiftCardSummary(
            code=result.gift_card.code,
            amount_applied=result.gift_card.amount_applied,
            remaining_to_pay=result.gift_card.remaining_to_pay,
            fully_covered=result.gift_card.fully_covered,
        )
    return ok(
        CheckoutRead(
            order=OrderRead.model_validate(result.order),
            gift_card=gift_card,
            client_secret=result.client_secret,
            payment_intent_id=result.payment_intent_id,
            checkout_url=result.checkout_url,
        ),
        message="Order created",
    )


@router.get("", response_model=ApiResponse[list[OrderRead]], summary="My orders")
async def list_my_orders(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_user)],
) -> ApiResponse[list[OrderRead]]:
    orders = await order_service.list_user_orders(session, user=current_user)
    return ok([OrderRead.model_validate(order) for order in orders])


@router.get("/{order_id}", response_model=ApiResponse[OrderRead], summary="Get order")
async def get_order(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_user)],
) -> ApiResponse[OrderRead]:
    try:
        order = await order_service.get_order_for_viewer(
            session, order_id=order_id, viewer=current_user
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(OrderRead.model_validate(order))
