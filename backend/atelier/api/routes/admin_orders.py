"""Back-office order management."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.integrations import SquareClient, StripeClient
from atelier.models import OrderStatus, PaymentStatus, RefundTarget, User
from atelier.schemas import (
    ApiResponse,
    OrderRead,
    OrderStatusUpdate,
    RefundStepRead,
    ok,
)
from atelier.services import order_service, refund_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[OrderRead]], summary="List orders")
async def list_orders(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> ApiResponse[list[OrderRead]]:
    orders = await order_service.list_orders(
        session,
        status=status_filter,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        skip=skip,
        limit=min(limit, 200),
    )
    return ok([OrderRead.model_validate(order) for order in orders])


@router.get("/export", summary="Export orders as CSV")
async def export_orders(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> Response:
    content = await order_service.export_orders_csv(
        session,
        status=status_filter,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="commandes.csv"'},
    )


@router.get("/{order_id}", response_model=ApiResponse[OrderRead], summary="Get order")
async def get_order(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[OrderRead]:
    try:
        order = await order_service.get_order(session, order_id=order_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(OrderRead.model_validate(order))


@router.patch(
    "/{order_id}/status",
    response_model=ApiResponse[OrderRead],
    summary="Change order status",
)
async def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[OrderRead]:
    try:
        order = await order_service.update_order_status(
            session,
            order_id=order_id,
            status=payload.status,
            reason=payload.reason,
            stripe=stripe_client if stripe_client.configured else None,
            square=square_client if square_client.configured else None,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(
        OrderRead.model_validate(order),
        message=f"Order status updated to {order.status.value}",
    )


@router.get(
    "/{order_id}/refund-steps",
    response_model=ApiResponse[list[RefundStepRead]],
    summary="Refund step log",
)
async def list_refund_steps(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[RefundStepRead]]:
    steps = await refund_service.list_refund_steps(
        session, target_kind=RefundTarget.ORDER, target_id=order_id
    )
    return ok([RefundStepRead.model_validate(step) for step in steps])


@router.post(
    "/{order_id}/refund-steps/retry",
    response_model=ApiResponse[list[RefundStepRead]],
    summary="Retry failed refund steps",
)
async def retry_refund_steps(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[RefundStepRead]]:
    try:
        steps = await refund_service.retry_refund_steps(
            session, target_kind=RefundTarget.ORDER, target_id=order_id
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok([RefundStepRead.model_validate(step) for step in steps])
