"""Square Web Payments endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.core.settings import get_payment_settings
from atelier.integrations import SquareClient, SquarePayment
from atelier.schemas import (
    ApiResponse,
    SquareConfigRead,
    SquarePaymentConfirm,
    SquarePaymentCreate,
    SquarePaymentRead,
    ok,
)
from atelier.services import payment_service, reconciliation_service

router = APIRouter()


def _payment_view(
    payment: SquarePayment, result: reconciliation_service.ReconcileResult
) -> SquarePaymentRead:
    amount = None
    if payment.amount_cents is not None:
        amount = (Decimal(payment.amount_cents) / 100).quantize(Decimal("0.01"))
    return SquarePaymentRead(
        payment_id=payment.id,
        status=payment.status,
        outcome=result.outcome,
        amount=amount,
    )


@router.post(
    "/create-payment",
    response_model=ApiResponse[SquarePaymentRead],
    summary="Charge a card token",
)
async def create_payment(
    payload: SquarePaymentCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[SquarePaymentRead]:
    try:
        payment, result = await payment_service.pay_with_square(
            session,
            square=square_client if square_client.configured else None,
            source_id=payload.source_id,
            order_id=payload.order_id,
            reservation_id=payload.reservation_id,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(_payment_view(payment, result), message=f"Payment {payment.status.lower()}")


@router.post(
    "/confirm-payment",
    response_model=ApiResponse[SquarePaymentRead],
    summary="Reconcile a Square payment by id",
)
async def confirm_payment(
    payload: SquarePaymentConfirm,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[SquarePaymentRead]:
    try:
        payment, result = await payment_service.confirm_square_payment(
            session,
            square=square_client if square_client.configured else None,
            payment_id=payload.payment_id,
            order_id=payload.order_id,
            reservation_id=payload.reservation_id,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(_payment_view(payment, result))


@router.get(
    "/check-config",
    response_model=ApiResponse[SquareConfigRead],
    summary="Public Square settings for the payment form",
)
async def check_config(
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
) -> ApiResponse[SquareConfigRead]:
    payment_settings = get_payment_settings()
    return ok(
        SquareConfigRead(
            configured=square_client.configured,
            environment=square_client.environment,
            application_id=payment_settings.square_application_id,
            location_id=square_client.location_id,
            webhook_signature_enforced=bool(
                payment_settings.enforce_signatures
                and payment_settings.square_webhook_signature_key
            ),
        )
    )
