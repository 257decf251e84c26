"""Stripe webhook receiver."""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.core.settings import get_payment_settings
from atelier.integrations import StripeClient, StripeClientError
from atelier.schemas import ApiResponse, ok
from atelier.services import reconciliation_service

router = APIRouter()


async def _read_payload(request: Request, stripe_client: StripeClient) -> dict[str, Any]:
    payment_settings = get_payment_settings()
    payload_bytes = await request.body()

    if payment_settings.enforce_signatures and payment_settings.stripe_webhook_secret:
        signature = request.headers.get("Stripe-Signature")
        if not signature:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing signature header",
            )
        try:
            return stripe_client.construct_event(payload_bytes, signature)
        except StripeClientError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            ) from exc

    try:
        payload = json.loads(payload_bytes)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
        )
    return payload


@router.post(
    "/stripe-webhook",
    status_code=status.HTTP_200_OK,
    response_model=ApiResponse[dict[str, Any]],
)
@router.post(
    "/stripe/webhook",
    status_code=status.HTTP_200_OK,
    response_model=ApiResponse[dict[str, Any]],
    include_in_schema=False,
)
async def handle_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[dict[str, Any]]:
    payload = await _read_payload(request, stripe_client)
    event = reconciliation_service.parse_stripe_event(payload)
    result = await reconciliation_service.reconcile(
        session, event, background_tasks=background_tasks
    )
    return ok(result.as_dict())
