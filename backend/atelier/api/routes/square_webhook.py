"""Square webhook receiver."""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.core.settings import get_payment_settings
from atelier.integrations import SquareClient, SquareClientError
from atelier.schemas import ApiResponse, ok
from atelier.services import reconciliation_service

router = APIRouter()

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


async def _read_payload(request: Request, square_client: SquareClient) -> dict[str, Any]:
    payment_settings = get_payment_settings()
    payload_bytes = await request.body()

    if payment_settings.enforce_signatures and payment_settings.square_webhook_signature_key:
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing signature header",
            )
        # Square signs the exact URL it was configured with.
        notification_url = payment_settings.square_webhook_url or str(request.url)
        try:
            return square_client.construct_event(payload_bytes, signature, notification_url)
        except SquareClientError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
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
    "/webhook",
    status_code=status.HTTP_200_OK,
    response_model=ApiResponse[dict[str, Any]],
)
async def handle_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[dict[str, Any]]:
    payload = await _read_payload(request, square_client)
    event = reconciliation_service.parse_square_event(payload)
    result = await reconciliation_service.reconcile(
        session, event, background_tasks=background_tasks
    )
    return ok(result.as_dict())
