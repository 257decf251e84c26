"""Public workshop listing and booking."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.integrations import SquareClient, StripeClient
from atelier.models import User, Workshop
from atelier.schemas import (
    ApiResponse,
    BookingCreate,
    BookingRead,
    ReservationRead,
    WorkshopRead,
    WorkshopSessionRead,
    ok,
)
from atelier.services import workshop_service

router = APIRouter()


def _public_workshop(workshop: Workshop) -> WorkshopRead:
    data = WorkshopRead.model_validate(workshop)
    data.sessions = [
        WorkshopSessionRead.model_validate(item)
        for item in workshop_service.upcoming_sessions(workshop)
    ]
    return data


@router.get("", response_model=ApiResponse[list[WorkshopRead]], summary="List workshops")
async def list_workshops(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[list[WorkshopRead]]:
    workshops = await workshop_service.list_workshops(session)
    return ok([_public_workshop(workshop) for workshop in workshops])


@router.get(
    "/my-reservations",
    response_model=ApiResponse[list[ReservationRead]],
    summary="My reservations",
)
async def my_reservations(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_user)],
) -> ApiResponse[list[ReservationRead]]:
    reservations = await workshop_service.list_user_reservations(
        session, user=current_user
    )
    return ok([ReservationRead.model_validate(item) for item in reservations])


@router.get(
    "/reservations/{reservation_id}",
    response_model=ApiResponse[ReservationRead],
    summary="Get one of my reservations",
)
async def get_reservation(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_user)],
) -> ApiResponse[ReservationRead]:
    try:
        reservation = await workshop_service.get_reservation_for_viewer(
            session, reservation_id=reservation_id, viewer=current_user
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ReservationRead.model_validate(reservation))


@router.get(
    "/{workshop_id}", response_model=ApiResponse[WorkshopRead], summary="Get workshop"
)
async def get_workshop(
    workshop_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[WorkshopRead]:
    try:
        workshop = await workshop_service.get_workshop(session, workshop_id=workshop_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(_public_workshop(workshop))


@router.post(
    "/{workshop_id}/book",
    response_model=ApiResponse[BookingRead],
    status_code=status.HTTP_201_CREATED,
    summary="Book a workshop session",
)
async def book_workshop(
    workshop_id: uuid.UUID,
    payload: BookingCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[BookingRead]:
    try:
        result = await workshop_service.book_workshop(
            session,
            workshop_id=workshop_id,
            session_id=payload.session_id,
            quantity=payload.quantity,
            user=current_user,
            guest=workshop_service.GuestContact(
                name=payload.guest.name,
                email=payload.guest.email,
                phone=payload.guest.phone,
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

    message = (
        "Session full; you have been added to the waitlist"
        if result.waitlisted
        else "Reservation created"
    )
    return ok(
        BookingRead(
            reservation=ReservationRead.model_validate(result.reservation),
            waitlisted=result.waitlisted,
            checkout_url=result.checkout_url,
            checkout_session_id=result.checkout_session_id,
        ),
        message=message,
    )
