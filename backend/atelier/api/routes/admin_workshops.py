"""Back-office workshop, session and reservation management."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.integrations import SquareClient, StripeClient
from atelier.models import RefundTarget, ReservationStatus, User
from atelier.schemas import (
    ApiResponse,
    CalendarEntry,
    CancelRequest,
    ManualBookingCreate,
    RefundStepRead,
    ReservationRead,
    SessionCreate,
    StaleHoldSweep,
    WorkshopCreate,
    WorkshopRead,
    WorkshopSessionRead,
    WorkshopUpdate,
    ok,
)
from atelier.services import refund_service, workshop_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[WorkshopRead]], summary="List workshops")
async def list_workshops(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[WorkshopRead]]:
    workshops = await workshop_service.list_workshops(session, include_inactive=True)
    return ok([WorkshopRead.model_validate(workshop) for workshop in workshops])


@router.post(
    "",
    response_model=ApiResponse[WorkshopRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create workshop",
)
async def create_workshop(
    payload: WorkshopCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[WorkshopRead]:
    try:
        workshop = await workshop_service.create_workshop(session, **payload.model_dump())
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(WorkshopRead.model_validate(workshop), message="Workshop created")


@router.get(
    "/calendar",
    response_model=ApiResponse[list[CalendarEntry]],
    summary="Sessions in a date range",
)
async def calendar(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    start: date,
    end: date,
) -> ApiResponse[list[CalendarEntry]]:
    try:
        sessions = await workshop_service.sessions_calendar(session, start=start, end=end)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(
        [
            CalendarEntry(
                **WorkshopSessionRead.model_validate(item).model_dump(),
                workshop_title=item.workshop.title,
            )
            for item in sessions
        ]
    )


@router.post(
    "/stale-holds/release",
    response_model=ApiResponse[list[ReservationRead]],
    summary="Cancel unpaid holds older than a threshold",
)
async def release_stale_holds(
    payload: StaleHoldSweep,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[ReservationRead]]:
    try:
        released = await workshop_service.release_stale_holds(
            session, older_than=timedelta(minutes=payload.older_than_minutes)
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(
        [ReservationRead.model_validate(item) for item in released],
        message=f"{len(released)} hold(s) released",
    )


@router.get(
    "/reservations/{reservation_id}/refund-steps",
    response_model=ApiResponse[list[RefundStepRead]],
    summary="Refund step log",
)
async def list_refund_steps(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[RefundStepRead]]:
    steps = await refund_service.list_refund_steps(
        session, target_kind=RefundTarget.RESERVATION, target_id=reservation_id
    )
    return ok([RefundStepRead.model_validate(step) for step in steps])


@router.post(
    "/reservations/{reservation_id}/refund-steps/retry",
    response_model=ApiResponse[list[RefundStepRead]],
    summary="Retry failed refund steps",
)
async def retry_refund_steps(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[RefundStepRead]]:
    try:
        steps = await refund_service.retry_refund_steps(
            session, target_kind=RefundTarget.RESERVATION, target_id=reservation_id
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok([RefundStepRead.model_validate(step) for step in steps])


@router.post(
    "/reservations/{reservation_id}/cancel",
    response_model=ApiResponse[ReservationRead],
    summary="Cancel a reservation",
)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    payload: CancelRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    stripe_client: Annotated[StripeClient, Depends(deps.get_stripe_client)],
    square_client: Annotated[SquareClient, Depends(deps.get_square_client)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[ReservationRead]:
    try:
        reservation = await workshop_service.cancel_reservation(
            session,
            reservation_id=reservation_id,
            reason=payload.reason,
            notify=payload.notify,
            stripe=stripe_client if stripe_client.configured else None,
            square=square_client if square_client.configured else None,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ReservationRead.model_validate(reservation), message="Reservation cancelled")


@router.post(
    "/reservations/{reservation_id}/mark-paid",
    response_model=ApiResponse[ReservationRead],
    summary="Record an on-site payment",
)
async def mark_reservation_paid(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[ReservationRead]:
    try:
        reservation = await workshop_service.mark_reservation_paid(
            session, reservation_id=reservation_id
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ReservationRead.model_validate(reservation), message="Payment recorded")


@router.post(
    "/reservations/{reservation_id}/promote",
    response_model=ApiResponse[ReservationRead],
    summary="Promote a waitlisted reservation",
)
async def promote_waitlist(
    reservation_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[ReservationRead]:
    try:
        reservation = await workshop_service.promote_waitlist(
            session, reservation_id=reservation_id, background_tasks=background_tasks
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ReservationRead.model_validate(reservation), message="Reservation confirmed")


@router.get(
    "/{workshop_id}", response_model=ApiResponse[WorkshopRead], summary="Get workshop"
)
async def get_workshop(
    workshop_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[WorkshopRead]:
    try:
        workshop = await workshop_service.get_workshop(
            session, workshop_id=workshop_id, include_inactive=True
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(WorkshopRead.model_validate(workshop))


@router.patch(
    "/{workshop_id}", response_model=ApiResponse[WorkshopRead], summary="Update workshop"
)
async def update_workshop(
    workshop_id: uuid.UUID,
    payload: WorkshopUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[WorkshopRead]:
    try:
        workshop = await workshop_service.update_workshop(
            session, workshop_id=workshop_id, **payload.model_dump(exclude_unset=True)
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(WorkshopRead.model_validate(workshop), message="Workshop updated")


@router.delete(
    "/{workshop_id}", response_model=ApiResponse[None], summary="Delete workshop"
)
async def delete_workshop(
    workshop_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[None]:
    try:
        await workshop_service.delete_workshop(session, workshop_id=workshop_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(message="Workshop deleted")


@router.get(
    "/{workshop_id}/sessions",
    response_model=ApiResponse[list[WorkshopSessionRead]],
    summary="List sessions",
)
async def list_sessions(
    workshop_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[list[WorkshopSessionRead]]:
    try:
        workshop = await workshop_service.get_workshop(
            session, workshop_id=workshop_id, include_inactive=True
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok([WorkshopSessionRead.model_validate(item) for item in workshop.sessions])


@router.post(
    "/{workshop_id}/sessions",
    response_model=ApiResponse[WorkshopSessionRead],
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a session",
)
async def create_session(
    workshop_id: uuid.UUID,
    payload: SessionCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[WorkshopSessionRead]:
    try:
        workshop_session = await workshop_service.create_session(
            session,
            workshop_id=workshop_id,
            session_date=payload.session_date,
            start_time=payload.start_time,
            capacity=payload.capacity,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(WorkshopSessionRead.model_validate(workshop_session), message="Session created")


@router.delete(
    "/{workshop_id}/sessions/{session_id}",
    response_model=ApiResponse[None],
    summary="Delete a session",
)
async def delete_session(
    workshop_id: uuid.UUID,
    session_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[None]:
    try:
        await workshop_service.delete_session(
            session, workshop_id=workshop_id, session_id=session_id
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(message="Session deleted")


@router.get(
    "/{workshop_id}/reservations",
    response_model=ApiResponse[list[ReservationRead]],
    summary="Reservations for a workshop",
)
async def list_reservations(
    workshop_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    session_id: uuid.UUID | None = None,
    status_filter: Annotated[ReservationStatus | None, Query(alias="status")] = None,
) -> ApiResponse[list[ReservationRead]]:
    reservations = await workshop_service.list_reservations(
        session, workshop_id=workshop_id, session_id=session_id, status=status_filter
    )
    return ok([ReservationRead.model_validate(item) for item in reservations])


@router.post(
    "/{workshop_id}/reservations",
    response_model=ApiResponse[ReservationRead],
    status_code=status.HTTP_201_CREATED,
    summary="Book on behalf of a customer",
)
async def manual_booking(
    workshop_id: uuid.UUID,
    payload: ManualBookingCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    background_tasks: BackgroundTasks,
) -> ApiResponse[ReservationRead]:
    try:
        reservation = await workshop_service.manual_booking(
            session,
            workshop_id=workshop_id,
            session_id=payload.session_id,
            quantity=payload.quantity,
            guest=workshop_service.GuestContact(
                name=payload.guest.name,
                email=payload.guest.email,
                phone=payload.guest.phone,
            ),
            notes=payload.notes,
            background_tasks=background_tasks,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ReservationRead.model_validate(reservation), message="Reservation created")
