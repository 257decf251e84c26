"""Workshop catalog, session scheduling and reservation booking."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Final
from urllib.parse import urlencode
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from atelier.core.errors import (
    DomainError,
    Forbidden,
    NotFound,
    PaymentGatewayError,
    StateConflict,
    ValidationFailed,
)
from atelier.core.settings import get_frontend_url, get_payment_settings
from atelier.integrations import SquareClient, StripeClient
from atelier.models import (
    TERMINAL_RESERVATION_STATUSES,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    Reservation,
    ReservationStatus,
    SessionStatus,
    User,
    UserRole,
    Workshop,
    WorkshopSession,
)
from atelier.services import (
    capacity_service,
    client_service,
    gift_card_service,
    notification_service,
    refund_service,
)
from atelier.services.gift_card_service import GiftCardApplication

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")


def _to_money(value: Decimal | float | str | int) -> Decimal:
    return Decimal(value).quantize(_CURRENCY_UNIT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class GuestContact:
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(slots=True)
class BookingResult:
    reservation: Reservation
    gift_card: GiftCardApplication | None = None
    checkout_url: str | None = None
    checkout_session_id: str | None = None

    @property
    def waitlisted(self) -> bool:
        return self.reservation.status is ReservationStatus.WAITLIST


# --- Catalog -----------------------------------------------------------------


async def list_workshops(
    session: AsyncSession, *, include_inactive: bool = False
) -> Sequence[Workshop]:
    stmt = (
        select(Workshop)
        .options(selectinload(Workshop.sessions))
        .order_by(Workshop.title)
    )
    if not include_inactive:
        stmt = stmt.where(Workshop.is_active.is_(True))
    return (await session.execute(stmt)).scalars().unique().all()


def upcoming_sessions(
    workshop: Workshop, *, today: date | None = None
) -> list[WorkshopSession]:
    today = today or datetime.now(UTC).date()
    return [
        item
        for item in workshop.sessions
        if item.status is SessionStatus.SCHEDULED and item.session_date >= today
    ]


async def get_workshop(
    session: AsyncSession, *, workshop_id: UUID, include_inactive: bool = False
) -> Workshop:
    stmt = (
        select(Workshop)
        .where(Workshop.id == workshop_id)
        .options(selectinload(Workshop.sessions))
    )
    workshop = (await session.execute(stmt)).scalar_one_or_none()
    if workshop is None or (not workshop.is_active and not include_inactive):
        raise NotFound("Workshop not found")
    return workshop


async def create_workshop(session: AsyncSession, **fields: Any) -> Workshop:
    price = fields.get("price")
    if price is None or _to_money(price) < Decimal("0"):
        raise ValidationFailed("Workshop price must be zero or positive")
    workshop = Workshop(**fields)
    workshop.sessions = []
    session.add(workshop)
    await session.commit()
    return await get_workshop(
        session, workshop_id=workshop.id, include_inactive=True
    )


async def update_workshop(
    session: AsyncSession, *, workshop_id: UUID, **fields: Any
) -> Workshop:
    workshop = await get_workshop(
        session, workshop_id=workshop_id, include_inactive=True
    )
    if "price" in fields and fields["price"] is not None:
        if _to_money(fields["price"]) < Decimal("0"):
            raise ValidationFailed("Workshop price must be zero or positive")
    for key, value in fields.items():
        setattr(workshop, key, value)
    await session.commit()
    return workshop


async def _active_reservation_count(
    session: AsyncSession, *, workshop_id: UUID | None = None, session_id: UUID | None = None
) -> int:
    stmt = select(func.count(Reservation.id)).where(
        Reservation.status.not_in(TERMINAL_RESERVATION_STATUSES)
    )
    if workshop_id is not None:
        stmt = stmt.where(Reservation.workshop_id == workshop_id)
    if session_id is not None:
        stmt = stmt.where(Reservation.session_id == session_id)
    return int((await session.execute(stmt)).scalar_one())


async def delete_workshop(session: AsyncSession, *, workshop_id: UUID) -> None:
    await get_workshop(session, workshop_id=workshop_id, include_inactive=True)
    if await _active_reservation_count(session, workshop_id=workshop_id):
        raise StateConflict("Workshop has active reservations")
    await session.execute(delete(Reservation).where(Reservation.workshop_id == workshop_id))
    await session.execute(
        delete(WorkshopSession).where(WorkshopSession.workshop_id == workshop_id)
    )
    await session.execute(delete(Workshop).where(Workshop.id == workshop_id))
    await session.commit()
    session.expunge_all()


# --- Sessions ----------------------------------------------------------------


async def get_session_for_workshop(
    session: AsyncSession, *, workshop_id: UUID, session_id: UUID
) -> WorkshopSession:
    workshop_session = await session.get(WorkshopSession, session_id)
    if workshop_session is None or workshop_session.workshop_id != workshop_id:
        raise NotFound("Session not found for this workshop")
    return workshop_session


async def create_session(
    session: AsyncSession,
    *,
    workshop_id: UUID,
    session_date: date,
    start_time: time,
    capacity: int | None = None,
) -> WorkshopSession:
    workshop = await get_workshop(
        session, workshop_id=workshop_id, include_inactive=True
    )
    seats = workshop.max_participants if capacity is None else capacity
    if seats < 1:
        raise ValidationFailed("Session capacity must be at least 1")
    workshop_session = WorkshopSession(
        workshop_id=workshop.id,
        session_date=session_date,
        start_time=start_time,
        capacity=seats,
        booked_count=0,
        status=SessionStatus.SCHEDULED,
    )
    workshop.sessions.append(workshop_session)
    await session.commit()
    return workshop_session


async def delete_session(
    session: AsyncSession, *, workshop_id: UUID, session_id: UUID
) -> None:
    await get_session_for_workshop(
        session, workshop_id=workshop_id, session_id=session_id
    )
    if await _active_reservation_count(session, session_id=session_id):
        raise StateConflict("Session has active reservations")
    await session.execute(delete(Reservation).where(Reservation.session_id == session_id))
    await session.execute(delete(WorkshopSession).where(WorkshopSession.id == session_id))
    await session.commit()
    session.expunge_all()


async def sessions_calendar(
    session: AsyncSession, *, start: date, end: date
) -> Sequence[WorkshopSession]:
    if end < start:
        raise ValidationFailed("End date must not precede start date")
    stmt = (
        select(WorkshopSession)
        .options(selectinload(WorkshopSession.workshop))
        .where(
            WorkshopSession.session_date >= start,
            WorkshopSession.session_date <= end,
        )
        .order_by(WorkshopSession.session_date, WorkshopSession.start_time)
    )
    return (await session.execute(stmt)).scalars().all()


# --- Booking -----------------------------------------------------------------


def _booking_urls(frontend_url: str, workshop_id: UUID, reservation_id: UUID) -> tuple[str, str]:
    base = f"{frontend_url}/ateliers/{workshop_id}"
    success = f"{base}?{urlencode({'booking': 'success', 'reservation': str(reservation_id)})}"
    cancel = f"{base}?{urlencode({'booking': 'cancelled', 'reservation': str(reservation_id)})}"
    return success, cancel


async def book_workshop(
    session: AsyncSession,
    *,
    workshop_id: UUID,
    session_id: UUID,
    quantity: int,
    user: User | None,
    guest: GuestContact | None = None,
    gift_card_code: str | None = None,
    payment_provider: PaymentProvider | None = None,
    notes: str | None = None,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> BookingResult:
    """Hold seats and open a checkout, or join the waitlist when full."""

    guest = guest or GuestContact()
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")
    if user is None:
        if not (guest.name and guest.name.strip()):
            raise ValidationFailed("Guest booking requires a name")
        if not client_service.is_valid_email(guest.email):
            raise ValidationFailed("Invalid email address")

    workshop = await get_workshop(session, workshop_id=workshop_id)
    workshop_session = await get_session_for_workshop(
        session, workshop_id=workshop_id, session_id=session_id
    )
    if workshop_session.status is not SessionStatus.SCHEDULED:
        raise ValidationFailed("Session is not open for booking")

    total = _to_money(workshop.price) * quantity
    application: GiftCardApplication | None = None
    if gift_card_code and total > Decimal("0"):
        application = await gift_card_service.apply_gift_card(
            session, code=gift_card_code, order_total=total
        )
    gift_card_amount = application.amount_applied if application else Decimal("0.00")
    gateway_amount = total - gift_card_amount
    needs_checkout = payment_provider is not None and gateway_amount > Decimal("0")
    frontend_url = get_frontend_url() if needs_checkout else None
    if payment_provider is PaymentProvider.STRIPE and needs_checkout and stripe is None:
        raise ValidationFailed("Stripe payments are not available")
    if payment_provider is PaymentProvider.SQUARE and needs_checkout and square is None:
        raise ValidationFailed("Square payments are not available")

    reservation = Reservation(
        workshop_id=workshop.id,
        session_id=workshop_session.id,
        user_id=user.id if user is not None else None,
        guest_name=None if user is not None else guest.name,
        guest_email=None if user is not None else (guest.email or "").strip().lower(),
        guest_phone=guest.phone,
        quantity=quantity,
        total_amount=total,
        gift_card_code=application.code if application else None,
        gift_card_amount=gift_card_amount,
        notes=notes,
    )
    reservation.workshop = workshop
    reservation.workshop_session = workshop_session
    reservation.user = user

    seats_held = await capacity_service.try_reserve_seats(
        session, session_id=workshop_session.id, quantity=quantity
    )
    if not seats_held:
        reservation.status = ReservationStatus.WAITLIST
        reservation.payment_status = PaymentStatus.UNPAID
        reservation.waitlist_position = await capacity_service.next_waitlist_position(
            session, session_id=workshop_session.id
        )
        session.add(reservation)
        await session.commit()
        logger.info(
            "Session %s full; reservation %s waitlisted at position %s",
            workshop_session.id,
            reservation.id,
            reservation.waitlist_position,
        )
        return BookingResult(reservation=reservation, gift_card=application)

    session.add(reservation)
    await session.flush()

    result = BookingResult(reservation=reservation, gift_card=application)
    if not needs_checkout:
        await _confirm_without_checkout(
            session, reservation, application=application
        )
        await session.commit()
        _send_confirmation(reservation, background_tasks)
    else:
        reservation.status = ReservationStatus.PENDING
        reservation.payment_status = PaymentStatus.PENDING
        reservation.payment_provider = payment_provider
        await session.commit()
        try:
            await _open_checkout(
                reservation,
                result,
                workshop=workshop,
                amount=gateway_amount,
                provider=payment_provider,
                stripe=stripe,
                square=square,
                frontend_url=frontend_url or "",
            )
        except PaymentGatewayError:
            await _rollback_booking(session, reservation)
            raise
        await session.commit()

    if user is None and reservation.guest_email:
        await _sync_client_best_effort(session, reservation)
    return result


async def _confirm_without_checkout(
    session: AsyncSession,
    reservation: Reservation,
    *,
    application: GiftCardApplication | None,
) -> None:
    reservation.status = ReservationStatus.CONFIRMED
    if application is not None and application.fully_covered:
        await gift_card_service.redeem_gift_card(
            session,
            code=application.code,
            amount=application.amount_applied,
            reservation_id=reservation.id,
            note=f"Atelier {reservation.workshop.title}",
        )
        reservation.payment_status = PaymentStatus.PAID
        reservation.payment_method = PaymentMethod.GIFT_CARD
        reservation.payment_confirmed_at = datetime.now(UTC)
    elif reservation.total_amount <= Decimal("0"):
        reservation.payment_status = PaymentStatus.PAID
        reservation.payment_method = PaymentMethod.FREE
        reservation.payment_confirmed_at = datetime.now(UTC)
    else:
        # Paid at the studio; a partial gift card stays deferred until then.
        reservation.payment_status = PaymentStatus.UNPAID
        reservation.payment_method = PaymentMethod.ON_SITE


async def _open_checkout(
    reservation: Reservation,
    result: BookingResult,
    *,
    workshop: Workshop,
    amount: Decimal,
    provider: PaymentProvider | None,
    stripe: StripeClient | None,
    square: SquareClient | None,
    frontend_url: str,
) -> None:
    success_url, cancel_url = _booking_urls(frontend_url, workshop.id, reservation.id)
    label = f"Atelier {workshop.title}"
    if provider is PaymentProvider.STRIPE and stripe is not None:
        checkout = await stripe.create_checkout_session(
            amount=amount,
            product_name=label,
            description=f"{reservation.quantity} place(s)",
            success_url=success_url,
            cancel_url=cancel_url,
            currency=get_payment_settings().currency,
            metadata={
                "type": "workshop_booking",
                "reservation_id": str(reservation.id),
            },
            customer_email=reservation.contact_email,
            idempotency_seed=f"reservation-{reservation.id}",
        )
        reservation.stripe_checkout_session_id = checkout.id
        reservation.stripe_payment_intent_id = checkout.payment_intent_id
        result.checkout_url = checkout.url
        result.checkout_session_id = checkout.id
    elif provider is PaymentProvider.SQUARE and square is not None:
        link = await square.create_payment_link(
            name=label,
            amount=amount,
            redirect_url=success_url,
            reference=f"Reservation #{str(reservation.id)[:8]}",
            buyer_email=reservation.contact_email,
        )
        reservation.square_checkout_id = link.id
        reservation.square_order_id = link.order_id
        result.checkout_url = link.url
        result.checkout_session_id = link.id


async def _rollback_booking(session: AsyncSession, reservation: Reservation) -> None:
    """Undo a booking whose checkout could not be created."""

    try:
        await capacity_service.release_seats(
            session,
            session_id=reservation.session_id,
            quantity=reservation.quantity,
        )
        await session.execute(delete(Reservation).where(Reservation.id == reservation.id))
        await session.commit()
    except Exception:
        logger.exception(
            "Failed to roll back reservation %s after checkout error", reservation.id
        )
        await session.rollback()


async def _sync_client_best_effort(
    session: AsyncSession, reservation: Reservation
) -> None:
    try:
        await client_service.sync_client(
            session,
            email=reservation.guest_email or "",
            full_name=reservation.guest_name,
            phone=reservation.guest_phone,
        )
        await session.commit()
    except Exception:
        logger.exception("Client sync failed for reservation %s", reservation.id)
        await session.rollback()


def _send_confirmation(
    reservation: Reservation, background_tasks: BackgroundTasks | None
) -> None:
    subject, body = notification_service.build_workshop_confirmation_email(reservation)
    notification_service.schedule_email(
        background_tasks,
        recipients=[reservation.contact_email],
        subject=subject,
        body=body,
    )


# --- Reservations ------------------------------------------------------------


async def get_reservation(session: AsyncSession, *, reservation_id: UUID) -> Reservation:
    reservation = await session.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFound("Reservation not found")
    return reservation


async def get_reservation_for_viewer(
    session: AsyncSession, *, reservation_id: UUID, viewer: User | None
) -> Reservation:
    reservation = await get_reservation(session, reservation_id=reservation_id)
    if viewer is not None and viewer.role is UserRole.ADMIN:
        return reservation
    if viewer is None or reservation.user_id != viewer.id:
        raise Forbidden("You do not have access to this reservation")
    return reservation


async def list_user_reservations(
    session: AsyncSession, *, user: User
) -> Sequence[Reservation]:
    stmt = (
        select(Reservation)
        .where(Reservation.user_id == user.id)
        .order_by(Reservation.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def list_reservations(
    session: AsyncSession,
    *,
    workshop_id: UUID | None = None,
    session_id: UUID | None = None,
    status: ReservationStatus | None = None,
) -> Sequence[Reservation]:
    stmt = select(Reservation).order_by(Reservation.created_at)
    if workshop_id is not None:
        stmt = stmt.where(Reservation.workshop_id == workshop_id)
    if session_id is not None:
        stmt = stmt.where(Reservation.session_id == session_id)
    if status is not None:
        stmt = stmt.where(Reservation.status == status)
    return (await session.execute(stmt)).scalars().all()


async def manual_booking(
    session: AsyncSession,
    *,
    workshop_id: UUID,
    session_id: UUID,
    quantity: int,
    guest: GuestContact,
    notes: str | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Admin booking paid at the studio; confirmed immediately."""

    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")
    if not (guest.name and guest.name.strip()):
        raise ValidationFailed("A name is required")
    if guest.email and not client_service.is_valid_email(guest.email):
        raise ValidationFailed("Invalid email address")
    workshop = await get_workshop(
        session, workshop_id=workshop_id, include_inactive=True
    )
    workshop_session = await get_session_for_workshop(
        session, workshop_id=workshop_id, session_id=session_id
    )
    if workshop_session.status is not SessionStatus.SCHEDULED:
        raise ValidationFailed("Session is not open for booking")
    if not await capacity_service.try_reserve_seats(
        session, session_id=session_id, quantity=quantity
    ):
        raise StateConflict(
            f"Only {workshop_session.available_spots} spot(s) left in this session"
        )
    total = _to_money(workshop.price) * quantity
    reservation = Reservation(
        workshop_id=workshop.id,
        session_id=workshop_session.id,
        guest_name=guest.name,
        guest_email=(guest.email or "").strip().lower() or None,
        guest_phone=guest.phone,
        quantity=quantity,
        total_amount=total,
        status=ReservationStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID if total <= 0 else PaymentStatus.UNPAID,
        payment_method=PaymentMethod.FREE if total <= 0 else PaymentMethod.ON_SITE,
        notes=notes,
    )
    reservation.workshop = workshop
    reservation.workshop_session = workshop_session
    reservation.user = None
    session.add(reservation)
    await session.commit()
    if reservation.guest_email:
        await _sync_client_best_effort(session, reservation)
    _send_confirmation(reservation, background_tasks)
    return reservation


async def promote_waitlist(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Move a waitlisted reservation into the session when seats allow."""

    reservation = await get_reservation(session, reservation_id=reservation_id)
    if reservation.status is not ReservationStatus.WAITLIST:
        raise StateConflict("Only waitlisted reservations can be promoted")
    if not await capacity_service.try_reserve_seats(
        session, session_id=reservation.session_id, quantity=reservation.quantity
    ):
        raise StateConflict("Not enough seats available to promote this reservation")
    reservation.status = ReservationStatus.CONFIRMED
    reservation.waitlist_position = None
    now = datetime.now(UTC)
    if reservation.total_amount <= Decimal("0"):
        reservation.payment_status = PaymentStatus.PAID
        reservation.payment_method = PaymentMethod.FREE
        reservation.payment_confirmed_at = now
    elif _gift_card_covers(reservation):
        try:
            await _redeem_held_gift_card(session, reservation)
        except DomainError:
            await session.rollback()
            raise
        reservation.payment_status = PaymentStatus.PAID
        reservation.payment_method = PaymentMethod.GIFT_CARD
        reservation.payment_confirmed_at = now
    else:
        reservation.payment_method = reservation.payment_method or PaymentMethod.ON_SITE
    await session.commit()
    _send_confirmation(reservation, background_tasks)
    return reservation


def _gift_card_covers(reservation: Reservation) -> bool:
    return bool(reservation.gift_card_code) and _to_money(
        reservation.gift_card_amount or 0
    ) >= _to_money(reservation.total_amount)


async def _redeem_held_gift_card(session: AsyncSession, reservation: Reservation) -> None:
    if not reservation.gift_card_code or _to_money(reservation.gift_card_amount or 0) <= 0:
        return
    await gift_card_service.redeem_gift_card(
        session,
        code=reservation.gift_card_code,
        amount=reservation.gift_card_amount,
        reservation_id=reservation.id,
        note=f"Atelier {reservation.workshop.title}",
    )


async def mark_reservation_paid(
    session: AsyncSession, *, reservation_id: UUID
) -> Reservation:
    """Record a payment taken at the studio.

    The gift card the booking carried is debited now, once, against this
    reservation.
    """

    reservation = await get_reservation(session, reservation_id=reservation_id)
    if reservation.status is not ReservationStatus.CONFIRMED:
        raise StateConflict("Only confirmed reservations can be marked paid")
    if reservation.payment_status is PaymentStatus.PAID:
        raise StateConflict("Reservation is already paid")
    await _redeem_held_gift_card(session, reservation)
    reservation.payment_status = PaymentStatus.PAID
    reservation.payment_method = reservation.payment_method or PaymentMethod.ON_SITE
    reservation.payment_confirmed_at = datetime.now(UTC)
    await session.commit()
    logger.info("Reservation %s marked paid on site", reservation.id)
    return reservation


async def cancel_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    reason: str | None = None,
    notify: bool = True,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    return await refund_service.refund_reservation(
        session,
        reservation_id=reservation_id,
        mode=refund_service.RefundMode.CANCEL,
        reason=reason,
        notify=notify,
        stripe=stripe,
        square=square,
        background_tasks=background_tasks,
    )


async def release_stale_holds(
    session: AsyncSession, *, older_than: timedelta
) -> list[Reservation]:
    """Cancel pending reservations whose payment never confirmed."""

    if older_than <= timedelta(0):
        raise ValidationFailed("Age threshold must be positive")
    cutoff = datetime.now(UTC) - older_than
    stmt = select(Reservation).where(
        Reservation.status == ReservationStatus.PENDING,
        Reservation.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED]),
        Reservation.created_at < cutoff,
    )
    stale = (await session.execute(stmt)).scalars().all()
    now = datetime.now(UTC)
    for reservation in stale:
        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_at = now
        reservation.cancellation_reason = "Payment not completed"
        if reservation.payment_status is PaymentStatus.PENDING:
            reservation.payment_status = PaymentStatus.CANCELLED
        await capacity_service.release_seats(
            session,
            session_id=reservation.session_id,
            quantity=reservation.quantity,
        )
    await session.commit()
    if stale:
        logger.info("Released %s stale reservation hold(s)", len(stale))
    return list(stale)
