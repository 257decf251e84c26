"""Direct Square card payments for pending orders and reservations."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import StateConflict, ValidationFailed
from atelier.integrations import SquareClient, SquarePayment
from atelier.models import (
    Order,
    PaymentProvider,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)
from atelier.services import order_service, reconciliation_service, workshop_service

logger = logging.getLogger(__name__)


async def _load_target(
    session: AsyncSession, *, order_id: UUID | None, reservation_id: UUID | None
) -> Order | Reservation:
    if order_id is not None:
        return await order_service.get_order(session, order_id=order_id)
    if reservation_id is not None:
        return await workshop_service.get_reservation(
            session, reservation_id=reservation_id
        )
    raise ValidationFailed("An order or reservation is required")


def amount_due(target: Order | Reservation) -> Decimal:
    """What the gateway has to collect once the gift card share is removed."""

    return Decimal(target.total_amount) - Decimal(target.gift_card_amount or 0)


async def pay_with_square(
    session: AsyncSession,
    *,
    square: SquareClient | None,
    source_id: str,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> tuple[SquarePayment, reconciliation_service.ReconcileResult]:
    """Charge a Web Payments SDK card token for the outstanding amount."""

    if square is None:
        raise ValidationFailed("Square payments are not available")
    target = await _load_target(session, order_id=order_id, reservation_id=reservation_id)
    if target.is_terminal:
        raise StateConflict(f"Cannot pay for a {target.status.value} booking or order")
    if isinstance(target, Reservation) and target.status is ReservationStatus.WAITLIST:
        raise StateConflict("Waitlisted reservations cannot be paid yet")
    if target.payment_status is PaymentStatus.PAID:
        raise StateConflict("Already paid")
    amount = amount_due(target)
    if amount <= Decimal("0"):
        raise ValidationFailed("Nothing left to pay")

    payment = await square.create_payment(
        source_id=source_id,
        amount=amount,
        reference_id=str(target.id),
        note=f"Atelier {str(target.id)[:8]}",
        buyer_email=target.contact_email,
    )
    logger.info("Square payment %s created with status %s", payment.id, payment.status)

    target.square_payment_id = payment.id
    target.payment_provider = PaymentProvider.SQUARE
    if target.payment_status is PaymentStatus.UNPAID:
        target.payment_status = PaymentStatus.PENDING
    await session.commit()

    event = reconciliation_service.event_from_square_payment(
        payment,
        order_id=target.id if isinstance(target, Order) else None,
        reservation_id=target.id if isinstance(target, Reservation) else None,
    )
    result = await reconciliation_service.reconcile(
        session, event, background_tasks=background_tasks
    )
    return payment, result


async def confirm_square_payment(
    session: AsyncSession,
    *,
    square: SquareClient | None,
    payment_id: str,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> tuple[SquarePayment, reconciliation_service.ReconcileResult]:
    """Fetch a payment from Square and run it through the reconciler."""

    if square is None:
        raise ValidationFailed("Square payments are not available")
    if not payment_id.strip():
        raise ValidationFailed("A payment id is required")
    payment = await square.get_payment(payment_id)
    event = reconciliation_service.event_from_square_payment(
        payment, order_id=order_id, reservation_id=reservation_id
    )
    result = await reconciliation_service.reconcile(
        session, event, background_tasks=background_tasks
    )
    return payment, result
