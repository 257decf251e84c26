"""Refund orchestration for orders and workshop reservations.

A refund runs as a short saga. The gateway refund goes first because it is
the only step that cannot be compensated locally; when it fails nothing has
been changed yet. The gift card restore, seat release and notification
follow, and every step is written to the ``refund_steps`` log. A failed
gift card restore does not undo the gateway refund: it is left as a failed
step that :func:`retry_refund_steps` can pick up later.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Final
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import NotFound, StateConflict
from atelier.integrations import (
    SquareClient,
    SquareClientError,
    StripeClient,
    StripeClientError,
)
from atelier.models import (
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    RefundStep,
    RefundStepStatus,
    RefundTarget,
    Reservation,
    ReservationStatus,
)
from atelier.services import capacity_service, gift_card_service, notification_service

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")
_ZERO: Final = Decimal("0.00")

GATEWAY_REFUND: Final = "gateway_refund"
GIFT_CARD_RESTORE: Final = "gift_card_restore"
CAPACITY_RELEASE: Final = "capacity_release"
NOTIFICATION: Final = "notification"

GIFT_CARD_LABEL: Final = "Carte cadeau"
_GATEWAY_LABELS: Final = {
    PaymentProvider.STRIPE: "Stripe",
    PaymentProvider.SQUARE: "Square",
}


class RefundMode(str, enum.Enum):
    CANCEL = "cancel"
    REFUND = "refund"


@dataclass(slots=True)
class _RefundOutcome:
    provider: PaymentProvider | None = None
    gateway_refunded: Decimal = _ZERO
    gift_card_refunded: Decimal = _ZERO
    gift_card_pending: Decimal = _ZERO
    steps: list[RefundStep] = field(default_factory=list)

    @property
    def total_refunded(self) -> Decimal:
        return self.gateway_refunded + self.gift_card_refunded

    @property
    def anything_refunded(self) -> bool:
        return self.total_refunded > 0 or self.gift_card_pending > 0


def _to_money(value: Decimal | float | str | int | None) -> Decimal:
    return Decimal(value or 0).quantize(_CURRENCY_UNIT, rounding=ROUND_HALF_UP)


def _target_kind(target: Order | Reservation) -> RefundTarget:
    return RefundTarget.ORDER if isinstance(target, Order) else RefundTarget.RESERVATION


def _target_refs(target: Order | Reservation) -> dict[str, UUID | None]:
    if isinstance(target, Order):
        return {"order_id": target.id, "reservation_id": None}
    return {"order_id": None, "reservation_id": target.id}


def _step(
    target: Order | Reservation,
    name: str,
    status: RefundStepStatus,
    *,
    amount: Decimal | None = None,
    gift_card_id: UUID | None = None,
    detail: str | None = None,
) -> RefundStep:
    return RefundStep(
        target_kind=_target_kind(target),
        target_id=target.id,
        step=name,
        status=status,
        amount=amount,
        gift_card_id=gift_card_id,
        detail=detail,
        attempts=1,
    )


def _gateway_provider(target: Order | Reservation) -> PaymentProvider | None:
    if target.payment_provider is not None:
        return target.payment_provider
    if target.payment_method is PaymentMethod.STRIPE:
        return PaymentProvider.STRIPE
    if target.payment_method is PaymentMethod.SQUARE:
        return PaymentProvider.SQUARE
    return None


async def _refund_with_stripe(
    target: Order | Reservation,
    stripe: StripeClient | None,
    amount: Decimal,
    reason: str | None,
) -> dict[str, Any] | None:
    if stripe is None:
        raise StripeClientError("Stripe is not configured")
    intent_id = target.stripe_payment_intent_id
    if not intent_id and target.stripe_checkout_session_id:
        checkout = await stripe.retrieve_checkout_session(
            target.stripe_checkout_session_id
        )
        intent_id = checkout.payment_intent_id
        target.stripe_payment_intent_id = intent_id
    if not intent_id:
        return None
    return await stripe.refund_payment_intent(intent_id, amount=amount, reason=reason)


async def _refund_with_square(
    target: Order | Reservation,
    square: SquareClient | None,
    amount: Decimal,
    reason: str | None,
) -> dict[str, Any] | None:
    if square is None:
        raise SquareClientError("Square is not configured")
    if not target.square_payment_id:
        return None
    return await square.refund_payment(
        target.square_payment_id, amount=amount, reason=reason
    )


async def _run_refund(
    session: AsyncSession,
    target: Order | Reservation,
    *,
    reason: str | None,
    stripe: StripeClient | None,
    square: SquareClient | None,
) -> _RefundOutcome:
    outcome = _RefundOutcome()
    refs = _target_refs(target)

    usage = await gift_card_service.usage_for_target(session, **refs)
    redeemed = _to_money(-usage.amount) if usage is not None else _ZERO

    gateway_amount = _to_money(target.total_amount) - _to_money(target.gift_card_amount)
    provider = _gateway_provider(target)
    if (
        target.payment_status is PaymentStatus.PAID
        and provider is not None
        and gateway_amount > 0
    ):
        if provider is PaymentProvider.STRIPE:
            refund = await _refund_with_stripe(target, stripe, gateway_amount, reason)
        else:
            refund = await _refund_with_square(target, square, gateway_amount, reason)
        if refund is None:
            logger.warning(
                "No %s payment reference on %s %s; gateway refund skipped",
                provider.value,
                _target_kind(target).value,
                target.id,
            )
            outcome.steps.append(
                _step(
                    target,
                    GATEWAY_REFUND,
                    RefundStepStatus.SKIPPED,
                    amount=gateway_amount,
                    detail="Missing payment reference",
                )
            )
        else:
            outcome.provider = provider
            outcome.gateway_refunded = gateway_amount
            outcome.steps.append(
                _step(
                    target,
                    GATEWAY_REFUND,
                    RefundStepStatus.SUCCEEDED,
                    amount=gateway_amount,
                    detail=str(refund.get("id") or ""),
                )
            )

    if usage is not None and redeemed > 0:
        # The gateway refund has already gone out; any restore error becomes
        # a failed step.
        try:
            async with session.begin_nested():
                await gift_card_service.restore_gift_card(
                    session,
                    gift_card_id=usage.gift_card_id,
                    amount=redeemed,
                    note=reason or "Refund",
                    **refs,
                )
        except Exception as exc:
            logger.exception(
                "Gift card restore failed for %s %s",
                _target_kind(target).value,
                target.id,
            )
            outcome.gift_card_pending = redeemed
            outcome.steps.append(
                _step(
                    target,
                    GIFT_CARD_RESTORE,
                    RefundStepStatus.FAILED,
                    amount=redeemed,
                    gift_card_id=usage.gift_card_id,
                    detail=str(exc),
                )
            )
        else:
            outcome.gift_card_refunded = redeemed
            outcome.steps.append(
                _step(
                    target,
                    GIFT_CARD_RESTORE,
                    RefundStepStatus.SUCCEEDED,
                    amount=redeemed,
                    gift_card_id=usage.gift_card_id,
                )
            )
    return outcome


def _refund_details(outcome: _RefundOutcome) -> dict[str, Any]:
    details: dict[str, Any] = {
        "total_refunded": float(outcome.total_refunded),
        "gateway_refunded": float(outcome.gateway_refunded),
        "gift_card_refunded": float(outcome.gift_card_refunded),
        "methods": [],
    }
    if outcome.provider is not None and outcome.gateway_refunded > 0:
        details[f"{outcome.provider.value}_refunded"] = float(outcome.gateway_refunded)
        details["methods"].append(_GATEWAY_LABELS[outcome.provider])
    if outcome.gift_card_refunded > 0:
        details["methods"].append(GIFT_CARD_LABEL)
    if outcome.gift_card_pending > 0:
        details["gift_card_pending"] = float(outcome.gift_card_pending)
    return details


def _apply_outcome(
    target: Order | Reservation, outcome: _RefundOutcome, reason: str | None
) -> None:
    now = datetime.now(UTC)
    if outcome.anything_refunded:
        target.payment_status = PaymentStatus.REFUNDED
        target.refund_amount = outcome.total_refunded
        target.refunded_at = now
    elif target.payment_status in (PaymentStatus.UNPAID, PaymentStatus.PENDING):
        target.payment_status = PaymentStatus.CANCELLED
    target.refund_reason = reason
    target.refund_details = _refund_details(outcome)


def _notify(
    target: Order | Reservation,
    *,
    reason: str | None,
    background_tasks: BackgroundTasks | None,
) -> RefundStep:
    try:
        if isinstance(target, Order):
            subject, body = notification_service.build_order_refund_email(
                target, reason=reason
            )
        else:
            subject, body = notification_service.build_workshop_cancellation_email(
                target, reason=reason
            )
        scheduled = notification_service.schedule_email(
            background_tasks,
            recipients=[target.contact_email],
            subject=subject,
            body=body,
        )
    except Exception as exc:
        logger.exception("Failed to prepare refund email for %s", target.id)
        return _step(target, NOTIFICATION, RefundStepStatus.FAILED, detail=str(exc))
    return _step(
        target,
        NOTIFICATION,
        RefundStepStatus.SUCCEEDED if scheduled else RefundStepStatus.SKIPPED,
    )


async def refund_order(
    session: AsyncSession,
    *,
    order_id: UUID,
    mode: RefundMode,
    reason: str | None = None,
    notify: bool = True,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Order:
    """Cancel or refund an order, returning money through every tender used."""

    order = await session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.is_terminal:
        raise StateConflict(f"Order is already {order.status.value}")

    outcome = await _run_refund(
        session, order, reason=reason, stripe=stripe, square=square
    )
    order.status = (
        OrderStatus.CANCELLED if mode is RefundMode.CANCEL else OrderStatus.REFUNDED
    )
    _apply_outcome(order, outcome, reason)
    if notify:
        outcome.steps.append(
            _notify(order, reason=reason, background_tasks=background_tasks)
        )
    session.add_all(outcome.steps)
    await session.commit()
    logger.info(
        "Order %s %s; refunded %s",
        order.id,
        order.status.value,
        outcome.total_refunded,
    )
    return order


async def refund_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    mode: RefundMode,
    reason: str | None = None,
    notify: bool = True,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Cancel or refund a reservation and give its seats back."""

    reservation = await session.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFound("Reservation not found")
    if reservation.is_terminal:
        raise StateConflict(f"Reservation is already {reservation.status.value}")

    now = datetime.now(UTC)
    if reservation.status is ReservationStatus.WAITLIST:
        reservation.status = ReservationStatus.CANCELLED
        reservation.waitlist_position = None
        reservation.cancelled_at = now
        reservation.cancellation_reason = reason
        if reservation.payment_status in (PaymentStatus.UNPAID, PaymentStatus.PENDING):
            reservation.payment_status = PaymentStatus.CANCELLED
        await session.commit()
        return reservation

    held_seats = reservation.holds_seats
    outcome = await _run_refund(
        session, reservation, reason=reason, stripe=stripe, square=square
    )
    reservation.status = (
        ReservationStatus.CANCELLED
        if mode is RefundMode.CANCEL
        else ReservationStatus.REFUNDED
    )
    reservation.cancelled_at = now
    reservation.cancellation_reason = reason
    _apply_outcome(reservation, outcome, reason)

    if held_seats:
        await capacity_service.release_seats(
            session,
            session_id=reservation.session_id,
            quantity=reservation.quantity,
        )
        outcome.steps.append(
            _step(
                reservation,
                CAPACITY_RELEASE,
                RefundStepStatus.SUCCEEDED,
                detail=f"{reservation.quantity} seat(s)",
            )
        )
    if notify:
        outcome.steps.append(
            _notify(reservation, reason=reason, background_tasks=background_tasks)
        )
    session.add_all(outcome.steps)
    await session.commit()
    logger.info(
        "Reservation %s %s; refunded %s",
        reservation.id,
        reservation.status.value,
        outcome.total_refunded,
    )
    return reservation


async def list_refund_steps(
    session: AsyncSession, *, target_kind: RefundTarget, target_id: UUID
) -> Sequence[RefundStep]:
    stmt = (
        select(RefundStep)
        .where(RefundStep.target_kind == target_kind, RefundStep.target_id == target_id)
        .order_by(RefundStep.created_at)
    )
    return (await session.execute(stmt)).scalars().all()


async def retry_refund_steps(
    session: AsyncSession, *, target_kind: RefundTarget, target_id: UUID
) -> Sequence[RefundStep]:
    """Re-run failed gift card restores for a cancelled or refunded target."""

    target: Order | Reservation | None
    if target_kind is RefundTarget.ORDER:
        target = await session.get(Order, target_id)
    else:
        target = await session.get(Reservation, target_id)
    if target is None:
        raise NotFound(f"{target_kind.value.capitalize()} not found")

    stmt = select(RefundStep).where(
        RefundStep.target_kind == target_kind,
        RefundStep.target_id == target_id,
        RefundStep.step == GIFT_CARD_RESTORE,
        RefundStep.status == RefundStepStatus.FAILED,
    )
    steps = (await session.execute(stmt)).scalars().all()
    details = dict(target.refund_details or {})
    for step in steps:
        step.attempts += 1
        if step.gift_card_id is None or step.amount is None:
            step.detail = "Missing gift card reference"
            continue
        try:
            async with session.begin_nested():
                await gift_card_service.restore_gift_card(
                    session,
                    gift_card_id=step.gift_card_id,
                    amount=step.amount,
                    note="Refund retry",
                    **_target_refs(target),
                )
        except Exception as exc:
            logger.warning("Gift card restore retry failed for %s: %s", target_id, exc)
            step.detail = str(exc)
            continue
        step.status = RefundStepStatus.SUCCEEDED
        step.detail = None
        restored = _to_money(step.amount)
        pending = _to_money(details.pop("gift_card_pending", 0)) - restored
        if pending > 0:
            details["gift_card_pending"] = float(pending)
        details["gift_card_refunded"] = float(
            _to_money(details.get("gift_card_refunded")) + restored
        )
        details["total_refunded"] = float(
            _to_money(details.get("total_refunded")) + restored
        )
        methods = list(details.get("methods") or [])
        if GIFT_CARD_LABEL not in methods:
            methods.append(GIFT_CARD_LABEL)
        details["methods"] = methods
        target.refund_amount = _to_money(target.refund_amount) + restored
        target.refunded_at = target.refunded_at or datetime.now(UTC)
    target.refund_details = details
    await session.commit()
    return steps
