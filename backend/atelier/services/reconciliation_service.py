"""Provider webhook parsing and payment reconciliation."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from fastapi import BackgroundTasks
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import DomainError
from atelier.integrations import SquarePayment
from atelier.models import (
    GiftCard,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    RefundTarget,
    Reservation,
    ReservationStatus,
    WebhookEvent,
)
from atelier.services import gift_card_service, notification_service

logger = logging.getLogger(__name__)

PROCESSED = "processed"
UNMATCHED = "unmatched"
IGNORED = "ignored"
DUPLICATE = "duplicate"
GIFT_CARD_REDEEM_FAILED = "gift_card_redeem_failed"


class EventKind(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    """Provider-neutral view of a payment callback."""

    provider: PaymentProvider
    event_id: str
    event_type: str
    kind: EventKind
    payment_id: str | None = None
    checkout_id: str | None = None
    provider_order_id: str | None = None
    order_id: UUID | None = None
    reservation_id: UUID | None = None
    gift_card_id: UUID | None = None
    failure_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ReconcileResult:
    outcome: str
    target_kind: RefundTarget | None = None
    target_id: UUID | None = None
    gift_card_id: UUID | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.outcome}
        if self.target_kind is not None:
            payload["target"] = self.target_kind.value
            payload["target_id"] = str(self.target_id)
        if self.gift_card_id is not None:
            payload["gift_card_id"] = str(self.gift_card_id)
        return payload


def _as_uuid(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


# --- Stripe ------------------------------------------------------------------

_STRIPE_KINDS = {
    "checkout.session.completed": EventKind.SUCCEEDED,
    "checkout.session.async_payment_succeeded": EventKind.SUCCEEDED,
    "checkout.session.expired": EventKind.CANCELLED,
    "checkout.session.async_payment_failed": EventKind.FAILED,
    "payment_intent.succeeded": EventKind.SUCCEEDED,
    "payment_intent.payment_failed": EventKind.FAILED,
    "payment_intent.canceled": EventKind.CANCELLED,
}


def parse_stripe_event(payload: dict[str, Any]) -> PaymentEvent:
    event_type = str(payload.get("type") or "")
    data_object: dict[str, Any] = (payload.get("data") or {}).get("object") or {}
    metadata: dict[str, Any] = data_object.get("metadata") or {}
    kind = _STRIPE_KINDS.get(event_type, EventKind.IGNORED)

    payment_id: str | None
    checkout_id: str | None = None
    failure_reason: str | None = None
    if event_type.startswith("checkout.session."):
        checkout_id = data_object.get("id")
        payment_id = data_object.get("payment_intent")
        if (
            event_type == "checkout.session.completed"
            and data_object.get("payment_status") == "unpaid"
        ):
            # Delayed payment methods settle through async_payment_succeeded.
            kind = EventKind.IGNORED
    else:
        payment_id = data_object.get("id") if event_type.startswith("payment_intent.") else None
        error = data_object.get("last_payment_error") or {}
        failure_reason = error.get("message")

    return PaymentEvent(
        provider=PaymentProvider.STRIPE,
        event_id=str(payload.get("id") or f"stripe-{uuid4().hex}"),
        event_type=event_type,
        kind=kind,
        payment_id=payment_id,
        checkout_id=checkout_id,
        order_id=_as_uuid(metadata.get("order_id")),
        reservation_id=_as_uuid(metadata.get("reservation_id")),
        gift_card_id=_as_uuid(metadata.get("gift_card_id")),
        failure_reason=failure_reason,
        raw=payload,
    )


# --- Square ------------------------------------------------------------------

_SQUARE_PAYMENT_KINDS = {
    "COMPLETED": EventKind.SUCCEEDED,
    "FAILED": EventKind.FAILED,
    "CANCELED": EventKind.CANCELLED,
}


def parse_square_event(payload: dict[str, Any]) -> PaymentEvent:
    event_type = str(payload.get("type") or "")
    data_object: dict[str, Any] = (payload.get("data") or {}).get("object") or {}
    event_id = str(payload.get("event_id") or f"square-{uuid4().hex}")

    kind = EventKind.IGNORED
    payment_id = checkout_id = provider_order_id = None
    reference: UUID | None = None
    if event_type.startswith("payment."):
        payment = data_object.get("payment") or {}
        kind = _SQUARE_PAYMENT_KINDS.get(str(payment.get("status")), EventKind.IGNORED)
        payment_id = payment.get("id")
        provider_order_id = payment.get("order_id")
        reference = _as_uuid(payment.get("reference_id"))
    elif event_type == "order.updated":
        order = data_object.get("order_updated") or data_object.get("order") or {}
        provider_order_id = order.get("order_id") or order.get("id")
        if order.get("state") == "COMPLETED":
            kind = EventKind.SUCCEEDED
    elif event_type == "checkout.completed":
        checkout = data_object.get("checkout") or {}
        checkout_id = checkout.get("id")
        provider_order_id = checkout.get("order_id")
        kind = EventKind.SUCCEEDED

    return PaymentEvent(
        provider=PaymentProvider.SQUARE,
        event_id=event_id,
        event_type=event_type,
        kind=kind,
        payment_id=payment_id,
        checkout_id=checkout_id,
        provider_order_id=provider_order_id,
        order_id=reference,
        reservation_id=reference,
        raw=payload,
    )


def event_from_square_payment(
    payment: SquarePayment,
    *,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
) -> PaymentEvent:
    """Build an event from a payment fetched or created through the API."""

    return PaymentEvent(
        provider=PaymentProvider.SQUARE,
        event_id=f"square-payment-{payment.id}-{payment.status.lower()}",
        event_type="payment.confirmed",
        kind=_SQUARE_PAYMENT_KINDS.get(payment.status, EventKind.IGNORED),
        payment_id=payment.id,
        provider_order_id=payment.order_id,
        order_id=order_id or _as_uuid(payment.reference_id),
        reservation_id=reservation_id or _as_uuid(payment.reference_id),
        raw={
            "payment": {
                "id": payment.id,
                "status": payment.status,
                "order_id": payment.order_id,
                "amount": payment.amount_cents,
                "reference_id": payment.reference_id,
            }
        },
    )


# --- Matching ----------------------------------------------------------------


def _reference_filters(model: type[Order] | type[Reservation], event: PaymentEvent) -> list[Any]:
    filters: list[Any] = []
    if event.provider is PaymentProvider.STRIPE:
        if event.payment_id:
            filters.append(model.stripe_payment_intent_id == event.payment_id)
        if event.checkout_id:
            filters.append(model.stripe_checkout_session_id == event.checkout_id)
    else:
        if event.payment_id:
            filters.append(model.square_payment_id == event.payment_id)
        if event.checkout_id:
            filters.append(model.square_checkout_id == event.checkout_id)
        if event.provider_order_id:
            filters.append(model.square_order_id == event.provider_order_id)
    return filters


async def _match_order(session: AsyncSession, event: PaymentEvent) -> Order | None:
    filters = _reference_filters(Order, event)
    if event.order_id is not None:
        filters.append(Order.id == event.order_id)
    if not filters:
        return None
    stmt = select(Order).where(or_(*filters)).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def _match_reservation(
    session: AsyncSession, event: PaymentEvent
) -> Reservation | None:
    filters = _reference_filters(Reservation, event)
    if event.reservation_id is not None:
        filters.append(Reservation.id == event.reservation_id)
    if not filters:
        return None
    stmt = select(Reservation).where(or_(*filters)).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def _match_gift_card(session: AsyncSession, event: PaymentEvent) -> GiftCard | None:
    if event.gift_card_id is not None:
        return await session.get(GiftCard, event.gift_card_id)
    if event.provider is PaymentProvider.STRIPE and event.checkout_id:
        stmt = select(GiftCard).where(
            GiftCard.stripe_checkout_session_id == event.checkout_id
        )
        return (await session.execute(stmt)).scalar_one_or_none()
    return None


# --- Applying ----------------------------------------------------------------


def _store_references(target: Order | Reservation, event: PaymentEvent) -> None:
    if event.provider is PaymentProvider.STRIPE:
        if event.payment_id and not target.stripe_payment_intent_id:
            target.stripe_payment_intent_id = event.payment_id
        if event.checkout_id and not target.stripe_checkout_session_id:
            target.stripe_checkout_session_id = event.checkout_id
    else:
        if event.payment_id:
            target.square_payment_id = event.payment_id
        if event.provider_order_id and not target.square_order_id:
            target.square_order_id = event.provider_order_id


async def _redeem_deferred_gift_card(
    session: AsyncSession, target: Order | Reservation
) -> bool:
    if not target.gift_card_code or (target.gift_card_amount or Decimal("0")) <= 0:
        return True
    refs = (
        {"order_id": target.id}
        if isinstance(target, Order)
        else {"reservation_id": target.id}
    )
    try:
        await gift_card_service.redeem_gift_card(
            session,
            code=target.gift_card_code,
            amount=target.gift_card_amount,
            note=f"Paiement {str(target.id)[:8]}",
            **refs,
        )
    except DomainError:
        logger.exception(
            "Deferred gift card redemption failed for %s %s", type(target).__name__, target.id
        )
        return False
    return True


async def _apply_success(
    session: AsyncSession, target: Order | Reservation, event: PaymentEvent
) -> tuple[str, bool]:
    """Returns the outcome and whether this event newly confirmed the payment."""

    if target.is_terminal:
        logger.warning(
            "Payment success for %s %s which is already %s",
            type(target).__name__,
            target.id,
            target.status.value,
        )
        return IGNORED, False

    _store_references(target, event)
    newly_paid = target.payment_status is not PaymentStatus.PAID
    outcome = PROCESSED
    if not await _redeem_deferred_gift_card(session, target):
        outcome = GIFT_CARD_REDEEM_FAILED

    target.payment_status = PaymentStatus.PAID
    target.payment_provider = event.provider
    target.payment_method = PaymentMethod(event.provider.value)
    if target.payment_confirmed_at is None:
        target.payment_confirmed_at = datetime.now(UTC)
    if isinstance(target, Order):
        if target.status is OrderStatus.PENDING:
            target.status = OrderStatus.CONFIRMED
    elif target.status is ReservationStatus.PENDING:
        target.status = ReservationStatus.CONFIRMED
    return outcome, newly_paid


def _apply_failure(target: Order | Reservation, event: PaymentEvent) -> str:
    if target.payment_status is PaymentStatus.PAID or target.is_terminal:
        return IGNORED
    _store_references(target, event)
    target.payment_status = (
        PaymentStatus.CANCELLED
        if event.kind is EventKind.CANCELLED
        else PaymentStatus.FAILED
    )
    if event.failure_reason:
        logger.info(
            "Payment failed for %s %s: %s",
            type(target).__name__,
            target.id,
            event.failure_reason,
        )
    return PROCESSED


async def _already_recorded(session: AsyncSession, event: PaymentEvent) -> bool:
    stmt = select(WebhookEvent.id).where(
        WebhookEvent.provider_event_id == event.event_id
    )
    return (await session.execute(stmt)).first() is not None


async def reconcile(
    session: AsyncSession,
    event: PaymentEvent,
    *,
    background_tasks: BackgroundTasks | None = None,
) -> ReconcileResult:
    """Apply a provider event to the matching order, reservation or gift card.

    Every event is recorded once; replays are answered as duplicates without
    touching any state.
    """

    if await _already_recorded(session, event):
        return ReconcileResult(DUPLICATE)

    result = ReconcileResult(IGNORED)
    emails: list[tuple[list[str | None], tuple[str, str]]] = []

    if event.kind is not EventKind.IGNORED:
        order = await _match_order(session, event)
        reservation = None if order is not None else await _match_reservation(session, event)
        if order is not None or reservation is not None:
            target: Order | Reservation = order if order is not None else reservation  # type: ignore[assignment]
            result.target_kind = (
                RefundTarget.ORDER if order is not None else RefundTarget.RESERVATION
            )
            result.target_id = target.id
            if event.kind is EventKind.SUCCEEDED:
                result.outcome, newly_paid = await _apply_success(session, target, event)
                if newly_paid and isinstance(target, Reservation):
                    emails.append(
                        (
                            [target.contact_email],
                            notification_service.build_workshop_confirmation_email(target),
                        )
                    )
            else:
                result.outcome = _apply_failure(target, event)
        else:
            card = await _match_gift_card(session, event)
            if card is not None:
                result.gift_card_id = card.id
                if event.kind is EventKind.SUCCEEDED and card.delivered_at is None:
                    card.delivered_at = datetime.now(UTC)
                    if event.checkout_id:
                        card.stripe_checkout_session_id = event.checkout_id
                    emails.append(
                        (
                            [card.recipient_email or card.purchaser_email],
                            notification_service.build_gift_card_email(card),
                        )
                    )
                    result.outcome = PROCESSED
                elif event.kind is not EventKind.SUCCEEDED:
                    logger.info(
                        "Gift card %s checkout ended without payment (%s)",
                        card.id,
                        event.event_type,
                    )
            else:
                logger.warning(
                    "Unmatched %s event %s (%s)",
                    event.provider.value,
                    event.event_id,
                    event.event_type,
                )
                result.outcome = UNMATCHED

    session.add(
        WebhookEvent(
            provider=event.provider,
            provider_event_id=event.event_id,
            event_type=event.event_type,
            outcome=result.outcome,
            target_kind=result.target_kind,
            target_id=result.target_id or result.gift_card_id,
            raw=event.raw,
        )
    )
    try:
        await session.commit()
    except IntegrityError:
        # Another delivery of the same event committed first.
        await session.rollback()
        return ReconcileResult(DUPLICATE)

    for recipients, (subject, body) in emails:
        notification_service.schedule_email(
            background_tasks, recipients=recipients, subject=subject, body=body
        )
    return result
