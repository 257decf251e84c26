"""Refund runs: gateway first, then gift card restore, seats and notification."""

from __future__ import annotations

import threading
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from atelier.core.errors import NotFound, StateConflict
from atelier.integrations import SquareClientError, StripeClientError
from atelier.models import (
    GiftCard,
    Order,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    RefundStepStatus,
    RefundTarget,
    ReservationStatus,
    WorkshopSession,
)
from atelier.services import (
    gift_card_service,
    order_service,
    payment_service,
    reconciliation_service,
    refund_service,
    workshop_service,
)

pytestmark = pytest.mark.asyncio

CONTACT = order_service.ContactDetails(
    name="Léa Martin",
    email="lea@example.com",
    address="12 rue des Potiers",
    city="Lyon",
    postal_code="69001",
)


async def _paid_stripe_order(session, make_product, stripe_client, *, gift_card_code=None) -> Order:
    product = await make_product(price="80.00")
    result = await order_service.create_order(
        session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
        gift_card_code=gift_card_code,
        payment_provider=PaymentProvider.STRIPE,
        stripe=stripe_client,
    )
    order = result.order
    await reconciliation_service.reconcile(
        session,
        reconciliation_service.parse_stripe_event(
            {
                "id": f"evt_{order.id}",
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": order.stripe_payment_intent_id}},
            }
        ),
    )
    await session.refresh(order)
    return order


async def _card_balance(session, card_id) -> Decimal:
    card = await session.get(GiftCard, card_id)
    await session.refresh(card)
    return card.balance


def _steps_by_name(steps) -> dict[str, RefundStepStatus]:
    return {step.step: step.status for step in steps}


async def test_refund_returns_money_through_every_tender(
    db_session, make_product, make_gift_card, stripe_client, stripe_sdk
) -> None:
    card = await make_gift_card(amount="30.00")
    order = await _paid_stripe_order(
        db_session, make_product, stripe_client, gift_card_code=card.code
    )
    assert await _card_balance(db_session, card.id) == Decimal("0.00")

    refunded = await refund_service.refund_order(
        db_session,
        order_id=order.id,
        mode=refund_service.RefundMode.REFUND,
        reason="Pièce cassée",
        stripe=stripe_client,
    )

    assert refunded.status is OrderStatus.REFUNDED
    assert refunded.payment_status is PaymentStatus.REFUNDED
    assert refunded.refund_amount == Decimal("80.00")
    assert refunded.refund_details["stripe_refunded"] == 50.0
    assert refunded.refund_details["methods"] == ["Stripe", "Carte cadeau"]
    assert stripe_sdk.refunds[0]["amount"] == 5000
    assert stripe_sdk.refunds[0]["payment_intent"] == order.stripe_payment_intent_id
    assert stripe_sdk.refunds[0]["idempotency_key"] == (
        f"atelier_refund_{order.stripe_payment_intent_id}"
    )
    assert await _card_balance(db_session, card.id) == Decimal("30.00")

    steps = await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert _steps_by_name(steps) == {
        refund_service.GATEWAY_REFUND: RefundStepStatus.SUCCEEDED,
        refund_service.GIFT_CARD_RESTORE: RefundStepStatus.SUCCEEDED,
        refund_service.NOTIFICATION: RefundStepStatus.SKIPPED,
    }


async def test_gateway_failure_leaves_order_untouched(
    db_session, make_product, make_gift_card, stripe_client, stripe_sdk
) -> None:
    card = await make_gift_card(amount="30.00")
    order = await _paid_stripe_order(
        db_session, make_product, stripe_client, gift_card_code=card.code
    )
    stripe_sdk.fail_with = "charge already refunded"

    with pytest.raises(StripeClientError):
        await refund_service.refund_order(
            db_session,
            order_id=order.id,
            mode=refund_service.RefundMode.REFUND,
            stripe=stripe_client,
        )

    await db_session.rollback()
    await db_session.refresh(order)
    assert order.status is OrderStatus.CONFIRMED
    assert order.payment_status is PaymentStatus.PAID
    assert await _card_balance(db_session, card.id) == Decimal("0.00")
    assert await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    ) == []


async def test_missing_stripe_client_for_paid_order_is_a_gateway_error(
    db_session, make_product, stripe_client
) -> None:
    order = await _paid_stripe_order(db_session, make_product, stripe_client)

    with pytest.raises(StripeClientError, match="not configured"):
        await refund_service.refund_order(
            db_session, order_id=order.id, mode=refund_service.RefundMode.CANCEL
        )


async def test_missing_payment_reference_skips_gateway_step(
    db_session, make_product, stripe_client
) -> None:
    order = await _paid_stripe_order(db_session, make_product, stripe_client)
    order.stripe_payment_intent_id = None
    await db_session.commit()

    cancelled = await refund_service.refund_order(
        db_session,
        order_id=order.id,
        mode=refund_service.RefundMode.CANCEL,
        stripe=stripe_client,
    )

    assert cancelled.status is OrderStatus.CANCELLED
    steps = await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert _steps_by_name(steps)[refund_service.GATEWAY_REFUND] is RefundStepStatus.SKIPPED


async def test_failed_gift_card_restore_can_be_retried(
    db_session, make_product, make_gift_card
) -> None:
    product = await make_product(price="24.00")
    card = await make_gift_card(amount="50.00")
    created = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
        gift_card_code=card.code,
    )
    order = created.order
    # Topping the card back up by hand leaves no room for the restore.
    await gift_card_service.update_gift_card(
        db_session, gift_card_id=card.id, balance=Decimal("50.00")
    )

    cancelled = await refund_service.refund_order(
        db_session, order_id=order.id, mode=refund_service.RefundMode.CANCEL
    )

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.payment_status is PaymentStatus.REFUNDED
    assert cancelled.refund_details["gift_card_pending"] == 24.0
    steps = await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert _steps_by_name(steps)[refund_service.GIFT_CARD_RESTORE] is RefundStepStatus.FAILED

    still_blocked = await refund_service.retry_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert [step.status for step in still_blocked] == [RefundStepStatus.FAILED]
    assert still_blocked[0].attempts == 2

    await gift_card_service.update_gift_card(
        db_session, gift_card_id=card.id, balance=Decimal("20.00")
    )
    retried = await refund_service.retry_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )

    assert [step.status for step in retried] == [RefundStepStatus.SUCCEEDED]
    assert retried[0].attempts == 3
    await db_session.refresh(order)
    assert order.refund_amount == Decimal("24.00")
    assert "gift_card_pending" not in order.refund_details
    assert order.refund_details["gift_card_refunded"] == 24.0
    assert "Carte cadeau" in order.refund_details["methods"]
    assert await _card_balance(db_session, card.id) == Decimal("44.00")


async def test_restore_error_after_gateway_refund_is_recorded(
    db_session, make_product, make_gift_card, stripe_client, stripe_sdk, monkeypatch
) -> None:
    card = await make_gift_card(amount="30.00")
    order = await _paid_stripe_order(
        db_session, make_product, stripe_client, gift_card_code=card.code
    )

    async def _locked(*args, **kwargs):
        raise OperationalError("UPDATE gift_cards", {}, Exception("database is locked"))

    monkeypatch.setattr(gift_card_service, "restore_gift_card", _locked)
    cancelled = await refund_service.refund_order(
        db_session,
        order_id=order.id,
        mode=refund_service.RefundMode.CANCEL,
        stripe=stripe_client,
    )

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.payment_status is PaymentStatus.REFUNDED
    assert cancelled.refund_details["stripe_refunded"] == 50.0
    assert cancelled.refund_details["gift_card_pending"] == 30.0
    assert len(stripe_sdk.refunds) == 1
    assert await _card_balance(db_session, card.id) == Decimal("0.00")
    steps = await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert _steps_by_name(steps)[refund_service.GIFT_CARD_RESTORE] is RefundStepStatus.FAILED

    with pytest.raises(StateConflict):
        await refund_service.refund_order(
            db_session,
            order_id=order.id,
            mode=refund_service.RefundMode.CANCEL,
            stripe=stripe_client,
        )
    assert len(stripe_sdk.refunds) == 1

    monkeypatch.undo()
    retried = await refund_service.retry_refund_steps(
        db_session, target_kind=RefundTarget.ORDER, target_id=order.id
    )
    assert [step.status for step in retried] == [RefundStepStatus.SUCCEEDED]
    assert await _card_balance(db_session, card.id) == Decimal("30.00")


async def test_refunding_a_refunded_order_is_rejected(
    db_session, make_product, stripe_client, stripe_sdk
) -> None:
    order = await _paid_stripe_order(db_session, make_product, stripe_client)
    await refund_service.refund_order(
        db_session,
        order_id=order.id,
        mode=refund_service.RefundMode.REFUND,
        stripe=stripe_client,
    )

    with pytest.raises(StateConflict, match="already refunded"):
        await refund_service.refund_order(
            db_session,
            order_id=order.id,
            mode=refund_service.RefundMode.REFUND,
            stripe=stripe_client,
        )
    assert len(stripe_sdk.refunds) == 1
    await db_session.refresh(order)
    assert order.refund_amount == Decimal("80.00")


async def test_retry_unknown_target(db_session) -> None:
    with pytest.raises(NotFound):
        await refund_service.retry_refund_steps(
            db_session, target_kind=RefundTarget.RESERVATION, target_id=uuid.uuid4()
        )


async def _square_paid_reservation(session, make_workshop, square_client):
    workshop, slot = await make_workshop(capacity=4)
    booking = await workshop_service.book_workshop(
        session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=2,
        user=None,
        guest=workshop_service.GuestContact(name="Léa", email="lea@example.com"),
    )
    reservation = booking.reservation
    await payment_service.pay_with_square(
        session,
        square=square_client,
        source_id="cnon:card-nonce-ok",
        reservation_id=reservation.id,
    )
    await session.refresh(reservation)
    return reservation, slot


async def test_square_reservation_refund_releases_seats(
    db_session, make_workshop, square_client, square_stub
) -> None:
    reservation, slot = await _square_paid_reservation(
        db_session, make_workshop, square_client
    )
    assert reservation.payment_status is PaymentStatus.PAID

    refunded = await refund_service.refund_reservation(
        db_session,
        reservation_id=reservation.id,
        mode=refund_service.RefundMode.REFUND,
        reason="Atelier annulé",
        square=square_client,
    )

    assert refunded.status is ReservationStatus.REFUNDED
    assert refunded.cancellation_reason == "Atelier annulé"
    assert refunded.refund_details["square_refunded"] == 90.0
    refund_call = square_stub.calls("POST", "/v2/refunds")[0]
    assert refund_call["payment_id"] == reservation.square_payment_id
    assert refund_call["amount_money"] == {"amount": 9000, "currency": "EUR"}
    assert refund_call["idempotency_key"] == f"refund-{reservation.square_payment_id}"
    workshop_session = await db_session.get(WorkshopSession, slot.id)
    await db_session.refresh(workshop_session)
    assert workshop_session.booked_count == 0

    steps = await refund_service.list_refund_steps(
        db_session, target_kind=RefundTarget.RESERVATION, target_id=reservation.id
    )
    assert _steps_by_name(steps)[refund_service.CAPACITY_RELEASE] is RefundStepStatus.SUCCEEDED


async def test_square_refund_failure_keeps_seats_and_retry_reuses_key(
    db_session, make_workshop, square_client, square_stub
) -> None:
    reservation, slot = await _square_paid_reservation(
        db_session, make_workshop, square_client
    )
    square_stub.fail_refunds = True

    with pytest.raises(SquareClientError, match="Refund declined"):
        await refund_service.refund_reservation(
            db_session,
            reservation_id=reservation.id,
            mode=refund_service.RefundMode.CANCEL,
            square=square_client,
        )

    await db_session.rollback()
    await db_session.refresh(reservation)
    assert reservation.status is ReservationStatus.CONFIRMED
    workshop_session = await db_session.get(WorkshopSession, slot.id)
    await db_session.refresh(workshop_session)
    assert workshop_session.booked_count == 2

    square_stub.fail_refunds = False
    await refund_service.refund_reservation(
        db_session,
        reservation_id=reservation.id,
        mode=refund_service.RefundMode.CANCEL,
        square=square_client,
    )
    keys = [call["idempotency_key"] for call in square_stub.calls("POST", "/v2/refunds")]
    assert keys == [f"refund-{reservation.square_payment_id}"] * 2


async def test_stripe_refund_runs_off_the_event_loop(
    db_session, make_product, stripe_client, stripe_sdk, monkeypatch
) -> None:
    order = await _paid_stripe_order(db_session, make_product, stripe_client)
    create_refund = stripe_sdk.Refund.create
    threads: list[threading.Thread] = []

    def _recording_create(**kwargs):
        threads.append(threading.current_thread())
        return create_refund(**kwargs)

    monkeypatch.setattr(stripe_sdk.Refund, "create", _recording_create)

    await refund_service.refund_order(
        db_session,
        order_id=order.id,
        mode=refund_service.RefundMode.REFUND,
        stripe=stripe_client,
    )

    assert len(threads) == 1
    assert threads[0] is not threading.current_thread()
