"""Checkout, status transitions and order export."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from atelier.core.errors import (
    NotFound,
    PaymentGatewayError,
    StateConflict,
    ValidationFailed,
)
from atelier.models import (
    GiftCard,
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
)
from atelier.services import gift_card_service, order_service

pytestmark = pytest.mark.asyncio

CONTACT = order_service.ContactDetails(
    name="Léa Martin",
    email="Lea.Martin@example.com",
    address="12 rue des Potiers",
    city="Lyon",
    postal_code="69001",
)


async def test_guest_checkout_requires_shipping_details(db_session, make_product) -> None:
    product = await make_product()

    with pytest.raises(ValidationFailed, match="address, city"):
        await order_service.create_order(
            db_session,
            items=[order_service.CartLine(product_id=product.id, quantity=1)],
            user=None,
            contact=order_service.ContactDetails(name="Léa", email="lea@example.com"),
        )


async def test_checkout_rejects_empty_cart_and_unknown_products(
    db_session, make_product
) -> None:
    with pytest.raises(ValidationFailed, match="empty"):
        await order_service.create_order(db_session, items=[], user=None, contact=CONTACT)

    product = await make_product()
    with pytest.raises(ValidationFailed):
        await order_service.create_order(
            db_session,
            items=[order_service.CartLine(product_id=product.id, quantity=0)],
            user=None,
            contact=CONTACT,
        )
    with pytest.raises(NotFound):
        await order_service.create_order(
            db_session,
            items=[order_service.CartLine(product_id=uuid.uuid4(), quantity=1)],
            user=None,
            contact=CONTACT,
        )


async def test_prices_come_from_catalog(db_session, make_product) -> None:
    mug = await make_product(title="Mug", price="18.50")
    bowl = await make_product(title="Bol", price="24.00")

    result = await order_service.create_order(
        db_session,
        items=[
            order_service.CartLine(product_id=mug.id, quantity=2),
            order_service.CartLine(product_id=bowl.id, quantity=1),
        ],
        user=None,
        contact=CONTACT,
    )

    order = result.order
    assert order.total_amount == Decimal("61.00")
    assert order.status is OrderStatus.PENDING
    assert order.payment_status is PaymentStatus.UNPAID
    assert order.guest_email == "lea.martin@example.com"
    assert [(item.product_title, item.quantity, item.price) for item in order.items] == [
        ("Mug", 2, Decimal("18.50")),
        ("Bol", 1, Decimal("24.00")),
    ]


async def test_stripe_checkout_charges_remainder_after_gift_card(
    db_session, make_product, make_gift_card, stripe_client, stripe_sdk
) -> None:
    product = await make_product(price="80.00")
    card = await make_gift_card(amount="30.00")

    result = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
        gift_card_code=card.code,
        payment_provider=PaymentProvider.STRIPE,
        stripe=stripe_client,
    )

    order = result.order
    assert result.client_secret == "pi_test_1_secret"
    assert order.stripe_payment_intent_id == "pi_test_1"
    assert order.payment_status is PaymentStatus.PENDING
    assert order.gift_card_amount == Decimal("30.00")
    assert stripe_sdk.intents[0]["amount"] == 5000
    assert stripe_sdk.intents[0]["metadata"] == {"order_id": str(order.id)}

    # Partial cover: the card is only debited once payment is confirmed.
    stored = await db_session.get(GiftCard, card.id)
    await db_session.refresh(stored)
    assert stored.balance == Decimal("30.00")


async def test_gift_card_covering_total_confirms_immediately(
    db_session, make_product, make_gift_card
) -> None:
    product = await make_product(price="24.00")
    card = await make_gift_card(amount="50.00")

    result = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
        gift_card_code=card.code,
        payment_provider=PaymentProvider.STRIPE,
    )

    order = result.order
    assert order.status is OrderStatus.CONFIRMED
    assert order.payment_status is PaymentStatus.PAID
    assert order.payment_method is PaymentMethod.GIFT_CARD
    assert order.payment_provider is None
    usage = await gift_card_service.usage_for_target(db_session, order_id=order.id)
    assert usage is not None and usage.amount == Decimal("-24.00")


async def test_unconfigured_gateway_is_rejected_before_saving(
    db_session, make_product
) -> None:
    product = await make_product()

    with pytest.raises(ValidationFailed, match="Square payments are not available"):
        await order_service.create_order(
            db_session,
            items=[order_service.CartLine(product_id=product.id, quantity=1)],
            user=None,
            contact=CONTACT,
            payment_provider=PaymentProvider.SQUARE,
            square=None,
        )
    assert await order_service.list_orders(db_session) == []


async def test_square_checkout_returns_payment_link(
    db_session, make_product, square_client, square_stub
) -> None:
    product = await make_product(price="35.00")

    result = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
        payment_provider=PaymentProvider.SQUARE,
        square=square_client,
    )

    assert result.checkout_url == "https://square.link/u/atelier"
    assert result.order.square_checkout_id == "sq_link_1"
    assert result.order.square_order_id == "sq_order_1"
    link_call = square_stub.calls("POST", "/v2/online-checkout/payment-links")[0]
    assert link_call["quick_pay"]["price_money"] == {"amount": 3500, "currency": "EUR"}


async def test_gateway_failure_removes_the_order(
    db_session, make_product, stripe_client, stripe_sdk
) -> None:
    product = await make_product()
    stripe_sdk.fail_with = "api unavailable"

    with pytest.raises(PaymentGatewayError, match="api unavailable"):
        await order_service.create_order(
            db_session,
            items=[order_service.CartLine(product_id=product.id, quantity=1)],
            user=None,
            contact=CONTACT,
            payment_provider=PaymentProvider.STRIPE,
            stripe=stripe_client,
        )
    assert await order_service.list_orders(db_session) == []


async def test_status_transitions_are_forward_only(db_session, make_product) -> None:
    product = await make_product()
    result = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
    )
    order_id = result.order.id

    with pytest.raises(StateConflict):
        await order_service.update_order_status(
            db_session, order_id=order_id, status=OrderStatus.SHIPPED
        )

    for step in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.SHIPPED):
        order = await order_service.update_order_status(
            db_session, order_id=order_id, status=step
        )
        assert order.status is step

    with pytest.raises(StateConflict):
        await order_service.update_order_status(
            db_session, order_id=order_id, status=OrderStatus.CONFIRMED
        )


async def test_cancelling_unpaid_order_marks_payment_cancelled(
    db_session, make_product
) -> None:
    product = await make_product()
    result = await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=CONTACT,
    )

    order = await order_service.update_order_status(
        db_session,
        order_id=result.order.id,
        status=OrderStatus.CANCELLED,
        reason="Rupture de stock",
    )

    assert order.status is OrderStatus.CANCELLED
    assert order.payment_status is PaymentStatus.CANCELLED
    assert order.refund_reason == "Rupture de stock"
    with pytest.raises(StateConflict, match="already cancelled"):
        await order_service.update_order_status(
            db_session, order_id=order.id, status=OrderStatus.CONFIRMED
        )


async def test_list_and_export_filter_by_search(db_session, make_product) -> None:
    product = await make_product(title="Vase")
    await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=3)],
        user=None,
        contact=CONTACT,
    )
    await order_service.create_order(
        db_session,
        items=[order_service.CartLine(product_id=product.id, quantity=1)],
        user=None,
        contact=order_service.ContactDetails(
            name="Hugo Bernard",
            email="hugo@example.com",
            address="3 quai Rambaud",
            city="Lyon",
            postal_code="69002",
        ),
    )

    found = await order_service.list_orders(db_session, search="hugo")
    assert [order.guest_name for order in found] == ["Hugo Bernard"]

    csv_text = await order_service.export_orders_csv(db_session)
    lines = csv_text.strip().splitlines()
    assert lines[0].startswith("id,created_at,customer,email,items")
    assert len(lines) == 3
    assert any("Vase x3" in line for line in lines[1:])
