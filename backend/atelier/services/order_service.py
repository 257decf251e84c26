"""Checkout and order management services."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Final
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import (
    Forbidden,
    NotFound,
    PaymentGatewayError,
    StateConflict,
    ValidationFailed,
)
from atelier.core.settings import get_frontend_url, get_payment_settings
from atelier.integrations import SquareClient, StripeClient
from atelier.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    User,
    UserRole,
)
from atelier.services import (
    catalog_service,
    client_service,
    gift_card_service,
    notification_service,
    refund_service,
)
from atelier.services.gift_card_service import GiftCardApplication

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")

_ALLOWED_STATUS_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED},
    OrderStatus.CONFIRMED: {
        OrderStatus.PREPARING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    },
    OrderStatus.PREPARING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

_REFUND_MODES: dict[OrderStatus, refund_service.RefundMode] = {
    OrderStatus.CANCELLED: refund_service.RefundMode.CANCEL,
    OrderStatus.REFUNDED: refund_service.RefundMode.REFUND,
}


def _to_money(value: Decimal | float | str | int) -> Decimal:
    return Decimal(value).quantize(_CURRENCY_UNIT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class CartLine:
    product_id: UUID
    quantity: int


@dataclass(slots=True)
class ContactDetails:
    """Guest identity and shipping destination captured at checkout."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None


@dataclass(slots=True)
class CheckoutResult:
    order: Order
    gift_card: GiftCardApplication | None = None
    client_secret: str | None = None
    payment_intent_id: str | None = None
    checkout_url: str | None = None
    warnings: list[str] = field(default_factory=list)


def _validate_guest(contact: ContactDetails) -> None:
    missing = [
        label
        for label, value in (
            ("name", contact.name),
            ("email", contact.email),
            ("address", contact.address),
            ("city", contact.city),
            ("postal code", contact.postal_code),
        )
        if not (value and value.strip())
    ]
    if missing:
        raise ValidationFailed(
            "Guest checkout requires " + ", ".join(missing)
        )
    if not client_service.is_valid_email(contact.email):
        raise ValidationFailed("Invalid email address")


async def create_order(
    session: AsyncSession,
    *,
    items: Sequence[CartLine],
    user: User | None,
    contact: ContactDetails,
    gift_card_code: str | None = None,
    payment_provider: PaymentProvider | None = None,
    notes: str | None = None,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> CheckoutResult:
    """Validate a cart, persist the order and open a provider checkout."""

    if not items:
        raise ValidationFailed("Cart is empty")
    if any(line.quantity < 1 for line in items):
        raise ValidationFailed("Item quantities must be at least 1")
    if user is None:
        _validate_guest(contact)
    elif contact.email and not client_service.is_valid_email(contact.email):
        raise ValidationFailed("Invalid email address")

    products = await catalog_service.load_products(
        session, (line.product_id for line in items)
    )
    order_items: list[OrderItem] = []
    for line in items:
        product = products.get(line.product_id)
        if product is None:
            raise NotFound(f"Product {line.product_id} not found")
        order_items.append(
            OrderItem(
                product_id=product.id,
                product_title=product.title,
                quantity=line.quantity,
                price=_to_money(product.price),
            )
        )
    total = sum((item.price * item.quantity for item in order_items), Decimal("0"))
    total = _to_money(total)
    if total <= Decimal("0"):
        raise ValidationFailed("Order total must be positive")

    application: GiftCardApplication | None = None
    if gift_card_code:
        application = await gift_card_service.apply_gift_card(
            session, code=gift_card_code, order_total=total
        )
    gift_card_amount = application.amount_applied if application else Decimal("0.00")
    gateway_amount = total - gift_card_amount
    online_payment = payment_provider is not None and gateway_amount > Decimal("0")
    frontend_url = (
        get_frontend_url()
        if online_payment and payment_provider is PaymentProvider.SQUARE
        else None
    )
    if online_payment:
        _require_gateway(payment_provider, stripe=stripe, square=square)

    order = Order(
        user_id=user.id if user is not None else None,
        guest_name=None if user is not None else contact.name,
        guest_email=(
            None if user is not None else (contact.email or "").strip().lower()
        ),
        guest_phone=contact.phone,
        shipping_address=contact.address,
        shipping_city=contact.city,
        shipping_postal_code=contact.postal_code,
        shipping_country=contact.country or "France",
        total_amount=total,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING if online_payment else PaymentStatus.UNPAID,
        payment_provider=payment_provider if online_payment else None,
        gift_card_code=application.code if application else None,
        gift_card_amount=gift_card_amount,
        notes=notes,
    )
    order.user = user
    order.items = order_items
    session.add(order)
    await session.flush()

    if application is not None and application.fully_covered:
        await gift_card_service.redeem_gift_card(
            session,
            code=application.code,
            amount=gift_card_amount,
            order_id=order.id,
            note=f"Order #{str(order.id)[:8]}",
        )
        order.status = OrderStatus.CONFIRMED
        order.payment_status = PaymentStatus.PAID
        order.payment_method = PaymentMethod.GIFT_CARD
        order.payment_confirmed_at = datetime.now(UTC)
    await session.commit()

    result = CheckoutResult(order=order, gift_card=application)
    if online_payment:
        try:
            await _open_checkout(
                order,
                result,
                amount=gateway_amount,
                provider=payment_provider,
                stripe=stripe,
                square=square,
                frontend_url=frontend_url,
            )
        except PaymentGatewayError:
            await _rollback_order(session, order)
            raise
        await session.commit()

    if user is None and order.guest_email:
        await _sync_client_best_effort(session, order)

    subject, body = notification_service.build_order_confirmation_email(order)
    notification_service.schedule_email(
        background_tasks,
        recipients=[order.contact_email],
        subject=subject,
        body=body,
    )
    return result


def _require_gateway(
    provider: PaymentProvider | None,
    *,
    stripe: StripeClient | None,
    square: SquareClient | None,
) -> None:
    if provider is PaymentProvider.STRIPE and stripe is None:
        raise ValidationFailed("Stripe payments are not available")
    if provider is PaymentProvider.SQUARE and square is None:
        raise ValidationFailed("Square payments are not available")


async def _open_checkout(
    order: Order,
    result: CheckoutResult,
    *,
    amount: Decimal,
    provider: PaymentProvider | None,
    stripe: StripeClient | None,
    square: SquareClient | None,
    frontend_url: str | None,
) -> None:
    reference = f"Commande #{str(order.id)[:8]}"
    if provider is PaymentProvider.STRIPE and stripe is not None:
        intent = await stripe.create_payment_intent(
            amount=amount,
            currency=get_payment_settings().currency,
            metadata={"order_id": str(order.id)},
            customer_email=order.contact_email,
            idempotency_seed=f"order-{order.id}",
        )
        order.stripe_payment_intent_id = intent.id
        result.client_secret = intent.client_secret
        result.payment_intent_id = intent.id
    elif provider is PaymentProvider.SQUARE and square is not None:
        link = await square.create_payment_link(
            name=reference,
            amount=amount,
            redirect_url=f"{frontend_url}/commande/confirmation?order={order.id}",
            reference=reference,
            buyer_email=order.contact_email,
        )
        order.square_checkout_id = link.id
        order.square_order_id = link.order_id
        result.checkout_url = link.url


async def _rollback_order(session: AsyncSession, order: Order) -> None:
    """Remove an order whose provider checkout could not be opened."""

    try:
        await session.delete(order)
        await session.commit()
    except Exception:
        logger.exception("Failed to roll back order %s after checkout error", order.id)
        await session.rollback()


async def _sync_client_best_effort(session: AsyncSession, order: Order) -> None:
    try:
        await client_service.sync_client(
            session,
            email=order.guest_email or "",
            full_name=order.guest_name,
            phone=order.guest_phone,
        )
        await session.commit()
    except Exception:
        logger.exception("Client sync failed for order %s", order.id)
        await session.rollback()


async def get_order(session: AsyncSession, *, order_id: UUID) -> Order:
    order = await session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


async def get_order_for_viewer(
    session: AsyncSession, *, order_id: UUID, viewer: User | None
) -> Order:
    """Owners see their own orders; guest orders are visible to admins only."""

    order = await get_order(session, order_id=order_id)
    if viewer is not None and viewer.role is UserRole.ADMIN:
        return order
    if viewer is None or order.user_id is None or order.user_id != viewer.id:
        raise Forbidden("You do not have access to this order")
    return order


async def list_user_orders(session: AsyncSession, *, user: User) -> Sequence[Order]:
    stmt = (
        select(Order)
        .where(Order.user_id == user.id)
        .order_by(Order.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().all()


def _filtered_orders_query(
    *,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
):
    stmt = (
        select(Order)
        .outerjoin(User, Order.user_id == User.id)
        .order_by(Order.created_at.desc())
    )
    if status is not None:
        stmt = stmt.where(Order.status == status)
    if payment_status is not None:
        stmt = stmt.where(Order.payment_status == payment_status)
    if date_from is not None:
        stmt = stmt.where(Order.created_at >= datetime.combine(date_from, time.min, UTC))
    if date_to is not None:
        upper = datetime.combine(date_to + timedelta(days=1), time.min, UTC)
        stmt = stmt.where(Order.created_at < upper)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Order.guest_name.ilike(pattern),
                Order.guest_email.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    return stmt


async def list_orders(
    session: AsyncSession,
    *,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> Sequence[Order]:
    stmt = _filtered_orders_query(
        status=status,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    result = await session.execute(stmt.offset(skip).limit(limit))
    return result.scalars().unique().all()


async def export_orders_csv(
    session: AsyncSession,
    *,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> str:
    stmt = _filtered_orders_query(
        status=status,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
    )
    orders = (await session.execute(stmt)).scalars().unique().all()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            "id",
            "created_at",
            "customer",
            "email",
            "items",
            "total_amount",
            "gift_card_amount",
            "status",
            "payment_status",
            "payment_method",
            "refund_amount",
        ]
    )
    for order in orders:
        writer.writerow(
            [
                str(order.id),
                order.created_at.isoformat() if order.created_at else "",
                order.contact_name or "",
                order.contact_email or "",
                "; ".join(f"{item.product_title} x{item.quantity}" for item in order.items),
                f"{order.total_amount:.2f}",
                f"{order.gift_card_amount or Decimal('0'):.2f}",
                order.status.value,
                order.payment_status.value,
                order.payment_method.value if order.payment_method else "",
                f"{order.refund_amount:.2f}" if order.refund_amount is not None else "",
            ]
        )
    return buffer.getvalue()


async def update_order_status(
    session: AsyncSession,
    *,
    order_id: UUID,
    status: OrderStatus,
    reason: str | None = None,
    stripe: StripeClient | None = None,
    square: SquareClient | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Order:
    """Move an order forward; cancellation and refund run the refund flow."""

    order = await get_order(session, order_id=order_id)
    if order.is_terminal:
        raise StateConflict(f"Order is already {order.status.value}")

    mode = _REFUND_MODES.get(status)
    if mode is not None:
        return await refund_service.refund_order(
            session,
            order_id=order.id,
            mode=mode,
            reason=reason,
            stripe=stripe,
            square=square,
            background_tasks=background_tasks,
        )

    if status == order.status:
        return order
    if status not in _ALLOWED_STATUS_TRANSITIONS[order.status]:
        raise StateConflict(
            f"Cannot change order status from {order.status.value} to {status.value}"
        )
    order.status = status
    await session.commit()
    return order
