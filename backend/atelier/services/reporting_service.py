"""Back-office dashboard figures."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import ValidationFailed
from atelier.models import (
    GiftCard,
    GiftCardStatus,
    Order,
    OrderItem,
    PaymentStatus,
    Product,
    Reservation,
    SessionStatus,
    User,
    WorkshopSession,
)

UNCATEGORIZED = "Autres"


def _months_back(today: date, months: int) -> list[date]:
    """First day of each of the last ``months`` months, oldest first."""

    starts: list[date] = []
    year, month = today.year, today.month
    for _ in range(months):
        starts.append(date(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


async def _count(session: AsyncSession, stmt: Any) -> int:
    return int((await session.execute(stmt)).scalar_one())


async def _paid_totals(
    session: AsyncSession, model: type[Order] | type[Reservation], since: datetime
) -> list[tuple[datetime, Decimal]]:
    stmt = select(model.created_at, model.total_amount).where(
        model.payment_status == PaymentStatus.PAID,
        model.created_at >= since,
    )
    rows = (await session.execute(stmt)).all()
    return [(created_at, Decimal(total)) for created_at, total in rows]


async def dashboard_stats(
    session: AsyncSession, *, months: int = 6, today: date | None = None
) -> dict[str, Any]:
    """Counts, paid revenue per month and units sold per product category."""

    if months < 1 or months > 24:
        raise ValidationFailed("months must be between 1 and 24")
    today = today or datetime.now(UTC).date()
    month_starts = _months_back(today, months)
    since = datetime.combine(month_starts[0], time.min, tzinfo=UTC)

    users = await _count(session, select(func.count(User.id)))
    products = await _count(session, select(func.count(Product.id)))
    active_products = await _count(
        session, select(func.count(Product.id)).where(Product.is_active.is_(True))
    )
    orders = await _count(session, select(func.count(Order.id)))
    paid_orders = await _count(
        session,
        select(func.count(Order.id)).where(Order.payment_status == PaymentStatus.PAID),
    )
    reservations = await _count(session, select(func.count(Reservation.id)))
    upcoming_sessions = await _count(
        session,
        select(func.count(WorkshopSession.id)).where(
            WorkshopSession.status == SessionStatus.SCHEDULED,
            WorkshopSession.session_date >= today,
        ),
    )
    active_gift_cards = await _count(
        session,
        select(func.count(GiftCard.id)).where(GiftCard.status == GiftCardStatus.ACTIVE),
    )

    shop: dict[date, Decimal] = defaultdict(lambda: Decimal("0"))
    workshops: dict[date, Decimal] = defaultdict(lambda: Decimal("0"))
    for bucket, model in ((shop, Order), (workshops, Reservation)):
        for created_at, total in await _paid_totals(session, model, since):
            bucket[date(created_at.year, created_at.month, 1)] += total

    monthly_sales = [
        {
            "month": start.strftime("%Y-%m"),
            "orders": shop[start],
            "workshops": workshops[start],
            "total": shop[start] + workshops[start],
        }
        for start in month_starts
    ]

    category_stmt = (
        select(Product.category, func.coalesce(func.sum(OrderItem.quantity), 0))
        .select_from(OrderItem)
        .join(Product, Product.id == OrderItem.product_id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.payment_status == PaymentStatus.PAID)
        .group_by(Product.category)
    )
    units: dict[str, int] = defaultdict(int)
    for category, quantity in (await session.execute(category_stmt)).all():
        units[category or UNCATEGORIZED] += int(quantity)
    categories = [
        {"name": name, "units": count}
        for name, count in sorted(units.items(), key=lambda item: (-item[1], item[0]))
    ]

    return {
        "users": users,
        "products": products,
        "active_products": active_products,
        "orders": orders,
        "paid_orders": paid_orders,
        "reservations": reservations,
        "upcoming_sessions": upcoming_sessions,
        "active_gift_cards": active_gift_cards,
        "period_revenue": sum((entry["total"] for entry in monthly_sales), Decimal("0")),
        "monthly_sales": monthly_sales,
        "categories": categories,
    }
