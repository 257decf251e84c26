"""Product catalog lookups and back-office maintenance."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import NotFound, ValidationFailed
from atelier.models import Product

logger = logging.getLogger(__name__)


async def list_products(session: AsyncSession) -> Sequence[Product]:
    stmt = (
        select(Product)
        .where(Product.is_active.is_(True))
        .order_by(Product.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def get_product(
    session: AsyncSession, *, product_id: UUID, include_inactive: bool = False
) -> Product:
    product = await session.get(Product, product_id)
    if product is None or not (product.is_active or include_inactive):
        raise NotFound("Product not found")
    return product


async def load_products(
    session: AsyncSession, product_ids: Iterable[UUID]
) -> dict[UUID, Product]:
    """Return active products keyed by id for the requested identifiers."""

    ids = set(product_ids)
    if not ids:
        return {}
    stmt = select(Product).where(Product.id.in_(ids), Product.is_active.is_(True))
    return {product.id: product for product in (await session.execute(stmt)).scalars()}


async def list_all_products(
    session: AsyncSession,
    *,
    category: str | None = None,
    is_active: bool | None = None,
) -> Sequence[Product]:
    stmt = select(Product).order_by(Product.created_at.desc())
    if category:
        stmt = stmt.where(Product.category == category)
    if is_active is not None:
        stmt = stmt.where(Product.is_active.is_(is_active))
    return (await session.execute(stmt)).scalars().all()


def _check_price(price: Any) -> None:
    if price is None or Decimal(price) <= Decimal("0"):
        raise ValidationFailed("Product price must be positive")


async def create_product(session: AsyncSession, **fields: Any) -> Product:
    if not (fields.get("title") or "").strip():
        raise ValidationFailed("Product title is required")
    _check_price(fields.get("price"))
    product = Product(**fields)
    session.add(product)
    await session.commit()
    logger.info("Product %s created", product.id)
    return product


async def update_product(
    session: AsyncSession, *, product_id: UUID, **fields: Any
) -> Product:
    if not fields:
        raise ValidationFailed("Nothing to update")
    product = await get_product(session, product_id=product_id, include_inactive=True)
    if "price" in fields:
        _check_price(fields["price"])
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationFailed("Product title is required")
    for key, value in fields.items():
        setattr(product, key, value)
    await session.commit()
    return product


async def delete_product(session: AsyncSession, *, product_id: UUID) -> None:
    """Remove a product. Past order lines keep their own title and price."""

    product = await get_product(session, product_id=product_id, include_inactive=True)
    await session.delete(product)
    await session.commit()
    logger.info("Product %s deleted", product_id)
