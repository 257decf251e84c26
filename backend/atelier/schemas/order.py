"""Pydantic schemas for products, carts and orders."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from atelier.models import OrderStatus, PaymentMethod, PaymentProvider, PaymentStatus
from atelier.schemas.common import ProviderChoice


class ProductBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    price: Decimal = Field(gt=Decimal("0"))
    image: str | None = None
    category: str | None = None


class ProductCreate(ProductBase):
    is_active: bool = True


class ProductUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(default=None, gt=Decimal("0"))
    image: str | None = None
    category: str | None = None
    is_active: bool | None = None


class ProductRead(ProductBase):
    id: uuid.UUID

    model_config = ConfigDict(from_attributes=True)


class ProductAdminRead(ProductRead):
    is_active: bool
    created_at: datetime


class CartItem(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(default=1)


class ShippingDetails(BaseModel):
    """Guest contact and delivery address."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None


class OrderCreate(BaseModel):
    """Checkout payload; prices are always read from the catalog."""

    items: list[CartItem]
    shipping: ShippingDetails = Field(default_factory=ShippingDetails)
    gift_card_code: str | None = None
    payment_provider: ProviderChoice = None
    notes: str | None = None


class OrderItemRead(BaseModel):
    product_id: uuid.UUID | None = None
    product_title: str
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    shipping_address: str | None = None
    shipping_city: str | None = None
    shipping_postal_code: str | None = None
    shipping_country: str
    items: list[OrderItemRead] = Field(default_factory=list)
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod | None = None
    payment_provider: PaymentProvider | None = None
    gift_card_code: str | None = None
    gift_card_amount: Decimal
    refund_amount: Decimal | None = None
    refund_reason: str | None = None
    refunded_at: datetime | None = None
    refund_details: dict[str, Any] | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GiftCardSummary(BaseModel):
    code: str
    amount_applied: Decimal
    remaining_to_pay: Decimal
    fully_covered: bool


class CheckoutRead(BaseModel):
    """Order plus whatever the client needs to finish paying."""

    order: OrderRead
    gift_card: GiftCardSummary | None = None
    client_secret: str | None = None
    payment_intent_id: str | None = None
    checkout_url: str | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: str | None = None
