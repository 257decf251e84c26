"""Pydantic schemas for the back-office dashboard."""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class MonthlySales(BaseModel):
    month: str
    orders: Decimal
    workshops: Decimal
    total: Decimal


class CategoryUnits(BaseModel):
    name: str
    units: int


class DashboardStats(BaseModel):
    users: int
    products: int
    active_products: int
    orders: int
    paid_orders: int
    reservations: int
    upcoming_sessions: int
    active_gift_cards: int
    period_revenue: Decimal
    monthly_sales: list[MonthlySales] = Field(default_factory=list)
    categories: list[CategoryUnits] = Field(default_factory=list)
