"""Service layer exports."""
from atelier.services import (
    blog_service,
    capacity_service,
    catalog_service,
    client_service,
    gift_card_service,
    notification_service,
    order_service,
    payment_service,
    reconciliation_service,
    refund_service,
    reporting_service,
    workshop_service,
)

__all__ = [
    "blog_service",
    "capacity_service",
    "catalog_service",
    "client_service",
    "gift_card_service",
    "notification_service",
    "order_service",
    "payment_service",
    "reconciliation_service",
    "refund_service",
    "reporting_service",
    "workshop_service",
]
