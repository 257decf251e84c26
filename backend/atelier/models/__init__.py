"""ORM models package export."""

from atelier.models.blog import BlogPost
from atelier.models.client import Client
from atelier.models.gift_card import (
    GiftCard,
    GiftCardStatus,
    GiftCardTransaction,
    GiftCardTransactionType,
)
from atelier.models.order import (
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
)
from atelier.models.payment import (
    WebhookEvent,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    RefundStep,
    RefundStepStatus,
    RefundTarget,
)
from atelier.models.product import Product
from atelier.models.user import User, UserRole
from atelier.models.workshop import (
    SEAT_HOLDING_STATUSES,
    TERMINAL_RESERVATION_STATUSES,
    Reservation,
    ReservationStatus,
    SessionStatus,
    Workshop,
    WorkshopSession,
)

__all__ = [
    "BlogPost",
    "Client",
    "GiftCard",
    "GiftCardStatus",
    "GiftCardTransaction",
    "GiftCardTransactionType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "WebhookEvent",
    "PaymentMethod",
    "PaymentProvider",
    "PaymentStatus",
    "Product",
    "RefundStep",
    "RefundStepStatus",
    "RefundTarget",
    "Reservation",
    "ReservationStatus",
    "SEAT_HOLDING_STATUSES",
    "SessionStatus",
    "TERMINAL_ORDER_STATUSES",
    "TERMINAL_RESERVATION_STATUSES",
    "User",
    "UserRole",
    "Workshop",
    "WorkshopSession",
]
