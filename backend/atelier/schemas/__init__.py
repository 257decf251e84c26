"""Schema exports."""

from atelier.schemas.blog import BlogPostCreate, BlogPostRead, BlogPostUpdate
from atelier.schemas.client import ClientDetail, ClientRead
from atelier.schemas.common import ApiResponse, ProviderChoice, ok
from atelier.schemas.gift_card import (
    GiftCardApplyRead,
    GiftCardApplyRequest,
    GiftCardCheckRead,
    GiftCardDetail,
    GiftCardIssue,
    GiftCardPurchaseCreate,
    GiftCardPurchaseRead,
    GiftCardRead,
    GiftCardTransactionRead,
    GiftCardUpdate,
)
from atelier.schemas.order import (
    CartItem,
    CheckoutRead,
    GiftCardSummary,
    OrderCreate,
    OrderItemRead,
    OrderRead,
    OrderStatusUpdate,
    ProductAdminRead,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    ShippingDetails,
)
from atelier.schemas.payment import (
    RefundStepRead,
    SquareConfigRead,
    SquarePaymentConfirm,
    SquarePaymentCreate,
    SquarePaymentRead,
)
from atelier.schemas.report import CategoryUnits, DashboardStats, MonthlySales
from atelier.schemas.workshop import (
    BookingCreate,
    BookingRead,
    CalendarEntry,
    CancelRequest,
    GuestDetails,
    ManualBookingCreate,
    ReservationRead,
    SessionCreate,
    StaleHoldSweep,
    WorkshopCreate,
    WorkshopRead,
    WorkshopSessionRead,
    WorkshopUpdate,
)

__all__ = [
    "ApiResponse",
    "BlogPostCreate",
    "BlogPostRead",
    "BlogPostUpdate",
    "BookingCreate",
    "BookingRead",
    "CalendarEntry",
    "CancelRequest",
    "CartItem",
    "CategoryUnits",
    "CheckoutRead",
    "ClientDetail",
    "ClientRead",
    "DashboardStats",
    "GiftCardApplyRead",
    "GiftCardApplyRequest",
    "GiftCardCheckRead",
    "GiftCardDetail",
    "GiftCardIssue",
    "GiftCardPurchaseCreate",
    "GiftCardPurchaseRead",
    "GiftCardRead",
    "GiftCardSummary",
    "GiftCardTransactionRead",
    "GiftCardUpdate",
    "GuestDetails",
    "ManualBookingCreate",
    "MonthlySales",
    "OrderCreate",
    "OrderItemRead",
    "OrderRead",
    "OrderStatusUpdate",
    "ProductAdminRead",
    "ProductCreate",
    "ProductRead",
    "ProductUpdate",
    "ProviderChoice",
    "RefundStepRead",
    "ReservationRead",
    "SessionCreate",
    "ShippingDetails",
    "SquareConfigRead",
    "SquarePaymentConfirm",
    "SquarePaymentCreate",
    "SquarePaymentRead",
    "StaleHoldSweep",
    "WorkshopCreate",
    "WorkshopRead",
    "WorkshopSessionRead",
    "WorkshopUpdate",
    "ok",
]
