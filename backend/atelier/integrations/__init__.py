"""Integration shortcuts."""

from .square_client import (
    SquareClient,
    SquareClientError,
    SquarePayment,
    SquarePaymentLink,
)
from .stripe_client import (
    CheckoutSession,
    PaymentIntent,
    StripeClient,
    StripeClientError,
)

__all__ = [
    "CheckoutSession",
    "PaymentIntent",
    "SquareClient",
    "SquareClientError",
    "SquarePayment",
    "SquarePaymentLink",
    "StripeClient",
    "StripeClientError",
]
