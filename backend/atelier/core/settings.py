"""Specialized settings adapters for integrations."""

from __future__ import annotations

from pydantic import BaseModel

from atelier.core.config import get_settings
from atelier.core.errors import ConfigurationError

_DEFAULT_FRONTEND_URL = "http://localhost:3000"


class PaymentSettings(BaseModel):
    """Slim view of payment-related configuration."""

    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    square_access_token: str | None = None
    square_application_id: str | None = None
    square_location_id: str | None = None
    square_environment: str = "sandbox"
    square_webhook_signature_key: str | None = None
    square_webhook_url: str | None = None
    currency: str = "eur"
    enforce_signatures: bool = False


def get_payment_settings() -> PaymentSettings:
    """Return payment-specific configuration."""

    settings = get_settings()
    return PaymentSettings(
        stripe_secret_key=settings.stripe_secret_key or None,
        stripe_webhook_secret=settings.stripe_webhook_secret or None,
        square_access_token=settings.square_access_token or None,
        square_application_id=settings.square_application_id or None,
        square_location_id=settings.square_location_id or None,
        square_environment=settings.square_environment,
        square_webhook_signature_key=settings.square_webhook_signature_key or None,
        square_webhook_url=settings.square_webhook_url or None,
        currency=settings.currency.lower(),
        enforce_signatures=settings.is_production,
    )


def get_frontend_url() -> str:
    """Return the storefront base URL used for checkout redirects."""

    settings = get_settings()
    if settings.frontend_url:
        return settings.frontend_url.rstrip("/")
    if settings.is_production:
        raise ConfigurationError("FRONTEND_URL must be configured in production")
    return _DEFAULT_FRONTEND_URL
