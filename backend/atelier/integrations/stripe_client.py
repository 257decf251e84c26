"""Stripe SDK wrapper."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from collections.abc import Callable
from typing import Any, cast

import stripe

from atelier.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PaymentIntent:
    """Simplified payment intent payload."""

    id: str
    client_secret: str | None
    status: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class CheckoutSession:
    """Hosted checkout page created for a booking or gift card."""

    id: str
    url: str | None
    payment_intent_id: str | None
    metadata: dict[str, Any]


class StripeClientError(PaymentGatewayError):
    """Raised when Stripe interaction fails."""

    provider = "stripe"


def _provider_message(exc: Exception) -> str:
    return str(getattr(exc, "user_message", None) or exc)


class StripeClient:
    """Wrapper around the Stripe SDK."""

    def __init__(
        self,
        secret_key: str | None,
        *,
        webhook_secret: str | None = None,
        idempotency_prefix: str = "atelier",
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._idempotency_prefix = idempotency_prefix
        self._stripe: Any = stripe
        if secret_key:
            self._stripe.api_key = secret_key
            self._stripe.max_network_retries = 2

    @property
    def configured(self) -> bool:
        return bool(self._secret_key)

    @property
    def webhook_secret(self) -> str | None:
        return self._webhook_secret

    def _idempotency_key(self, seed: str | None) -> str | None:
        if seed is None:
            return None
        return f"{self._idempotency_prefix}_{seed}"

    def _require_configured(self) -> None:
        if not self._secret_key:
            raise StripeClientError("Stripe is not configured")

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        # The SDK is blocking; keep it off the event loop.
        return await asyncio.to_thread(fn, *args, **kwargs)

    @staticmethod
    def _to_cents(amount: Decimal) -> int:
        quantized = amount.quantize(Decimal("0.01"))
        return int((quantized * 100).to_integral_value())

    async def create_payment_intent(
        self,
        *,
        amount: Decimal,
        currency: str = "eur",
        metadata: dict[str, Any] | None = None,
        customer_email: str | None = None,
        idempotency_seed: str | None = None,
    ) -> PaymentIntent:
        self._require_configured()
        kwargs: dict[str, Any] = {
            "amount": self._to_cents(amount),
            "currency": currency,
            "metadata": dict(metadata or {}),
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_email:
            kwargs["receipt_email"] = customer_email
        try:
            intent = await self._call(
                self._stripe.PaymentIntent.create,
                **kwargs,
                idempotency_key=self._idempotency_key(idempotency_seed),
            )
        except Exception as exc:
            raise StripeClientError(
                f"Failed to create payment intent: {_provider_message(exc)}"
            ) from exc
        intent_data = cast(dict[str, Any], intent)
        return PaymentIntent(
            id=str(intent_data.get("id")),
            client_secret=cast(str | None, intent_data.get("client_secret")),
            status=str(intent_data.get("status", "unknown")),
            metadata=dict(cast(dict[str, Any], intent_data.get("metadata") or {})),
        )

    async def create_checkout_session(
        self,
        *,
        amount: Decimal,
        product_name: str,
        success_url: str,
        cancel_url: str,
        currency: str = "eur",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        customer_email: str | None = None,
        idempotency_seed: str | None = None,
    ) -> CheckoutSession:
        self._require_configured()
        product_data: dict[str, Any] = {"name": product_name}
        if description:
            product_data["description"] = description
        kwargs: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": product_data,
                        "unit_amount": self._to_cents(amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata or {}),
        }
        if customer_email:
            kwargs["customer_email"] = customer_email
        try:
            checkout = await self._call(
                self._stripe.checkout.Session.create,
                **kwargs,
                idempotency_key=self._idempotency_key(idempotency_seed),
            )
        except Exception as exc:
            raise StripeClientError(
                f"Failed to create checkout session: {_provider_message(exc)}"
            ) from exc
        data = cast(dict[str, Any], checkout)
        return CheckoutSession(
            id=str(data.get("id")),
            url=cast(str | None, data.get("url")),
            payment_intent_id=cast(str | None, data.get("payment_intent")),
            metadata=dict(cast(dict[str, Any], data.get("metadata") or {})),
        )

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        self._require_configured()
        try:
            checkout = await self._call(
                self._stripe.checkout.Session.retrieve, session_id
            )
        except Exception as exc:
            raise StripeClientError(
                f"Failed to retrieve checkout session: {_provider_message(exc)}"
            ) from exc
        data = cast(dict[str, Any], checkout)
        return CheckoutSession(
            id=str(data.get("id")),
            url=cast(str | None, data.get("url")),
            payment_intent_id=cast(str | None, data.get("payment_intent")),
            metadata=dict(cast(dict[str, Any], data.get("metadata") or {})),
        )

    async def refund_payment_intent(
        self,
        payment_intent_id: str,
        *,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        self._require_configured()
        kwargs: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            kwargs["amount"] = self._to_cents(amount)
        if reason:
            kwargs["metadata"] = {"reason": reason[:500]}
        try:
            refund = await self._call(
                self._stripe.Refund.create,
                **kwargs,
                idempotency_key=self._idempotency_key(f"refund_{payment_intent_id}"),
            )
        except Exception as exc:
            raise StripeClientError(
                f"Failed to refund payment intent: {_provider_message(exc)}"
            ) from exc
        logger.info("Stripe refund created for %s", payment_intent_id)
        return {
            "id": refund.get("id"),
            "status": refund.get("status", "unknown"),
            "amount": refund.get("amount"),
        }

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify the signature header and return the decoded event."""

        if not self._webhook_secret:
            raise StripeClientError("Webhook secret is not configured")
        try:
            self._stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._webhook_secret,
            )
        except Exception as exc:
            raise StripeClientError("Invalid webhook signature") from exc
        return cast(dict[str, Any], json.loads(payload))
