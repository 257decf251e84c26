"""Square REST API client built on httpx."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, cast

import httpx

from atelier.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}
_API_VERSION = "2024-10-17"


@dataclass(slots=True)
class SquarePayment:
    id: str
    status: str
    order_id: str | None
    amount_cents: int | None
    reference_id: str | None


@dataclass(slots=True)
class SquarePaymentLink:
    id: str
    url: str
    order_id: str | None


class SquareClientError(PaymentGatewayError):
    """Raised when Square interaction fails."""

    provider = "square"


class SquareClient:
    """Thin wrapper over the Square payments, refunds and checkout APIs."""

    def __init__(
        self,
        access_token: str | None,
        *,
        location_id: str | None = None,
        environment: str = "sandbox",
        webhook_signature_key: str | None = None,
        currency: str = "EUR",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._access_token = access_token
        self._location_id = location_id
        self._environment = environment if environment in _BASE_URLS else "sandbox"
        self._webhook_signature_key = webhook_signature_key
        self._currency = currency.upper()
        self._transport = transport
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._access_token and self._location_id)

    @property
    def environment(self) -> str:
        return self._environment

    @property
    def location_id(self) -> str | None:
        return self._location_id

    @property
    def webhook_signature_key(self) -> str | None:
        return self._webhook_signature_key

    @staticmethod
    def _to_cents(amount: Decimal) -> int:
        quantized = amount.quantize(Decimal("0.01"))
        return int((quantized * 100).to_integral_value())

    def _money(self, amount: Decimal) -> dict[str, Any]:
        return {"amount": self._to_cents(amount), "currency": self._currency}

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self.configured:
            raise SquareClientError("Square is not configured")
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Square-Version": _API_VERSION,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=_BASE_URLS[self._environment],
                transport=self._transport,
                timeout=self._timeout,
            ) as client:
                response = await client.request(
                    method, path, json=payload, headers=headers
                )
        except httpx.HTTPError as exc:
            raise SquareClientError(f"Square request failed: {exc}") from exc

        try:
            body = cast(dict[str, Any], response.json())
        except ValueError:
            body = {}
        if response.is_error:
            errors = body.get("errors") or []
            detail = "; ".join(
                str(error.get("detail") or error.get("code")) for error in errors
            )
            raise SquareClientError(
                detail or f"Square returned HTTP {response.status_code}"
            )
        return body

    @staticmethod
    def _parse_payment(data: dict[str, Any]) -> SquarePayment:
        money = data.get("amount_money") or {}
        return SquarePayment(
            id=str(data.get("id")),
            status=str(data.get("status", "UNKNOWN")),
            order_id=data.get("order_id"),
            amount_cents=money.get("amount"),
            reference_id=data.get("reference_id"),
        )

    async def create_payment(
        self,
        *,
        source_id: str,
        amount: Decimal,
        reference_id: str | None = None,
        note: str | None = None,
        buyer_email: str | None = None,
    ) -> SquarePayment:
        payload: dict[str, Any] = {
            "source_id": source_id,
            "idempotency_key": str(uuid.uuid4()),
            "amount_money": self._money(amount),
            "location_id": self._location_id,
        }
        if reference_id:
            payload["reference_id"] = reference_id
        if note:
            payload["note"] = note
        if buyer_email:
            payload["buyer_email_address"] = buyer_email
        body = await self._request("POST", "/v2/payments", payload)
        return self._parse_payment(body.get("payment") or {})

    async def get_payment(self, payment_id: str) -> SquarePayment:
        body = await self._request("GET", f"/v2/payments/{payment_id}")
        return self._parse_payment(body.get("payment") or {})

    async def refund_payment(
        self, payment_id: str, *, amount: Decimal, reason: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "idempotency_key": f"refund-{payment_id}",
            "payment_id": payment_id,
            "amount_money": self._money(amount),
        }
        if reason:
            payload["reason"] = reason[:192]
        body = await self._request("POST", "/v2/refunds", payload)
        refund = body.get("refund") or {}
        logger.info("Square refund %s created for %s", refund.get("id"), payment_id)
        return {
            "id": refund.get("id"),
            "status": refund.get("status", "UNKNOWN"),
            "amount": (refund.get("amount_money") or {}).get("amount"),
        }

    async def create_payment_link(
        self,
        *,
        name: str,
        amount: Decimal,
        redirect_url: str,
        reference: str,
        buyer_email: str | None = None,
    ) -> SquarePaymentLink:
        payload: dict[str, Any] = {
            "idempotency_key": str(uuid.uuid4()),
            "quick_pay": {
                "name": name,
                "price_money": self._money(amount),
                "location_id": self._location_id,
            },
            "checkout_options": {"redirect_url": redirect_url},
            "payment_note": reference,
        }
        if buyer_email:
            payload["pre_populated_data"] = {"buyer_email": buyer_email}
        body = await self._request("POST", "/v2/online-checkout/payment-links", payload)
        link = body.get("payment_link") or {}
        if not link.get("url"):
            raise SquareClientError("Square did not return a checkout URL")
        return SquarePaymentLink(
            id=str(link.get("id")), url=str(link["url"]), order_id=link.get("order_id")
        )

    def construct_event(
        self, payload: bytes, signature: str, notification_url: str
    ) -> dict[str, Any]:
        """Verify ``x-square-hmacsha256-signature`` and decode the event."""

        if not self._webhook_signature_key:
            raise SquareClientError("Webhook signature key is not configured")
        digest = hmac.new(
            self._webhook_signature_key.encode(),
            notification_url.encode() + payload,
            hashlib.sha256,
        ).digest()
        expected = base64.b64encode(digest).decode()
        provided = signature.removeprefix("sha256=")
        if not hmac.compare_digest(expected, provided):
            raise SquareClientError("Invalid webhook signature")
        return cast(dict[str, Any], json.loads(payload))
