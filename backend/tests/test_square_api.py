"""Square Web Payments endpoints."""

from __future__ import annotations

from typing import Any

import pytest

pytestmark = pytest.mark.asyncio

SHIPPING = {
    "name": "Hugo Bernard",
    "email": "hugo@example.com",
    "address": "3 quai Rambaud",
    "city": "Lyon",
    "postal_code": "69002",
}


async def _order_id(client, make_product, price: str = "40.00") -> str:
    product = await make_product(price=price)
    response = await client.post(
        "/api/orders",
        json={"items": [{"product_id": str(product.id)}], "shipping": SHIPPING},
    )
    return response.json()["data"]["order"]["id"]


async def test_check_config_exposes_public_settings(app_context: dict[str, Any]) -> None:
    client = app_context["client"]

    response = await client.get("/api/square/check-config")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["configured"] is True
    assert data["environment"] == "sandbox"
    assert data["location_id"] == "LOC123"
    assert data["webhook_signature_enforced"] is False
    assert "access_token" not in data


async def test_create_payment_confirms_order(
    app_context: dict[str, Any], make_product, square_stub
) -> None:
    client = app_context["client"]
    order_id = await _order_id(client, make_product)

    response = await client.post(
        "/api/square/create-payment",
        json={"source_id": "cnon:card-nonce-ok", "order_id": order_id},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Payment completed"
    assert body["data"] == {
        "payment_id": "sq_pay_1",
        "status": "COMPLETED",
        "outcome": "processed",
        "amount": "40.00",
    }
    assert square_stub.calls("POST", "/v2/payments")[0]["reference_id"] == order_id

    admin_view = await client.get(
        f"/api/admin/orders/{order_id}", headers=app_context["admin_headers"]
    )
    assert admin_view.json()["data"]["payment_status"] == "paid"
    assert admin_view.json()["data"]["payment_method"] == "square"


async def test_create_payment_needs_exactly_one_target(
    app_context: dict[str, Any],
) -> None:
    client = app_context["client"]

    response = await client.post(
        "/api/square/create-payment", json={"source_id": "cnon:card-nonce-ok"}
    )

    assert response.status_code == 400
    assert "exactly one of order_id or reservation_id" in response.json()["message"]


async def test_confirm_payment_after_approval(
    app_context: dict[str, Any], make_product, square_stub
) -> None:
    client = app_context["client"]
    order_id = await _order_id(client, make_product)
    square_stub.payment_status = "APPROVED"

    created = await client.post(
        "/api/square/create-payment",
        json={"source_id": "cnon:card-nonce-ok", "order_id": order_id},
    )
    assert created.json()["data"]["outcome"] == "ignored"

    payment_id = created.json()["data"]["payment_id"]
    square_stub.payments[payment_id]["status"] = "COMPLETED"
    confirmed = await client.post(
        "/api/square/confirm-payment",
        json={"payment_id": payment_id, "order_id": order_id},
    )

    assert confirmed.status_code == 200
    assert confirmed.json()["data"]["outcome"] == "processed"


async def test_confirm_unknown_payment_is_gateway_error(
    app_context: dict[str, Any], make_product
) -> None:
    client = app_context["client"]
    order_id = await _order_id(client, make_product)

    response = await client.post(
        "/api/square/confirm-payment",
        json={"payment_id": "sq_pay_missing", "order_id": order_id},
    )

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == {"provider": "square"}
