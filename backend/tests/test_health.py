"""Health endpoint and response envelope."""

from typing import Any

import pytest

pytestmark = pytest.mark.asyncio


async def test_healthcheck_returns_envelope(app_context: dict[str, Any]) -> None:
    client = app_context["client"]

    response = await client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "ok"
    assert body["data"]["environment"] == "test"
    assert response.headers.get("X-Request-ID")


async def test_unknown_route_uses_error_envelope(app_context: dict[str, Any]) -> None:
    client = app_context["client"]

    response = await client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Not Found"}
