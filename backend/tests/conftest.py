"""Test fixtures for the atelier backend."""
from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("APP_ENV", "test")

from atelier.api import deps
from atelier.core.config import get_settings
from atelier.core.security import create_access_token
from atelier.db.base import Base
from atelier.db.session import dispose_engine, get_sessionmaker
from atelier.integrations import SquareClient, StripeClient
from atelier.main import app
from atelier.models import (
    GiftCard,
    Product,
    User,
    UserRole,
    Workshop,
    WorkshopSession,
)
from atelier.services import gift_card_service


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


@pytest_asyncio.fixture()
async def db_session(reset_database: None, db_url: str) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        yield session


# --- Gateway fakes -----------------------------------------------------------


class FakeStripeSDK:
    """Stands in for the ``stripe`` module behind a real StripeClient."""

    def __init__(self) -> None:
        self.intents: list[dict[str, Any]] = []
        self.checkouts: dict[str, dict[str, Any]] = {}
        self.refunds: list[dict[str, Any]] = []
        self.fail_with: str | None = None
        self.PaymentIntent = SimpleNamespace(create=self._create_intent)
        self.checkout = SimpleNamespace(
            Session=SimpleNamespace(
                create=self._create_checkout, retrieve=self._retrieve_checkout
            )
        )
        self.Refund = SimpleNamespace(create=self._create_refund)
        self.Webhook = SimpleNamespace(construct_event=self._construct_event)

    def _maybe_fail(self) -> None:
        if self.fail_with:
            raise RuntimeError(self.fail_with)

    def _create_intent(self, **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail()
        number = len(self.intents) + 1
        intent = {
            "id": f"pi_test_{number}",
            "client_secret": f"pi_test_{number}_secret",
            "status": "requires_payment_method",
            "metadata": kwargs.get("metadata", {}),
            "amount": kwargs["amount"],
        }
        self.intents.append(intent)
        return intent

    def _create_checkout(self, **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail()
        number = len(self.checkouts) + 1
        checkout = {
            "id": f"cs_test_{number}",
            "url": f"https://checkout.stripe.test/c/cs_test_{number}",
            "payment_intent": None,
            "metadata": kwargs.get("metadata", {}),
            "amount_total": kwargs["line_items"][0]["price_data"]["unit_amount"],
        }
        self.checkouts[checkout["id"]] = checkout
        return checkout

    def _retrieve_checkout(self, session_id: str) -> dict[str, Any]:
        checkout = dict(self.checkouts[session_id])
        checkout["payment_intent"] = checkout["payment_intent"] or f"pi_for_{session_id}"
        return checkout

    def _create_refund(self, **kwargs: Any) -> dict[str, Any]:
        self._maybe_fail()
        refund = {
            "id": f"re_test_{len(self.refunds) + 1}",
            "status": "succeeded",
            "amount": kwargs.get("amount"),
            "payment_intent": kwargs["payment_intent"],
            "idempotency_key": kwargs.get("idempotency_key"),
        }
        self.refunds.append(refund)
        return refund

    def _construct_event(self, *, payload: bytes, sig_header: str, secret: str) -> Any:
        if sig_header != f"t=1,v1={secret}":
            raise ValueError("No signatures found matching the expected signature")
        return json.loads(payload)


class SquareStub:
    """httpx mock transport answering the Square endpoints the client calls."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, dict[str, Any]]] = []
        self.payments: dict[str, dict[str, Any]] = {}
        self.payment_status = "COMPLETED"
        self.fail_refunds = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path
        self.requests.append((request.method, path, body))

        if request.method == "POST" and path == "/v2/payments":
            payment_id = f"sq_pay_{len(self.payments) + 1}"
            payment = {
                "id": payment_id,
                "status": self.payment_status,
                "order_id": f"sq_order_for_{payment_id}",
                "amount_money": body["amount_money"],
                "reference_id": body.get("reference_id"),
            }
            self.payments[payment_id] = payment
            return httpx.Response(200, json={"payment": payment})
        if request.method == "GET" and path.startswith("/v2/payments/"):
            payment = self.payments.get(path.rsplit("/", 1)[-1])
            if payment is None:
                return httpx.Response(
                    404, json={"errors": [{"code": "NOT_FOUND", "detail": "Payment not found"}]}
                )
            return httpx.Response(200, json={"payment": payment})
        if request.method == "POST" and path == "/v2/refunds":
            if self.fail_refunds:
                return httpx.Response(
                    400, json={"errors": [{"code": "REFUND_DECLINED", "detail": "Refund declined"}]}
                )
            return httpx.Response(
                200,
                json={
                    "refund": {
                        "id": f"sq_refund_{len(self.requests)}",
                        "status": "PENDING",
                        "amount_money": body["amount_money"],
                    }
                },
            )
        if request.method == "POST" and path == "/v2/online-checkout/payment-links":
            return httpx.Response(
                200,
                json={
                    "payment_link": {
                        "id": "sq_link_1",
                        "url": "https://square.link/u/atelier",
                        "order_id": "sq_order_1",
                    }
                },
            )
        return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [body for m, p, body in self.requests if m == method and p == path]


@pytest.fixture()
def stripe_sdk() -> FakeStripeSDK:
    return FakeStripeSDK()


@pytest.fixture()
def stripe_client(stripe_sdk: FakeStripeSDK) -> StripeClient:
    client = StripeClient("sk_test_atelier", webhook_secret="whsec_test")
    client._stripe = stripe_sdk
    return client


@pytest.fixture()
def square_stub() -> SquareStub:
    return SquareStub()


@pytest.fixture()
def square_client(square_stub: SquareStub) -> SquareClient:
    return SquareClient(
        "sq-access-token",
        location_id="LOC123",
        environment="sandbox",
        webhook_signature_key="sq-signature-key",
        currency="EUR",
        transport=httpx.MockTransport(square_stub.handler),
    )


# --- Seed data ---------------------------------------------------------------


@pytest.fixture()
def make_product(db_url: str) -> Callable[..., Awaitable[Product]]:
    async def _make(*, title: str = "Bol en grès", price: str = "24.00") -> Product:
        async with get_sessionmaker(db_url)() as session:
            product = Product(title=title, price=Decimal(price), is_active=True)
            session.add(product)
            await session.commit()
            return product

    return _make


@pytest.fixture()
def make_workshop(
    db_url: str,
) -> Callable[..., Awaitable[tuple[Workshop, WorkshopSession]]]:
    async def _make(
        *,
        title: str = "Initiation au tour",
        price: str = "45.00",
        capacity: int = 4,
        days_ahead: int = 7,
    ) -> tuple[Workshop, WorkshopSession]:
        async with get_sessionmaker(db_url)() as session:
            workshop = Workshop(
                title=title,
                price=Decimal(price),
                duration_minutes=120,
                max_participants=capacity,
                is_active=True,
            )
            session.add(workshop)
            await session.flush()
            workshop_session = WorkshopSession(
                workshop_id=workshop.id,
                session_date=date.today() + timedelta(days=days_ahead),
                start_time=time(14, 0),
                capacity=capacity,
                booked_count=0,
            )
            session.add(workshop_session)
            await session.commit()
            return workshop, workshop_session

    return _make


@pytest.fixture()
def make_gift_card(db_url: str) -> Callable[..., Awaitable[GiftCard]]:
    async def _make(*, amount: str = "50.00", code: str | None = None) -> GiftCard:
        async with get_sessionmaker(db_url)() as session:
            card = await gift_card_service.issue_gift_card(
                session,
                amount=Decimal(amount),
                code=code,
                purchaser_name="Marie Dupont",
                purchaser_email="marie@example.com",
            )
            card.delivered_at = datetime.now(UTC)
            await session.commit()
            return card

    return _make


# --- API client --------------------------------------------------------------


@pytest_asyncio.fixture()
async def app_context(
    reset_database: None,
    db_url: str,
    stripe_client: StripeClient,
    square_client: SquareClient,
) -> AsyncIterator[dict[str, Any]]:
    """Yield an async client, seeded users and the gateway fakes."""
    async with get_sessionmaker(db_url)() as session:
        admin = User(
            email="atelier@example.com",
            first_name="Claire",
            last_name="Potier",
            role=UserRole.ADMIN,
        )
        customer = User(
            email="lea.martin@example.com",
            first_name="Léa",
            last_name="Martin",
            role=UserRole.CUSTOMER,
        )
        session.add_all([admin, customer])
        await session.commit()

    app.dependency_overrides[deps.get_stripe_client] = lambda: stripe_client
    app.dependency_overrides[deps.get_square_client] = lambda: square_client

    context: dict[str, Any] = {
        "admin_id": admin.id,
        "customer_id": customer.id,
        "customer_email": customer.email,
        "admin_headers": {
            "Authorization": f"Bearer {create_access_token(str(admin.id))}"
        },
        "customer_headers": {
            "Authorization": f"Bearer {create_access_token(str(customer.id))}"
        },
    }
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            context["client"] = client
            yield context
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def production_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Switch settings to production with webhook secrets configured."""
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("FRONTEND_URL", "https://atelier.test")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "sq-signature-key")
    monkeypatch.setenv(
        "SQUARE_WEBHOOK_URL", "https://atelier.test/api/square/webhook"
    )
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
