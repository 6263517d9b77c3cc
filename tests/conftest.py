"""
Test configuration and fixtures for QuantiPackAI.

Provides shared fixtures for unit and integration tests:
an in-memory SQLite ledger, signed Stripe webhook payloads and
HS256 bearer tokens.
"""

import hashlib
import hmac
import json
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

# Deterministic configuration; must be set before the application is imported
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123456789"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_STARTER_MONTHLY_PRICE_ID"] = "price_starter_monthly"
os.environ["STRIPE_STARTER_YEARLY_PRICE_ID"] = "price_starter_yearly"
os.environ["STRIPE_PROFESSIONAL_MONTHLY_PRICE_ID"] = "price_professional_monthly"
os.environ["STRIPE_ENTERPRISE_PRICE_ID"] = "price_enterprise"
for _key in ("STRIPE_SECRET_KEY", "AUTH_JWKS_URL", "AUTH_ISSUER", "AUTH_AUDIENCE", "DATABASE_URL"):
    os.environ.pop(_key, None)

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import quantipack.infrastructure.db.models  # noqa: F401  (registers tables)
from quantipack.config.settings import get_settings
from quantipack.domain.entitlement import PriceCatalog
from quantipack.infrastructure.payments.stripe_service import UnconfiguredStripeService
from quantipack.infrastructure.services.registration_service import register_or_refresh_user
from quantipack.infrastructure.services.webhook_reconciler import WebhookReconciler


WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
JWT_SECRET = os.environ["AUTH_JWT_SECRET"]


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def session_factory(session_maker):
    """Transactional session context, same contract as get_session_context."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Plain session for arranging and asserting ledger state."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def register_user(session_factory):
    """Register a user through the sign-in path (seeds the trial)."""

    async def _register(subject: str = "user_test_1", email: str = "ada@example.com", name: str = "Ada"):
        async with session_factory() as session:
            user, _ = await register_or_refresh_user(
                session, get_settings(), auth_subject=subject, email=email, name=name
            )
        return user

    return _register


@pytest.fixture
async def registered_user(register_user):
    return await register_user()


# =============================================================================
# Billing Fixtures
# =============================================================================

@pytest.fixture
def catalog() -> PriceCatalog:
    return PriceCatalog.from_settings(get_settings())


@pytest.fixture
def webhook_billing() -> UnconfiguredStripeService:
    """No API key, webhook secret present: verification works, sessions fail fast."""
    return UnconfiguredStripeService(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def reconciler(webhook_billing, catalog, session_factory) -> WebhookReconciler:
    return WebhookReconciler(
        billing=webhook_billing,
        catalog=catalog,
        session_factory=session_factory,
    )


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256)."""

    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp if timestamp is not None else int(time.time())
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def subscription_event():
    """Factory for customer.subscription.* event payloads."""

    def _event(
        event_type: str = "customer.subscription.created",
        event_id: str = "evt_sub_1",
        subject: Optional[str] = "user_test_1",
        price_id: Optional[str] = "price_professional_monthly",
        status: str = "active",
        period_end: int = 1893456000,
    ) -> dict:
        metadata = {"userId": subject} if subject else {}
        items = [{"id": "si_1", "price": {"id": price_id}}] if price_id else []
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": "sub_123",
                    "object": "subscription",
                    "customer": "cus_123",
                    "status": status,
                    "current_period_end": period_end,
                    "metadata": metadata,
                    "items": {"object": "list", "data": items},
                }
            },
        }

    return _event


@pytest.fixture
def encode_event():
    def _encode(event: dict) -> str:
        return json.dumps(event)

    return _encode


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def auth_headers():
    """Bearer headers carrying an HS256 token for the given subject."""

    def _headers(subject: str = "user_test_1", expires_in: int = 3600) -> dict:
        token = jwt.encode(
            {"sub": subject, "exp": int(time.time()) + expires_in},
            JWT_SECRET,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def billing_service():
    """Billing service used by checkout and portal routes; replace per test."""
    return UnconfiguredStripeService(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def app(session_maker, reconciler, catalog, billing_service):
    """FastAPI application wired to the in-memory ledger."""
    from quantipack.main import app
    from quantipack.api.dependencies import (
        get_billing_service,
        get_price_catalog,
        get_webhook_reconciler,
    )
    from quantipack.infrastructure.db.database import get_session

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_webhook_reconciler] = lambda: reconciler
    app.dependency_overrides[get_price_catalog] = lambda: catalog
    app.dependency_overrides[get_billing_service] = lambda: billing_service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async test client running in the test's event loop."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
