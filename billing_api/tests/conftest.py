"""Shared fixtures for billing service tests.

Provides test settings, in-memory collaborators for the reconciler, an
in-memory SQLite session factory, and a signed-webhook helper.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from typing import Any

import jwt
import pytest
import pytest_asyncio

# Required settings must exist BEFORE importing application modules:
# ``billing_api.main`` builds the app (and validates settings) at import.
_TEST_WEBHOOK_SECRET = "whsec_test_secret"
os.environ.setdefault("BILLING_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BILLING_DATABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("BILLING_STRIPE_SECRET_KEY", "sk_test_xxx")
os.environ.setdefault("BILLING_STRIPE_WEBHOOK_SECRET", _TEST_WEBHOOK_SECRET)

from billing_api.config import BillingSettings  # noqa: E402
from billing_api.services.reconciler import (  # noqa: E402
    SignatureVerificationFailed,
    SubscriptionFetchError,
)
from billing_core.events import SubscriptionSnapshot  # noqa: E402
from billing_core.state.tables import Base, OrganizationMemberTable, OrganizationTierTable  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

TEST_JWT_SECRET = "test-jwt-secret-for-billing-tests-0123456789"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> BillingSettings:
    values: dict[str, Any] = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "database_service_key": "test-service-key",
        "stripe_secret_key": "sk_test_xxx",
        "stripe_webhook_secret": _TEST_WEBHOOK_SECRET,
        "platform_env": "dev",
        "cors_origins": ["http://localhost:5173"],
    }
    values.update(overrides)
    return BillingSettings(**values)


@pytest.fixture()
def test_settings() -> BillingSettings:
    """Settings with the frontend endpoints enabled."""
    return make_settings(
        frontend_url="https://app.example.com/",
        auth_jwt_secret=TEST_JWT_SECRET,
        stripe_price_starter_monthly_usd="price_starter_m_usd",
        stripe_price_pro_yearly_eur="price_pro_y_eur",
    )


@pytest.fixture()
def settings_factory():
    return make_settings


def make_access_token(
    sub: str = "user_1",
    email: str | None = "owner@example.com",
    *,
    secret: str = TEST_JWT_SECRET,
    audience: str = "authenticated",
    expires_in: int = 3600,
) -> str:
    """Issue an HS256 access token like the auth provider does."""
    now = int(time.time())
    claims: dict[str, Any] = {"sub": sub, "aud": audience, "iat": now, "exp": now + expires_in}
    if email is not None:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture()
def access_token():
    return make_access_token


# ---------------------------------------------------------------------------
# Webhook signing
# ---------------------------------------------------------------------------


def sign_payload(payload: bytes, secret: str = _TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs deliveries."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def event_body(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> bytes:
    """Serialize a Stripe event envelope."""
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}},
        separators=(",", ":"),
    ).encode()


@pytest.fixture()
def signer():
    return sign_payload


@pytest.fixture()
def make_event_body():
    return event_body


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeVerifier:
    """Accepts signatures equal to ``valid`` and rejects everything else."""

    def __init__(self, valid: str = "valid") -> None:
        self.valid = valid

    def verify(self, payload: bytes, signature: str | None) -> None:
        if signature != self.valid:
            raise SignatureVerificationFailed("bad signature")


class FakeSubscriptions:
    """Serves subscriptions from a dict; ids in ``failing`` raise."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def add(self, **data: Any) -> None:
        self.subscriptions[data["id"]] = data

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self.calls.append(subscription_id)
        if subscription_id in self.failing or subscription_id not in self.subscriptions:
            raise SubscriptionFetchError(subscription_id, "connection reset")
        return SubscriptionSnapshot.model_validate(self.subscriptions[subscription_id])


class FakeCustomers:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.updates: list[tuple[str, dict[str, str]]] = []

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        if self.fail:
            raise RuntimeError("stripe unavailable")
        self.updates.append((customer_id, metadata))


class FakeStore:
    """Dict-backed store with the same non-destructive upsert semantics."""

    def __init__(self) -> None:
        self.events: dict[str, str] = {}
        self.tiers: dict[str, str] = {"starter": "tier_starter", "pro": "tier_pro"}
        self.billing: dict[str, dict[str, Any]] = {}
        self.upserts: list[dict[str, Any]] = []
        self.record_error: Exception | None = None
        self.upsert_error: Exception | None = None
        self.tier_error: Exception | None = None

    async def record_event(self, event_id: str, event_type: str) -> bool:
        if self.record_error is not None:
            raise self.record_error
        if event_id in self.events:
            return False
        self.events[event_id] = event_type
        return True

    async def find_tier_id(self, code: str) -> str | None:
        if self.tier_error is not None:
            raise self.tier_error
        return self.tiers.get(code)

    async def upsert_billing(self, values: dict[str, Any]) -> None:
        if self.upsert_error is not None:
            raise self.upsert_error
        self.upserts.append(dict(values))
        self.billing.setdefault(values["org_id"], {}).update(values)


@pytest.fixture()
def fake_verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture()
def fake_subscriptions() -> FakeSubscriptions:
    return FakeSubscriptions()


@pytest.fixture()
def fake_customers() -> FakeCustomers:
    return FakeCustomers()


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()


# ---------------------------------------------------------------------------
# SQLite-backed state
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory():
    """Session factory on a fresh in-memory database seeded with tiers.

    ``user_1`` (the default access-token subject) belongs to ``org_1``,
    ``org_new`` and ``org_x``; ``org_2`` belongs to ``user_2`` only.
    """
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session, session.begin():
        session.add_all(
            [
                OrganizationTierTable(id="tier_starter", code="starter", name="Starter"),
                OrganizationTierTable(id="tier_pro", code="pro", name="Pro"),
                OrganizationMemberTable(org_id="org_1", user_id="user_1", role="owner"),
                OrganizationMemberTable(org_id="org_new", user_id="user_1", role="owner"),
                OrganizationMemberTable(org_id="org_x", user_id="user_1", role="member"),
                OrganizationMemberTable(org_id="org_2", user_id="user_2", role="owner"),
            ]
        )

    yield factory

    await engine.dispose()
