"""FastAPI dependency injection for settings, database sessions and services."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from billing_core.state.database import get_engine
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from billing_api.config import BillingSettings, load_billing_settings
from billing_api.services.reconciler import BillingReconciler, SqlBillingStore
from billing_api.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: BillingSettings | None = None


def get_settings() -> BillingSettings:
    """Return the cached :class:`BillingSettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_billing_settings()
    return _settings_cache


SettingsDep = Annotated[BillingSettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: BillingSettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        service_key=settings.database_service_key.get_secret_value(),
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    The reconciler opens its own short transactions per step instead of
    sharing one request-scoped session, so it takes the factory rather
    than a session.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that commits on clean exit and rolls back on error."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Stripe and reconciler
# ---------------------------------------------------------------------------


def get_stripe_gateway(settings: SettingsDep) -> StripeGateway:
    """Return a :class:`StripeGateway` configured from settings."""
    return StripeGateway(settings)


StripeGatewayDep = Annotated[StripeGateway, Depends(get_stripe_gateway)]


def get_reconciler(settings: SettingsDep, gateway: StripeGatewayDep) -> BillingReconciler:
    """Wire a :class:`BillingReconciler` to Stripe and the SQL store."""
    return BillingReconciler(
        verifier=gateway,
        subscriptions=gateway,
        store=SqlBillingStore(get_session_factory()),
        customers=gateway,
        failure_policy=settings.idempotency_failure_policy,
    )


ReconcilerDep = Annotated[BillingReconciler, Depends(get_reconciler)]
