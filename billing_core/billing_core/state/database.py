"""Engine and session helpers for the billing store.

The URL scheme picks the backend: ``postgresql+asyncpg://`` gets a pooled
engine authenticated with the service-role key, ``sqlite+aiosqlite://`` is
handed to :mod:`billing_core.state.sqlite_adapter`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Webhook handlers do a handful of single-row statements; anything slower
# than this is a stuck lock, and Stripe will retry the delivery.
_STATEMENT_TIMEOUT_MS = 15_000
_LOCK_TIMEOUT_MS = 5_000


def _postgres_engine(url: URL, pool_size: int, max_overflow: int) -> AsyncEngine:
    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "application_name": "rfq-billing",
                "statement_timeout": str(_STATEMENT_TIMEOUT_MS),
                "lock_timeout": str(_LOCK_TIMEOUT_MS),
            }
        },
    )
    logger.info(
        "Billing store engine ready host=%s db=%s pool_size=%d",
        url.host,
        url.database,
        pool_size,
    )
    return engine


def get_engine(
    database_url: str,
    service_key: str | None = None,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Build the async engine for *database_url*.

    *service_key* becomes the connection password so the configured URL
    never has to carry the credential.  SQLite URLs ignore it, along with
    the pool sizing.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        from billing_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    if service_key:
        url = url.set(password=service_key)
    return _postgres_engine(url, pool_size, max_overflow)


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on error."""
    async with async_sessionmaker(engine, expire_on_commit=False)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
