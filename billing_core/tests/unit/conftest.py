"""Shared fixtures for billing_core unit tests.

Tests run against an in-memory SQLite database via aiosqlite so they do
not need a PostgreSQL instance.
"""

from __future__ import annotations

import pytest_asyncio
from billing_core.state.tables import Base, OrganizationTierTable
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine


@pytest_asyncio.fixture
async def session_factory():
    """Provide a session factory bound to a fresh in-memory database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Provide a single async session on the in-memory database."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def add_tier(async_session):
    """Insert an ``organization_tiers`` row into :func:`async_session`."""

    async def _add(tier_id: str, code: str, name: str | None = None, **entitlements) -> OrganizationTierTable:
        row = OrganizationTierTable(id=tier_id, code=code, name=name, **entitlements)
        async_session.add(row)
        await async_session.flush()
        return row

    return _add
