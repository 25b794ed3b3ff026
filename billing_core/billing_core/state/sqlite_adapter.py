"""SQLite backend for local runs and tests.

The ORM tables are shared with PostgreSQL, so the reconciler and the
``billing-ops`` commands behave the same against a file on disk.  What
differs: no pool, tables come from ``create_all`` rather than Alembic, tier
rows are not seeded, and timestamps are read back naive (they are UTC).
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_MEMORY = ":memory:"

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


def _apply_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in _PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def get_local_engine(db_path: Path | str = ".billing/state.db") -> AsyncEngine:
    """Return an aiosqlite engine for *db_path*.

    Missing parent directories are created.  Pass ``":memory:"`` for a
    throwaway database.
    """
    if str(db_path) == _MEMORY:
        url = f"sqlite+aiosqlite:///{_MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine.sync_engine, "connect", _apply_pragmas)

    logger.info("Local billing store at %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create any missing billing tables.  Safe to repeat."""
    from billing_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
