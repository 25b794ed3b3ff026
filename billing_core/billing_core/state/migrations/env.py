"""Alembic environment for the billing tables.

The target database is taken from ``ALEMBIC_DATABASE_URL`` when set,
otherwise from the service's own ``BILLING_DATABASE_URL`` and
``BILLING_DATABASE_SERVICE_KEY``.  Migrations always run on a synchronous
driver, so async URLs are rewritten (asyncpg to psycopg, aiosqlite to
pysqlite).
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import URL, make_url

from billing_core.state.tables import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_SYNC_DRIVERS = {
    "postgresql": "postgresql+psycopg",
    "postgresql+asyncpg": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
}


def migration_url() -> URL:
    raw = os.environ.get("ALEMBIC_DATABASE_URL") or os.environ.get("BILLING_DATABASE_URL")
    if not raw:
        raw = config.get_main_option("sqlalchemy.url")
    if not raw:
        raise RuntimeError("Set BILLING_DATABASE_URL (or ALEMBIC_DATABASE_URL) before running migrations")

    url = make_url(raw)
    service_key = os.environ.get("BILLING_DATABASE_SERVICE_KEY")
    if service_key and not os.environ.get("ALEMBIC_DATABASE_URL") and url.get_backend_name() == "postgresql":
        url = url.set(password=service_key)

    url = url.set(drivername=_SYNC_DRIVERS.get(url.drivername, url.drivername))

    # asyncpg spells it ``ssl``, libpq spells it ``sslmode``.
    if "ssl" in url.query:
        query = dict(url.query)
        query["sslmode"] = query.pop("ssl")
        url = url.set(query=query)
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(migration_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
