"""Repository classes providing access to the billing state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  Writes call ``session.flush()``;
the caller is responsible for calling ``session.commit()`` (or relying on
the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_core.state.tables import (
    OrganizationBillingTable,
    OrganizationMemberTable,
    OrganizationTierTable,
    StripeWebhookEventTable,
)

logger = logging.getLogger(__name__)


def _insert(session: AsyncSession, table: Any, values: dict[str, Any]) -> Any:
    """Return a dialect ``INSERT`` for *table* that supports ``ON CONFLICT``."""
    if session.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(table).values(**values)


# ---------------------------------------------------------------------------
# ProcessedEventRepository
# ---------------------------------------------------------------------------


class ProcessedEventRepository:
    """Append-only log of Stripe webhook event ids.

    ``record`` is the idempotency gate: it atomically inserts the event id
    and reports whether this call was the first writer.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event_id: str, event_type: str) -> bool:
        """Insert *event_id* into the log.

        Returns ``True`` if the event is new, ``False`` if a row with the
        same id already exists.  Any other database failure propagates as
        :class:`sqlalchemy.exc.SQLAlchemyError`.
        """
        stmt = _insert(
            self._session,
            StripeWebhookEventTable,
            {"event_id": event_id, "event_type": event_type, "received_at": datetime.now(UTC)},
        ).on_conflict_do_nothing(index_elements=["event_id"])
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# OrganizationTierRepository
# ---------------------------------------------------------------------------


class OrganizationTierRepository:
    """Read-only lookups against ``organization_tiers``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_id_by_code(self, code: str) -> str | None:
        """Return the tier primary key for *code*, or ``None`` if unknown.

        Codes are matched case-insensitively; Stripe metadata is free text
        edited by hand in the dashboard.
        """
        normalized = code.strip().lower()
        if not normalized:
            return None
        result = await self._session.execute(
            select(OrganizationTierTable.id).where(func.lower(OrganizationTierTable.code) == normalized)
        )
        return result.scalars().first()

    async def get(self, tier_id: str) -> OrganizationTierTable | None:
        return await self._session.get(OrganizationTierTable, tier_id)


# ---------------------------------------------------------------------------
# OrganizationBillingRepository
# ---------------------------------------------------------------------------


class OrganizationBillingRepository:
    """Per-organization billing rows keyed on ``org_id``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, values: dict[str, Any]) -> None:
        """Insert or update the row for ``values["org_id"]``.

        Only the columns present in *values* are written on conflict, so
        callers omit a field to leave its stored value untouched.  The
        write is a single statement; concurrent upserts for the same
        organization are serialized by the database.
        """
        if not values.get("org_id"):
            raise ValueError("org_id is required for an organization billing upsert")

        now = datetime.now(UTC)
        row = {**values, "updated_at": now}
        update_columns = [col for col in row if col != "org_id"]
        row.setdefault("created_at", now)

        stmt = _insert(self._session, OrganizationBillingTable, row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["org_id"],
            set_={col: stmt.excluded[col] for col in update_columns},
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def get(self, org_id: str) -> OrganizationBillingTable | None:
        """Return the billing row for *org_id* or ``None``."""
        result = await self._session.execute(
            select(OrganizationBillingTable)
            .where(OrganizationBillingTable.org_id == org_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_customer_id(self, org_id: str) -> str | None:
        """Return the Stripe customer id stored for *org_id*, if any."""
        result = await self._session.execute(
            select(OrganizationBillingTable.stripe_customer_id).where(OrganizationBillingTable.org_id == org_id)
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# OrganizationMemberRepository
# ---------------------------------------------------------------------------


class OrganizationMemberRepository:
    """Read-only membership checks against ``organization_members``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_member(self, org_id: str, user_id: str) -> bool:
        result = await self._session.execute(
            select(OrganizationMemberTable.role).where(
                OrganizationMemberTable.org_id == org_id,
                OrganizationMemberTable.user_id == user_id,
            )
        )
        return result.first() is not None
