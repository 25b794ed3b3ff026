"""SQLAlchemy 2.0 ORM table definitions for the billing state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, false
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all billing tables."""


# ---------------------------------------------------------------------------
# Pricing tiers
# ---------------------------------------------------------------------------


class OrganizationTierTable(Base):
    """Pricing tiers: the code Stripe metadata refers to, plus entitlements.

    Owned by the application's onboarding flow; the webhook reconciler only
    reads it.
    """

    __tablename__ = "organization_tiers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Entitlements.  A NULL limit means unlimited.
    max_jobs_per_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_users: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_comment: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    can_set_favourite: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    can_use_tags: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    can_set_priority: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    can_set_status: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    can_use_projects: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)


# ---------------------------------------------------------------------------
# Organization membership
# ---------------------------------------------------------------------------


class OrganizationMemberTable(Base):
    """Which users belong to which organization.

    Maintained by the application's invite flow; the billing service only
    reads it to authorize the web app's billing calls.
    """

    __tablename__ = "organization_members"

    org_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="member")

    __table_args__ = (Index("ix_organization_members_user", "user_id"),)


# ---------------------------------------------------------------------------
# Organization billing
# ---------------------------------------------------------------------------


class OrganizationBillingTable(Base):
    """Stripe customer and subscription state per organization.

    One row per organization, keyed on ``org_id``.  Rows are written with a
    single ``INSERT ... ON CONFLICT (org_id) DO UPDATE`` that only touches the
    columns present in the write, so a known billing period is never
    replaced with NULL.
    """

    __tablename__ = "organization_billing"

    org_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set when the application starts a trial; webhook writes never touch them.
    trial_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tier_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("organization_tiers.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_organization_billing_stripe_customer", "stripe_customer_id"),
        Index("ix_organization_billing_stripe_subscription", "stripe_subscription_id"),
    )


# ---------------------------------------------------------------------------
# Processed webhook events
# ---------------------------------------------------------------------------


class StripeWebhookEventTable(Base):
    """Append-only log of Stripe event ids that have been accepted.

    The primary key on ``event_id`` is the idempotency gate: the first
    delivery inserts the row, every redelivery conflicts and is treated as
    a duplicate.  Rows are never updated or deleted.
    """

    __tablename__ = "stripe_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_stripe_webhook_events_type", "event_type"),)
