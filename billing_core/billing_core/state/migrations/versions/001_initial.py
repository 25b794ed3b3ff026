"""Initial billing schema.

Creates ``organization_tiers`` (seeded with the trial, starter and pro
entitlements), ``organization_members``, ``organization_billing`` and the
``stripe_webhook_events`` idempotency log.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_FEATURE_FLAGS = (
    "can_comment",
    "can_set_favourite",
    "can_use_tags",
    "can_set_priority",
    "can_set_status",
    "can_use_projects",
)

_SEED_TIERS = [
    {
        "id": "tier_trial",
        "code": "trial",
        "name": "Trial",
        "max_jobs_per_period": 20,
        "max_users": 2,
        **{flag: False for flag in _FEATURE_FLAGS},
    },
    {
        "id": "tier_starter",
        "code": "starter",
        "name": "Starter",
        "max_jobs_per_period": 100,
        "max_users": 3,
        **{flag: flag in ("can_comment", "can_set_favourite") for flag in _FEATURE_FLAGS},
    },
    {
        "id": "tier_pro",
        "code": "pro",
        "name": "Pro",
        "max_jobs_per_period": 500,
        "max_users": 10,
        **{flag: True for flag in _FEATURE_FLAGS},
    },
]


def upgrade() -> None:
    op.create_table(
        "organization_tiers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("max_jobs_per_period", sa.Integer, nullable=True),
        sa.Column("max_users", sa.Integer, nullable=True),
        *(sa.Column(flag, sa.Boolean, nullable=False, server_default=sa.false()) for flag in _FEATURE_FLAGS),
    )

    op.create_table(
        "organization_members",
        sa.Column("org_id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="member"),
    )
    op.create_index("ix_organization_members_user", "organization_members", ["user_id"])

    op.create_table(
        "organization_billing",
        sa.Column("org_id", sa.String(64), primary_key=True),
        sa.Column("stripe_customer_id", sa.String(256), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(256), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "tier_id",
            sa.String(64),
            sa.ForeignKey("organization_tiers.id"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_organization_billing_stripe_customer",
        "organization_billing",
        ["stripe_customer_id"],
    )
    op.create_index(
        "ix_organization_billing_stripe_subscription",
        "organization_billing",
        ["stripe_subscription_id"],
    )

    op.create_table(
        "stripe_webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_stripe_webhook_events_type",
        "stripe_webhook_events",
        ["event_type"],
    )

    op.bulk_insert(
        sa.table(
            "organization_tiers",
            sa.column("id", sa.String),
            sa.column("code", sa.String),
            sa.column("name", sa.String),
            sa.column("max_jobs_per_period", sa.Integer),
            sa.column("max_users", sa.Integer),
            *(sa.column(flag, sa.Boolean) for flag in _FEATURE_FLAGS),
        ),
        _SEED_TIERS,
    )


def downgrade() -> None:
    op.drop_index("ix_stripe_webhook_events_type")
    op.drop_table("stripe_webhook_events")
    op.drop_index("ix_organization_billing_stripe_subscription")
    op.drop_index("ix_organization_billing_stripe_customer")
    op.drop_table("organization_billing")
    op.drop_index("ix_organization_members_user")
    op.drop_table("organization_members")
    op.drop_table("organization_tiers")
