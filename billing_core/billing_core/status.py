"""Read model of an organization's billing state.

Joins the ``organization_billing`` row maintained by the webhook
reconciler with its tier and the tier's entitlements, and renders
timestamps the way the web app expects them.
"""

from __future__ import annotations

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from billing_core.billing import format_iso_timestamp
from billing_core.state.repository import OrganizationBillingRepository, OrganizationTierRepository
from billing_core.state.tables import OrganizationTierTable


class TierSummary(BaseModel):
    """A tier and what it entitles the organization to.

    ``None`` limits are unlimited.
    """

    id: str
    code: str
    name: str | None = None
    max_jobs_per_period: int | None = None
    max_users: int | None = None
    can_comment: bool = False
    can_set_favourite: bool = False
    can_use_tags: bool = False
    can_set_priority: bool = False
    can_set_status: bool = False
    can_use_projects: bool = False

    @classmethod
    def from_row(cls, row: OrganizationTierTable) -> TierSummary:
        return cls(
            id=row.id,
            code=row.code,
            name=row.name,
            max_jobs_per_period=row.max_jobs_per_period,
            max_users=row.max_users,
            can_comment=bool(row.can_comment),
            can_set_favourite=bool(row.can_set_favourite),
            can_use_tags=bool(row.can_use_tags),
            can_set_priority=bool(row.can_set_priority),
            can_set_status=bool(row.can_set_status),
            can_use_projects=bool(row.can_use_projects),
        )


class BillingStatus(BaseModel):
    """Billing state of one organization.

    Period and trial bounds are ISO-8601 UTC strings with millisecond
    precision (``2023-11-14T22:13:20.000Z``) or ``None`` when not known.
    """

    org_id: str
    status: str | None = None
    trial_start: str | None = None
    trial_end: str | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    tier: TierSummary | None = None


async def load_billing_status(session: AsyncSession, org_id: str) -> BillingStatus | None:
    """Return the billing status for *org_id*, or ``None`` if it has no row."""
    row = await OrganizationBillingRepository(session).get(org_id)
    if row is None:
        return None

    tier = None
    if row.tier_id:
        tier_row = await OrganizationTierRepository(session).get(row.tier_id)
        if tier_row is not None:
            tier = TierSummary.from_row(tier_row)

    return BillingStatus(
        org_id=row.org_id,
        status=row.status,
        trial_start=format_iso_timestamp(row.trial_start),
        trial_end=format_iso_timestamp(row.trial_end),
        current_period_start=format_iso_timestamp(row.current_period_start),
        current_period_end=format_iso_timestamp(row.current_period_end),
        tier=tier,
    )
