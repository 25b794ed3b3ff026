"""Organization billing merge policy.

Builds the write payload that folds a Stripe subscription snapshot into
an ``organization_billing`` row, and defines the per-event outcome the
reconciler reports back to the HTTP layer.

The payload is non-destructive: identity and status columns are always
written, while period and tier columns are only present when their new
value is known.  Omitted columns keep their stored value under the
``ON CONFLICT (org_id) DO UPDATE`` upsert.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from billing_core.events import SubscriptionSnapshot


def unix_to_datetime(value: int | float | None) -> datetime | None:
    """Convert a unix timestamp in seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def format_iso_timestamp(value: datetime | None) -> str | None:
    """Render *value* as ISO-8601 UTC with millisecond precision.

    ``2023-11-14T22:13:20.000Z``.  Naive datetimes (as returned by SQLite)
    are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def resolve_tier_code(override: str | None, subscription: SubscriptionSnapshot) -> str | None:
    """Return the tier code to apply: an explicit override wins over metadata."""
    for candidate in (override, subscription.tier):
        if candidate and candidate.strip():
            return candidate.strip().lower()
    return None


def build_billing_update(
    org_id: str,
    subscription: SubscriptionSnapshot,
    tier_id: str | None = None,
) -> dict[str, Any]:
    """Build the upsert payload for ``organization_billing``.

    Parameters
    ----------
    org_id:
        Organization the subscription is attributed to.
    subscription:
        Canonical (or fallback embedded) subscription snapshot.
    tier_id:
        Resolved ``organization_tiers.id``; omitted when ``None``.

    Returns
    -------
    dict
        Column-value mapping.  ``current_period_start``,
        ``current_period_end`` and ``tier_id`` are absent unless known.
    """
    values: dict[str, Any] = {
        "org_id": org_id,
        "stripe_customer_id": subscription.customer,
        "stripe_subscription_id": subscription.id,
        "status": subscription.status,
    }

    period_start = unix_to_datetime(subscription.current_period_start)
    if period_start is not None:
        values["current_period_start"] = period_start

    period_end = unix_to_datetime(subscription.current_period_end)
    if period_end is not None:
        values["current_period_end"] = period_end

    if tier_id is not None:
        values["tier_id"] = tier_id

    return values


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class OutcomeStatus(str, Enum):
    """What happened to a single webhook event."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of reconciling one webhook event.

    Attributes
    ----------
    status:
        Terminal state for the event.
    event_id, event_type:
        The Stripe event this outcome belongs to.
    org_id:
        Organization the event was attributed to, when known.
    reason:
        Short machine-readable explanation for skips and failures.
    retryable:
        Whether the sender should redeliver.  Only set for failures that
        a redelivery can fix; the HTTP layer answers 500 for these.
    """

    status: OutcomeStatus
    event_id: str
    event_type: str
    org_id: str | None = None
    reason: str | None = None
    retryable: bool = False

    @classmethod
    def applied(cls, event_id: str, event_type: str, org_id: str) -> ReconcileOutcome:
        return cls(OutcomeStatus.APPLIED, event_id, event_type, org_id=org_id)

    @classmethod
    def skipped(cls, event_id: str, event_type: str, reason: str, org_id: str | None = None) -> ReconcileOutcome:
        return cls(OutcomeStatus.SKIPPED, event_id, event_type, org_id=org_id, reason=reason)

    @classmethod
    def duplicate(cls, event_id: str, event_type: str) -> ReconcileOutcome:
        return cls(OutcomeStatus.DUPLICATE, event_id, event_type, reason="already_processed")

    @classmethod
    def failed(
        cls,
        event_id: str,
        event_type: str,
        reason: str,
        *,
        org_id: str | None = None,
        retryable: bool = False,
    ) -> ReconcileOutcome:
        return cls(OutcomeStatus.FAILED, event_id, event_type, org_id=org_id, reason=reason, retryable=retryable)
