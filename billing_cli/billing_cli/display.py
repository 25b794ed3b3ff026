"""Rich output formatting for the billing operations CLI.

All functions write to a :class:`rich.console.Console` bound to *stderr* so
that ``--json`` output on *stdout* stays machine-readable.
"""

from __future__ import annotations

from billing_core.billing import OutcomeStatus, ReconcileOutcome
from billing_core.status import BillingStatus
from rich.console import Console
from rich.table import Table

_OUTCOME_COLOURS: dict[OutcomeStatus, str] = {
    OutcomeStatus.APPLIED: "green",
    OutcomeStatus.SKIPPED: "yellow",
    OutcomeStatus.DUPLICATE: "dim",
    OutcomeStatus.FAILED: "red",
}

_SUBSCRIPTION_COLOURS: dict[str, str] = {
    "active": "green",
    "trialing": "cyan",
    "past_due": "yellow",
    "unpaid": "red",
    "canceled": "dim red",
    "incomplete": "yellow",
    "incomplete_expired": "dim red",
}


def _coloured(value: str, colour: str) -> str:
    return f"[{colour}]{value}[/{colour}]"


def display_outcome(console: Console, outcome: ReconcileOutcome) -> None:
    """Render the result of reconciling one event."""
    colour = _OUTCOME_COLOURS.get(outcome.status, "white")
    console.print(
        f"{outcome.event_id} ({outcome.event_type}): {_coloured(outcome.status.value.upper(), colour)}"
    )
    if outcome.org_id:
        console.print(f"  organization: {outcome.org_id}")
    if outcome.reason:
        console.print(f"  reason: {outcome.reason}")


def display_billing_status(console: Console, status: BillingStatus) -> None:
    """Render an organization's billing row as a two-column table."""
    table = Table(title=f"Billing - {status.org_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    sub_status = status.status or "-"
    table.add_row("Status", _coloured(sub_status, _SUBSCRIPTION_COLOURS.get(sub_status, "white")))
    table.add_row("Tier", f"{status.tier.code} ({status.tier.name or status.tier.id})" if status.tier else "-")
    table.add_row("Period start", status.current_period_start or "-")
    table.add_row("Period end", status.current_period_end or "-")
    if status.trial_end:
        table.add_row("Trial end", status.trial_end)
    if status.tier:
        table.add_row("Jobs / period", _limit(status.tier.max_jobs_per_period))
        table.add_row("Users", _limit(status.tier.max_users))

    console.print(table)


def _limit(value: int | None) -> str:
    return "unlimited" if value is None else str(value)
