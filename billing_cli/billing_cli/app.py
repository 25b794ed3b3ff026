"""Billing operations CLI -- Typer-based operator interface.

Provides commands to run the service, apply database migrations, replay a
saved Stripe event and inspect an organization's billing state.
Human-readable output goes to *stderr* via Rich; ``--json`` output goes to
*stdout*.

Configuration comes from the same ``BILLING_*`` environment variables (or
``.env`` file) as the service itself.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console

from billing_cli.display import display_billing_status, display_outcome

if TYPE_CHECKING:
    from billing_api.config import BillingSettings
    from billing_core.billing import ReconcileOutcome
    from billing_core.events import BillingEvent
    from billing_core.status import BillingStatus
    from sqlalchemy.ext.asyncio import AsyncEngine

app = typer.Typer(
    name="billing-ops",
    help="Operations for the RFQ billing service.",
    no_args_is_help=True,
)
console = Console(stderr=True)

_DEFAULT_ALEMBIC_INI = Path(__file__).resolve().parents[2] / "billing_core" / "alembic.ini"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> BillingSettings:
    """Load settings or exit with code 3 when the configuration is invalid."""
    from billing_api.config import load_billing_settings
    from pydantic import ValidationError

    try:
        return load_billing_settings()
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=3) from exc


async def _open_engine(settings: BillingSettings) -> AsyncEngine:
    from billing_core.state.database import get_engine
    from billing_core.state.sqlite_adapter import create_local_tables

    engine = get_engine(
        settings.database_url,
        service_key=settings.database_service_key.get_secret_value(),
    )
    if settings.database_url.startswith("sqlite"):
        await create_local_tables(engine)
    return engine


async def _replay(settings: BillingSettings, event: BillingEvent, force: bool) -> ReconcileOutcome:
    from billing_api.services.reconciler import BillingReconciler, SqlBillingStore
    from billing_api.services.stripe_gateway import StripeGateway
    from sqlalchemy.ext.asyncio import async_sessionmaker

    engine = await _open_engine(settings)
    try:
        gateway = StripeGateway(settings)
        reconciler = BillingReconciler(
            verifier=gateway,
            subscriptions=gateway,
            store=SqlBillingStore(async_sessionmaker(engine, expire_on_commit=False)),
            customers=gateway,
            failure_policy=settings.idempotency_failure_policy,
        )
        return await reconciler.reconcile(event, force=force)
    finally:
        await engine.dispose()


async def _status(settings: BillingSettings, org_id: str) -> BillingStatus | None:
    from billing_core.state.database import get_session
    from billing_core.status import load_billing_status

    engine = await _open_engine(settings)
    try:
        async with get_session(engine) as session:
            return await load_billing_status(session, org_id)
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address (defaults to BILLING_HOST)."),
    port: int | None = typer.Option(None, "--port", help="Bind port (defaults to BILLING_PORT)."),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes (development only)."),
) -> None:
    """Run the billing API under uvicorn."""
    settings = _load_settings()

    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"[green]✓[/green] Billing API starting on http://{bind_host}:{bind_port}")
    console.print(f"[green]✓[/green] Stripe webhook at http://{bind_host}:{bind_port}/api/v1/stripe/webhook")

    uvicorn.run(
        "billing_api.main:app",
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


@app.command()
def migrate(
    revision: str = typer.Option("head", "--revision", help="Target Alembic revision."),
    config: Path = typer.Option(_DEFAULT_ALEMBIC_INI, "--config", help="Path to alembic.ini."),
) -> None:
    """Apply database migrations up to REVISION."""
    from alembic import command
    from alembic.config import Config

    if not config.is_file():
        console.print(f"[red]Alembic config not found: {config}[/red]")
        raise typer.Exit(code=2)

    alembic_cfg = Config(str(config))
    command.upgrade(alembic_cfg, revision)
    console.print(f"[green]✓[/green] Database upgraded to {revision}")


@app.command()
def replay(
    event_file: Path = typer.Argument(..., help="Stripe event JSON, as downloaded from the dashboard."),
    force: bool = typer.Option(
        False,
        "--force",
        help="Apply even if the event id was already processed.",
    ),
) -> None:
    """Reconcile a saved Stripe event without a signature check.

    Exits with code 1 when the outcome is FAILED.
    """
    from billing_core.billing import OutcomeStatus
    from billing_core.events import InvalidEventPayload, parse_event

    try:
        event = parse_event(event_file.read_bytes())
    except OSError as exc:
        console.print(f"[red]Cannot read {event_file}: {exc}[/red]")
        raise typer.Exit(code=2) from exc
    except InvalidEventPayload as exc:
        console.print(f"[red]Invalid event file: {exc}[/red]")
        raise typer.Exit(code=2) from exc

    settings = _load_settings()
    outcome = asyncio.run(_replay(settings, event, force))
    display_outcome(console, outcome)

    if outcome.status is OutcomeStatus.FAILED:
        raise typer.Exit(code=1)


@app.command()
def status(
    org_id: str = typer.Argument(..., help="Organization id."),
    json_mode: bool = typer.Option(False, "--json", help="Print the status as JSON on stdout."),
) -> None:
    """Show an organization's subscription status, tier and period."""
    settings = _load_settings()
    billing_status = asyncio.run(_status(settings, org_id))

    if billing_status is None:
        console.print(f"[yellow]No billing information for {org_id}[/yellow]")
        raise typer.Exit(code=1)

    if json_mode:
        typer.echo(billing_status.model_dump_json())
    else:
        display_billing_status(console, billing_status)
