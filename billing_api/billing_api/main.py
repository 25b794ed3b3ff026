"""FastAPI application entry-point for the billing service."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from billing_api import __version__
from billing_api.config import PlatformEnv, load_billing_settings
from billing_api.dependencies import dispose_engine, init_engine
from billing_api.middleware.json_formatter import configure_logging
from billing_api.middleware.logging import RequestLoggingMiddleware
from billing_api.middleware.trace_context import TraceContextMiddleware
from billing_api.routers import billing, health, stripe_webhook

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create tables when running against SQLite or in dev (production
      uses Alembic migrations).

    On shutdown:
    - Dispose the database engine connection pool.
    """
    settings = load_billing_settings()
    configure_logging(settings.log_level, structured=settings.structured_logging)

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s)",
        "local SQLite" if is_local else "postgres",
    )

    if settings.platform_env == PlatformEnv.DEV or is_local:
        from billing_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-migration")

    if not settings.frontend_enabled:
        logger.info("Checkout and portal endpoints disabled (frontend_url or auth_jwt_secret not set)")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application.

    Loading settings here makes a missing Stripe or database credential
    fail at import time, before the server binds its port.
    """
    settings = load_billing_settings()

    app = FastAPI(
        title="RFQ Billing Service",
        description="Stripe webhook reconciliation and billing sessions for RFQ triage organizations.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(stripe_webhook.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")

    # Infrastructure endpoints, outside versioning.
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn billing_api.main:app``.
app = create_app()
