"""Health-check and readiness probe endpoints.

The ``/health`` endpoint (liveness) is registered under the versioned API
prefix (``/api/v1/health``).  The ``/ready`` endpoint is a readiness probe
registered at the application root so that orchestrators and
load-balancers can gate traffic independently of the API version.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from billing_api import __version__
from billing_api.dependencies import SessionDep
from billing_api.schemas import HealthResponse

logger = logging.getLogger(__name__)

# Short timeout so probes respond quickly when the database hangs.
_DB_CHECK_TIMEOUT = 2.0

router = APIRouter(tags=["health"])


async def _check_db(session: AsyncSession) -> bool:
    try:
        await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=_DB_CHECK_TIMEOUT)
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        # Leave the session clean so the dependency's commit does not fail.
        await session.rollback()
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep) -> HealthResponse:
    """Return service health.

    Always HTTP 200 so load-balancers see the process as alive; ``db``
    reports whether the database is reachable.
    """
    db_ok = await _check_db(session)
    return HealthResponse(status="healthy", version=__version__, db="ok" if db_ok else "unavailable")


# ---------------------------------------------------------------------------
# Readiness probe (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep) -> JSONResponse:
    """Readiness probe: HTTP 200 when the database answers, else 503."""
    db_ok = await _check_db(session)
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "not_ready",
            "version": __version__,
            "checks": {"db": "ok" if db_ok else "unavailable"},
        },
    )
