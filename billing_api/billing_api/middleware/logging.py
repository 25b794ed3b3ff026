"""Access log for the billing service.

One ``billing_api.access`` record per request, carrying a ``request`` dict
that :class:`~billing_api.middleware.json_formatter.JSONFormatter` emits as
structured fields.  Webhook signatures and bearer tokens never reach the log.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("billing_api.access")

CORRELATION_HEADER = "X-Correlation-ID"

_REDACTED = "***"
_REDACT = frozenset({"authorization", "cookie", "stripe-signature", "x-api-key"})


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _redacted_headers(request: Request) -> dict[str, str]:
    return {name: (_REDACTED if name.lower() in _REDACT else value) for name, value in request.headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and latency of every request.

    The correlation id comes from ``X-Correlation-ID`` when the caller sends
    one and is otherwise generated; either way it is echoed on the response.
    A request that raises is logged as a 500 before the error propagates.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            logger.log(
                _level_for(status_code),
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "request": {
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": status_code,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "client": request.client.host if request.client else None,
                        "correlation_id": correlation_id,
                        "trace_id": getattr(request.state, "trace_id", ""),
                        "headers": _redacted_headers(request),
                    }
                },
            )
