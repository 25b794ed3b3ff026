"""W3C Trace Context propagation.

Parses an incoming ``traceparent`` header and exposes ``trace_id`` /
``span_id`` through ``contextvars`` so every log line written while
handling a webhook delivery can be correlated.  Fresh identifiers are
generated when the header is absent or invalid.  Responses carry an
``X-Trace-ID`` header.

Header format::

    traceparent: {version}-{trace_id}-{parent_span_id}-{flags}
    Example:     00-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac-01
"""

from __future__ import annotations

import contextvars
import logging
import os
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="")
_span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("span_id", default="")

_TRACEPARENT_RE = re.compile(r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")


def parse_traceparent(header: str) -> tuple[str, str]:
    """Return ``(trace_id, parent_span_id)`` or ``("", "")`` if invalid."""
    if not header:
        return ("", "")

    match = _TRACEPARENT_RE.match(header.strip().lower())
    if not match:
        logger.debug("Invalid traceparent header: %s", header)
        return ("", "")

    version, trace_id, parent_span_id, _flags = match.groups()
    if version == "ff" or trace_id == "0" * 32 or parent_span_id == "0" * 16:
        logger.debug("Rejected traceparent header: %s", header)
        return ("", "")
    return (trace_id, parent_span_id)


class TraceContextMiddleware(BaseHTTPMiddleware):
    """Adopt or generate a trace id and open a new span for this service."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id, parent_span_id = parse_traceparent(request.headers.get("traceparent", ""))
        if not trace_id:
            trace_id = os.urandom(16).hex()
        span_id = os.urandom(8).hex()

        _trace_id_var.set(trace_id)
        _span_id_var.set(span_id)

        request.state.trace_id = trace_id
        request.state.span_id = span_id
        request.state.parent_span_id = parent_span_id

        response = await call_next(request)
        response.headers["X-Trace-ID"] = trace_id
        return response


class TraceLoggingFilter(logging.Filter):
    """Inject ``trace_id`` and ``span_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()  # type: ignore[attr-defined]
        record.span_id = _span_id_var.get()  # type: ignore[attr-defined]
        return True
