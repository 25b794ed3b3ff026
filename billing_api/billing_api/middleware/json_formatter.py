"""Single-line JSON log output.

Enabled with ``BILLING_STRUCTURED_LOGGING=true``; the application then
replaces the root handlers with a ``StreamHandler`` using this formatter so
log aggregators can index fields without regex parsing.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "billing_api.access",
        "message": "request completed",
        "trace_id": "...",          // when TraceLoggingFilter is attached
        "request": { ... },         // access log entries
        "exc_info": "Traceback ..." // only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Record attributes copied verbatim into the payload when present.
_CONTEXT_ATTRS = ("trace_id", "span_id", "request")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value:
                payload[attr] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", *, structured: bool = False) -> None:
    """Install the root log handler.

    Structured mode emits :class:`JSONFormatter` lines; otherwise a plain
    text format carrying the trace id is used.  Both attach
    :class:`~billing_api.middleware.trace_context.TraceLoggingFilter`.
    """
    from billing_api.middleware.trace_context import TraceLoggingFilter

    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] [trace=%(trace_id)s] %(message)s"))
    handler.addFilter(TraceLoggingFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())
