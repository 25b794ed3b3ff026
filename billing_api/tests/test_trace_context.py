"""Tests for the W3C Trace Context middleware and request logging.

Covers traceparent parsing, trace id propagation to responses and log
records, and masking of credentials in access logs.
"""

from __future__ import annotations

import logging
import re

import pytest
from billing_api.middleware.logging import RequestLoggingMiddleware
from billing_api.middleware.trace_context import (
    TraceContextMiddleware,
    TraceLoggingFilter,
    parse_traceparent,
)
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

_VALID_TRACEPARENT = "00-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac-01"
_HEX_32 = re.compile(r"^[0-9a-f]{32}$")

_captured: list[str] = []


def _make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    @app.post("/echo")
    async def echo() -> dict[str, str]:
        record = logging.LogRecord("test", logging.INFO, "test.py", 1, "inside", (), None)
        TraceLoggingFilter().filter(record)
        _captured.append(record.trace_id)  # type: ignore[attr-defined]
        return {"ok": "yes"}

    return app


# ---------------------------------------------------------------------------
# Traceparent parsing
# ---------------------------------------------------------------------------


class TestTraceparentParsing:
    def test_valid_traceparent(self) -> None:
        assert parse_traceparent(_VALID_TRACEPARENT) == ("4bf92f3577b16e8153e785e29fc5f28c", "d75597dee50b0cac")

    def test_uppercase_accepted(self) -> None:
        trace_id, _ = parse_traceparent(_VALID_TRACEPARENT.upper())
        assert trace_id == "4bf92f3577b16e8153e785e29fc5f28c"

    @pytest.mark.parametrize(
        "header",
        [
            "",
            "not-a-traceparent",
            "ff-4bf92f3577b16e8153e785e29fc5f28c-d75597dee50b0cac-01",
            "00-00000000000000000000000000000000-d75597dee50b0cac-01",
            "00-4bf92f3577b16e8153e785e29fc5f28c-0000000000000000-01",
        ],
    )
    def test_invalid_headers(self, header: str) -> None:
        assert parse_traceparent(header) == ("", "")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_adopts_incoming_trace_id(self) -> None:
        _captured.clear()
        async with AsyncClient(transport=ASGITransport(app=_make_app()), base_url="http://test") as ac:
            resp = await ac.post("/echo", headers={"traceparent": _VALID_TRACEPARENT})

        assert resp.headers["X-Trace-ID"] == "4bf92f3577b16e8153e785e29fc5f28c"
        assert _captured == ["4bf92f3577b16e8153e785e29fc5f28c"]

    @pytest.mark.asyncio
    async def test_generates_trace_id(self) -> None:
        async with AsyncClient(transport=ASGITransport(app=_make_app()), base_url="http://test") as ac:
            resp = await ac.post("/echo")

        assert _HEX_32.match(resp.headers["X-Trace-ID"])
        assert resp.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_access_log_masks_credentials(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="billing_api.access"):
            async with AsyncClient(transport=ASGITransport(app=_make_app()), base_url="http://test") as ac:
                await ac.post(
                    "/echo",
                    headers={"Stripe-Signature": "t=1,v1=deadbeef", "Authorization": "Bearer secret-token"},
                )

        records = [r for r in caplog.records if r.name == "billing_api.access"]
        assert records
        headers = records[-1].request["headers"]  # type: ignore[attr-defined]
        assert headers["stripe-signature"] == "***"
        assert headers["authorization"] == "***"
        assert "deadbeef" not in caplog.text
