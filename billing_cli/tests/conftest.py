"""Shared fixtures for billing CLI tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest


@pytest.fixture()
def billing_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a throwaway SQLite database and test credentials."""
    db_path = tmp_path / "state.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BILLING_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("BILLING_DATABASE_SERVICE_KEY", "test-service-key")
    monkeypatch.setenv("BILLING_STRIPE_SECRET_KEY", "sk_test_xxx")
    monkeypatch.setenv("BILLING_STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
    return db_path


@pytest.fixture()
def write_event(tmp_path: Path):
    """Write a Stripe event envelope to a JSON file and return its path."""

    def _write(event_type: str, obj: dict, event_id: str = "evt_cli_1") -> Path:
        path = tmp_path / f"{event_id}.json"
        path.write_text(
            json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}),
            encoding="utf-8",
        )
        return path

    return _write
