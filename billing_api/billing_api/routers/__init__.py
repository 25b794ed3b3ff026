"""API router modules for the billing service."""

from __future__ import annotations

from billing_api.routers import billing, health, stripe_webhook

__all__ = [
    "billing",
    "health",
    "stripe_webhook",
]
