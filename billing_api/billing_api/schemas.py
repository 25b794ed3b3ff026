"""Shared Pydantic response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI specification.
"""

from __future__ import annotations

from pydantic import BaseModel


class SessionUrlResponse(BaseModel):
    """Redirect URL for a Stripe-hosted page (Checkout or Billing Portal)."""

    url: str


class HealthResponse(BaseModel):
    """Liveness probe body."""

    status: str
    version: str
    db: str
