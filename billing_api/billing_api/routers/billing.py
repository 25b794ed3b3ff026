"""Billing endpoints called by the web app: Checkout, Billing Portal and status."""

from __future__ import annotations

import logging
from typing import Annotated

from billing_core.pricing import BillingPeriod, Currency, PricingError, Tier
from billing_core.state.repository import OrganizationMemberRepository
from billing_core.status import BillingStatus, load_billing_status
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_api.dependencies import SessionDep, SettingsDep, StripeGatewayDep
from billing_api.schemas import SessionUrlResponse
from billing_api.security import AuthenticatedUser, CurrentUserDep
from billing_api.services.checkout_service import (
    CheckoutService,
    MissingStripeCustomerError,
    SessionUrlMissingError,
)
from billing_api.services.stripe_gateway import StripeGatewayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    """Request body for ``POST /billing/checkout-session``."""

    tier: Tier = Field(..., description="Tier to subscribe to.")
    period: BillingPeriod = Field(..., description="Billing period.")
    currency: Currency = Field(..., description="Currency the price is charged in.")
    org_id: str = Field(..., min_length=1, description="Organization the subscription is for.")
    lang: str | None = Field(None, description="UI language for the redirect pages (en, cs, de).")


class PortalRequest(BaseModel):
    """Request body for ``POST /billing/portal-session``."""

    org_id: str = Field(..., min_length=1, description="Organization whose subscription is managed.")
    lang: str | None = Field(None, description="UI language for the return page (en, cs, de).")


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


async def _require_membership(session: AsyncSession, user: AuthenticatedUser, org_id: str) -> None:
    """Raise 403 unless *user* belongs to *org_id*."""
    if not await OrganizationMemberRepository(session).is_member(org_id, user.user_id):
        logger.warning("User %s denied billing access to org %s", user.user_id, org_id)
        raise HTTPException(status_code=403, detail="Not a member of this organization")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/checkout-session", response_model=SessionUrlResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    user: CurrentUserDep,
    session: SessionDep,
    settings: SettingsDep,
    gateway: StripeGatewayDep,
) -> SessionUrlResponse:
    """Create a Stripe Checkout Session for a paid tier."""
    await _require_membership(session, user, body.org_id)
    service = CheckoutService(session, settings, gateway)
    try:
        url = await service.create_checkout_session(
            org_id=body.org_id,
            user_id=user.user_id,
            tier=body.tier,
            period=body.period,
            currency=body.currency,
            lang=body.lang,
            customer_email=user.email,
        )
    except PricingError as exc:
        logger.warning("Checkout rejected for org %s: %s", body.org_id, exc)
        raise HTTPException(status_code=400, detail="Invalid pricing combination") from exc
    except StripeGatewayError as exc:
        logger.error("Checkout session creation failed for org %s: %s", body.org_id, exc)
        raise HTTPException(status_code=502, detail="Payment provider error") from exc
    except SessionUrlMissingError as exc:
        logger.error("%s (org %s)", exc, body.org_id)
        raise HTTPException(status_code=500, detail="No checkout URL returned") from exc
    return SessionUrlResponse(url=url)


@router.post("/portal-session", response_model=SessionUrlResponse)
async def create_portal_session(
    body: PortalRequest,
    user: CurrentUserDep,
    session: SessionDep,
    settings: SettingsDep,
    gateway: StripeGatewayDep,
) -> SessionUrlResponse:
    """Create a Stripe Billing Portal session for the organization's customer."""
    await _require_membership(session, user, body.org_id)
    service = CheckoutService(session, settings, gateway)
    try:
        url = await service.create_portal_session(org_id=body.org_id, lang=body.lang)
    except MissingStripeCustomerError as exc:
        raise HTTPException(status_code=400, detail="Organization has no Stripe customer") from exc
    except SQLAlchemyError as exc:
        logger.error("Billing lookup failed for org %s", body.org_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load billing information") from exc
    except StripeGatewayError as exc:
        logger.error("Portal session creation failed for org %s: %s", body.org_id, exc)
        raise HTTPException(status_code=502, detail="Payment provider error") from exc
    except SessionUrlMissingError as exc:
        logger.error("%s (org %s)", exc, body.org_id)
        raise HTTPException(status_code=500, detail="No portal URL returned") from exc
    logger.info("Created billing portal session for org %s (user %s)", body.org_id, user.user_id)
    return SessionUrlResponse(url=url)


@router.get("/status", response_model=BillingStatus)
async def get_billing_status(
    org_id: Annotated[str, Query(min_length=1)],
    user: CurrentUserDep,
    session: SessionDep,
) -> BillingStatus:
    """Return the organization's subscription status, trial, period and tier."""
    await _require_membership(session, user, org_id)
    status = await load_billing_status(session, org_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No billing information for organization")
    return status
