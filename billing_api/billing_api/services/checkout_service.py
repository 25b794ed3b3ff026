"""Checkout and Billing Portal session creation.

Backs the pricing page ("subscribe") and the billing settings page
("manage subscription").  The metadata written onto the Checkout Session
and its subscription is what later lets the webhook reconciler attribute
Stripe events to an organization.
"""

from __future__ import annotations

import logging
from typing import Any

from billing_core.pricing import BillingPeriod, Currency, Tier, normalize_lang
from billing_core.state.repository import OrganizationBillingRepository
from sqlalchemy.ext.asyncio import AsyncSession

from billing_api.config import BillingSettings
from billing_api.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

_BILLING_SETTINGS_PATH = "app/settings/billing"


class MissingStripeCustomerError(LookupError):
    """The organization has never completed a checkout."""


class SessionUrlMissingError(RuntimeError):
    """Stripe created a session but returned no redirect URL."""


def join_url(base: str, path: str) -> str:
    """Join *base* and *path* with exactly one slash between them."""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


class CheckoutService:
    """Creates Stripe-hosted checkout and portal sessions for an organization.

    Parameters
    ----------
    session:
        Active database session (used for the customer lookup).
    settings:
        Settings carrying the frontend URL and price catalog.
    gateway:
        Stripe API access.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: BillingSettings,
        gateway: StripeGateway,
    ) -> None:
        self._session = session
        self._settings = settings
        self._gateway = gateway

    def _billing_page(self, lang: str) -> str:
        return join_url(self._settings.frontend_url, f"{lang}/{_BILLING_SETTINGS_PATH}")

    async def create_checkout_session(
        self,
        *,
        org_id: str,
        user_id: str,
        tier: Tier,
        period: BillingPeriod,
        currency: Currency,
        lang: str | None = None,
        customer_email: str | None = None,
    ) -> str:
        """Create a subscription-mode Checkout Session and return its URL.

        Raises
        ------
        billing_core.pricing.PricingError
            If no price is configured for the combination.
        StripeGatewayError
            If Stripe rejects the request.
        SessionUrlMissingError
            If Stripe returns a session without a URL.
        """
        price_id = self._settings.price_catalog().resolve(tier, period, currency)
        ui_lang = normalize_lang(lang)
        billing_page = self._billing_page(ui_lang)

        metadata = {
            "org_id": org_id,
            "user_id": user_id,
            "tier": tier.value,
            "period": period.value,
            "currency": currency.value,
            "lang": ui_lang,
        }
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{billing_page}?checkout=success",
            "cancel_url": f"{billing_page}?checkout=cancel",
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "automatic_tax": {"enabled": True},
            "tax_id_collection": {"enabled": True},
        }

        # Reuse the organization's customer so Stripe keeps one record per org.
        existing_customer = await OrganizationBillingRepository(self._session).get_customer_id(org_id)
        if existing_customer:
            params["customer"] = existing_customer
            params["customer_update"] = {"address": "auto", "name": "auto"}
        elif customer_email:
            params["customer_email"] = customer_email

        url = await self._gateway.create_checkout_session(params)
        if not url:
            raise SessionUrlMissingError("Stripe returned a checkout session without a URL")

        logger.info(
            "Created checkout session org_id=%s tier=%s period=%s currency=%s",
            org_id,
            tier.value,
            period.value,
            currency.value,
        )
        return url

    async def create_portal_session(self, *, org_id: str, lang: str | None = None) -> str:
        """Create a Billing Portal session for the organization's customer.

        Raises
        ------
        MissingStripeCustomerError
            If the organization has no Stripe customer yet.
        StripeGatewayError
            If Stripe rejects the request.
        SessionUrlMissingError
            If Stripe returns a session without a URL.
        """
        customer_id = await OrganizationBillingRepository(self._session).get_customer_id(org_id)
        if not customer_id:
            raise MissingStripeCustomerError(f"Organization {org_id} has no Stripe customer")

        url = await self._gateway.create_portal_session(customer_id, self._billing_page(normalize_lang(lang)))
        if not url:
            raise SessionUrlMissingError("Stripe returned a portal session without a URL")
        return url
