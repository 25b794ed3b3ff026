"""Stripe API access for the billing service.

Wraps the handful of Stripe calls the service makes: webhook signature
verification, subscription retrieval, customer metadata updates and
Checkout / Billing Portal session creation.  The Stripe SDK is blocking,
so network calls run in a worker thread to keep the event loop free for
concurrent deliveries.

Credentials are passed per request instead of through ``stripe.api_key``
so that several gateways (e.g. in tests) never share global state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from billing_core.events import SubscriptionSnapshot

from billing_api.config import BillingSettings
from billing_api.services.reconciler import SignatureVerificationFailed, SubscriptionFetchError

logger = logging.getLogger(__name__)


class StripeGatewayError(RuntimeError):
    """Raised when a Stripe API call needed by an endpoint fails."""


class StripeGateway:
    """Stripe operations configured from :class:`BillingSettings`.

    Implements the reconciler's ``SignatureVerifier``,
    ``SubscriptionSource`` and ``CustomerMetadataWriter`` capabilities.

    Parameters
    ----------
    settings:
        Settings carrying the Stripe secret key, webhook secret, API
        version and signature tolerance.
    """

    def __init__(self, settings: BillingSettings) -> None:
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Lazily import the Stripe library."""
        import stripe

        return stripe

    def _request_options(self) -> dict[str, Any]:
        return {
            "api_key": self._settings.stripe_secret_key.get_secret_value(),
            "stripe_version": self._settings.stripe_api_version,
        }

    # -- Webhooks -----------------------------------------------------------

    def verify(self, payload: bytes, signature: str | None) -> None:
        """Verify the ``Stripe-Signature`` header against the raw body.

        Uses Stripe's HMAC-SHA256 scheme with the configured timestamp
        tolerance.

        Raises
        ------
        SignatureVerificationFailed
            If the header is missing or malformed, the signature does not
            match, or the timestamp is outside the tolerance window.
        """
        if not signature:
            raise SignatureVerificationFailed("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureVerificationFailed("Webhook body is not valid UTF-8") from exc

        stripe = self._get_stripe()
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self._settings.stripe_webhook_secret.get_secret_value(),
                tolerance=self._settings.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationFailed(str(exc)) from exc

    # -- Subscriptions ------------------------------------------------------

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Fetch the canonical subscription by id.

        Raises
        ------
        SubscriptionFetchError
            If Stripe cannot be reached, rejects the request, or returns
            an object that is not a subscription.
        """
        stripe = self._get_stripe()
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.retrieve,
                subscription_id,
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            raise SubscriptionFetchError(subscription_id, str(exc)) from exc

        try:
            return SubscriptionSnapshot.from_stripe(subscription)
        except ValueError as exc:
            raise SubscriptionFetchError(subscription_id, f"unexpected subscription payload: {exc}") from exc

    # -- Customers ----------------------------------------------------------

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        """Merge *metadata* into the Stripe customer's metadata.

        Stripe merges metadata keys server-side; keys not sent are kept.
        """
        stripe = self._get_stripe()
        try:
            await asyncio.to_thread(
                stripe.Customer.modify,
                customer_id,
                metadata=metadata,
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            raise StripeGatewayError(f"Failed to update customer {customer_id}: {exc}") from exc

    # -- Hosted pages -------------------------------------------------------

    async def create_checkout_session(self, params: dict[str, Any]) -> str | None:
        """Create a Checkout Session and return its hosted URL."""
        stripe = self._get_stripe()
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                **params,
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            raise StripeGatewayError(f"Failed to create checkout session: {exc}") from exc
        return getattr(session, "url", None)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str | None:
        """Create a Billing Portal session and return its URL."""
        stripe = self._get_stripe()
        try:
            session = await asyncio.to_thread(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=return_url,
                **self._request_options(),
            )
        except stripe.StripeError as exc:
            raise StripeGatewayError(f"Failed to create billing portal session: {exc}") from exc
        return getattr(session, "url", None)
