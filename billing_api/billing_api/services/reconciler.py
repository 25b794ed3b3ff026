"""Stripe webhook reconciliation.

Folds Stripe's asynchronous, unordered, at-least-once webhook deliveries
into one ``organization_billing`` row per organization.

Per delivery:

1. Verify the ``Stripe-Signature`` header over the raw body.
2. Parse the body into a typed event.
3. Record the event id in ``stripe_webhook_events``.  A conflict means the
   event was already handled and it is acknowledged without dispatch.
4. Dispatch on the event type, re-fetch the canonical subscription from
   Stripe and upsert the organization's billing row.  The upsert never
   writes NULL over a known billing period.

Collaborators are injected so the reconciler can run against fakes:
``SignatureVerifier``, ``SubscriptionSource``, ``BillingStore`` and the
optional ``CustomerMetadataWriter``.  Each delivery yields an explicit
:class:`~billing_core.billing.ReconcileOutcome`; the HTTP layer maps it to
a status code.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from billing_core.billing import ReconcileOutcome, build_billing_update, resolve_tier_code
from billing_core.events import (
    BillingEvent,
    CheckoutCompletedEvent,
    InvoiceEvent,
    SubscriptionLifecycleEvent,
    SubscriptionSnapshot,
    parse_event,
)
from billing_core.state.repository import (
    OrganizationBillingRepository,
    OrganizationTierRepository,
    ProcessedEventRepository,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_api.config import IdempotencyFailurePolicy

logger = logging.getLogger(__name__)


class SignatureVerificationFailed(Exception):
    """The webhook signature is missing, malformed, stale or wrong."""


class SubscriptionFetchError(Exception):
    """The canonical subscription could not be retrieved from Stripe."""

    def __init__(self, subscription_id: str, message: str) -> None:
        super().__init__(f"Could not retrieve subscription {subscription_id}: {message}")
        self.subscription_id = subscription_id


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class SignatureVerifier(Protocol):
    """Authenticates a webhook body against its signature header."""

    def verify(self, payload: bytes, signature: str | None) -> None:
        """Return normally if authentic, else raise :class:`SignatureVerificationFailed`."""
        ...


@runtime_checkable
class SubscriptionSource(Protocol):
    """Fetches canonical subscriptions from the payment processor."""

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Return the subscription or raise :class:`SubscriptionFetchError`."""
        ...


@runtime_checkable
class CustomerMetadataWriter(Protocol):
    """Writes support metadata onto the processor's customer record."""

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None: ...


@runtime_checkable
class BillingStore(Protocol):
    """Durable state touched by the reconciler."""

    async def record_event(self, event_id: str, event_type: str) -> bool:
        """Log the event id.  ``True`` if new, ``False`` if already logged."""
        ...

    async def find_tier_id(self, code: str) -> str | None:
        """Return the ``organization_tiers.id`` for *code*, if any."""
        ...

    async def upsert_billing(self, values: dict[str, Any]) -> None:
        """Upsert ``organization_billing`` keyed on ``org_id``."""
        ...


class SqlBillingStore:
    """:class:`BillingStore` backed by the SQLAlchemy repositories.

    Every operation runs in its own short transaction so the event log
    entry is durable before the billing write is attempted.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_event(self, event_id: str, event_type: str) -> bool:
        async with self._session_factory() as session, session.begin():
            return await ProcessedEventRepository(session).record(event_id, event_type)

    async def find_tier_id(self, code: str) -> str | None:
        async with self._session_factory() as session:
            return await OrganizationTierRepository(session).find_id_by_code(code)

    async def upsert_billing(self, values: dict[str, Any]) -> None:
        async with self._session_factory() as session, session.begin():
            await OrganizationBillingRepository(session).upsert(values)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class BillingReconciler:
    """Applies verified Stripe events to organization billing state.

    Parameters
    ----------
    verifier:
        Webhook signature check.
    subscriptions:
        Canonical subscription lookups.
    store:
        Event log, tier lookup and billing upsert.
    customers:
        Optional customer metadata writer used after checkout.
    failure_policy:
        Behaviour when the event log write fails for a reason other than
        a duplicate id.
    """

    def __init__(
        self,
        *,
        verifier: SignatureVerifier,
        subscriptions: SubscriptionSource,
        store: BillingStore,
        customers: CustomerMetadataWriter | None = None,
        failure_policy: IdempotencyFailurePolicy = IdempotencyFailurePolicy.PROCEED,
    ) -> None:
        self._verifier = verifier
        self._subscriptions = subscriptions
        self._store = store
        self._customers = customers
        self._failure_policy = failure_policy

    async def handle_delivery(self, payload: bytes, signature: str | None) -> ReconcileOutcome:
        """Verify, parse and reconcile one webhook delivery.

        Raises
        ------
        SignatureVerificationFailed
            Before any state is touched.
        billing_core.events.InvalidEventPayload
            If the authenticated body is not a Stripe event.
        """
        self._verifier.verify(payload, signature)
        event = parse_event(payload)
        return await self.reconcile(event)

    async def reconcile(self, event: BillingEvent, *, force: bool = False) -> ReconcileOutcome:
        """Apply an already-verified event at most once.

        ``force`` skips the processed-event check so an operator can
        re-apply an event whose first processing failed.
        """
        if force:
            logger.warning("Replaying event %s (%s) without idempotency check", event.event_id, event.event_type)
            return await self._dispatch(event)

        try:
            is_new = await self._store.record_event(event.event_id, event.event_type)
        except Exception:
            if self._failure_policy is IdempotencyFailurePolicy.REJECT:
                logger.error(
                    "Could not record webhook event %s (%s); rejecting for redelivery",
                    event.event_id,
                    event.event_type,
                    exc_info=True,
                )
                return ReconcileOutcome.failed(
                    event.event_id,
                    event.event_type,
                    "event_log_unavailable",
                    retryable=True,
                )
            logger.error(
                "Could not record webhook event %s (%s); processing without idempotency guard",
                event.event_id,
                event.event_type,
                exc_info=True,
            )
            is_new = True

        if not is_new:
            logger.info("Duplicate webhook event %s (%s) ignored", event.event_id, event.event_type)
            return ReconcileOutcome.duplicate(event.event_id, event.event_type)

        return await self._dispatch(event)

    async def _dispatch(self, event: BillingEvent) -> ReconcileOutcome:
        if isinstance(event, CheckoutCompletedEvent):
            return await self._on_checkout_completed(event)
        if isinstance(event, SubscriptionLifecycleEvent):
            return await self._on_subscription_changed(event)
        if isinstance(event, InvoiceEvent):
            return await self._on_invoice(event)

        logger.debug("Unhandled Stripe event type: %s", event.event_type)
        return ReconcileOutcome.skipped(event.event_id, event.event_type, "unhandled_event_type")

    # -- Handlers -----------------------------------------------------------

    async def _on_checkout_completed(self, event: CheckoutCompletedEvent) -> ReconcileOutcome:
        checkout = event.session
        org_id = checkout.org_id
        logger.info(
            "checkout.session.completed org_id=%s tier=%s period=%s currency=%s subscription=%s",
            org_id,
            checkout.tier,
            checkout.metadata.get("period"),
            checkout.metadata.get("currency"),
            checkout.subscription,
        )
        if not org_id or not checkout.subscription:
            logger.info("Checkout session %s has no org_id or subscription; skipping", checkout.id)
            return ReconcileOutcome.skipped(event.event_id, event.event_type, "missing_org_or_subscription")

        try:
            subscription = await self._subscriptions.retrieve_subscription(checkout.subscription)
        except SubscriptionFetchError:
            logger.error(
                "Checkout %s for org %s: subscription %s could not be fetched; billing not updated",
                checkout.id,
                org_id,
                checkout.subscription,
                exc_info=True,
            )
            return ReconcileOutcome.failed(
                event.event_id,
                event.event_type,
                "subscription_fetch_failed",
                org_id=org_id,
            )

        outcome = await self._merge(event, org_id, subscription, tier_override=checkout.tier)

        customer_id = subscription.customer or checkout.customer
        if self._customers is not None and customer_id:
            metadata = {
                **subscription.metadata,
                "org_id": org_id,
                **{
                    key: checkout.metadata[key]
                    for key in ("tier", "period", "currency")
                    if checkout.metadata.get(key)
                },
            }
            try:
                await self._customers.update_customer_metadata(customer_id, metadata)
            except Exception:
                logger.warning("Could not write metadata to customer %s", customer_id, exc_info=True)

        return outcome

    async def _on_subscription_changed(self, event: SubscriptionLifecycleEvent) -> ReconcileOutcome:
        embedded = event.subscription
        org_id = embedded.org_id
        logger.info(
            "Subscription lifecycle event %s org_id=%s subscription=%s status=%s",
            event.event_type,
            org_id,
            embedded.id,
            embedded.status,
        )
        if not org_id:
            logger.info("Subscription %s has no org_id in metadata; skipping", embedded.id)
            return ReconcileOutcome.skipped(event.event_id, event.event_type, "missing_org_id")

        try:
            subscription = await self._subscriptions.retrieve_subscription(embedded.id)
        except SubscriptionFetchError:
            logger.warning(
                "Falling back to embedded payload for subscription %s",
                embedded.id,
                exc_info=True,
            )
            subscription = embedded

        return await self._merge(event, org_id, subscription)

    async def _on_invoice(self, event: InvoiceEvent) -> ReconcileOutcome:
        invoice = event.invoice
        logger.info(
            "%s invoice=%s subscription=%s customer=%s",
            event.event_type,
            invoice.id,
            invoice.subscription,
            invoice.customer,
        )
        if not invoice.subscription:
            return ReconcileOutcome.skipped(event.event_id, event.event_type, "invoice_without_subscription")

        try:
            # Already the canonical copy; no second fetch is needed.
            subscription = await self._subscriptions.retrieve_subscription(invoice.subscription)
        except SubscriptionFetchError:
            logger.error(
                "Invoice %s: subscription %s could not be fetched; cannot attribute to an organization",
                invoice.id,
                invoice.subscription,
                exc_info=True,
            )
            return ReconcileOutcome.failed(event.event_id, event.event_type, "subscription_fetch_failed")

        org_id = subscription.org_id
        if not org_id:
            logger.info("Subscription %s has no org_id in metadata; skipping", subscription.id)
            return ReconcileOutcome.skipped(event.event_id, event.event_type, "missing_org_id")

        return await self._merge(event, org_id, subscription)

    # -- Merge --------------------------------------------------------------

    async def _merge(
        self,
        event: BillingEvent,
        org_id: str,
        subscription: SubscriptionSnapshot,
        tier_override: str | None = None,
    ) -> ReconcileOutcome:
        """Upsert *subscription* into the organization's billing row.

        A failed tier lookup only costs the tier: the row is still written
        without ``tier_id``.  Upsert errors are logged with full context and
        reported as a non-retryable failure: the event is already in the
        log, so a redelivery would be dropped as a duplicate anyway.
        """
        tier_id = await self._lookup_tier(org_id, resolve_tier_code(tier_override, subscription))

        try:
            values = build_billing_update(org_id, subscription, tier_id)
            await self._store.upsert_billing(values)
        except Exception:
            logger.error(
                "Failed to upsert organization_billing org_id=%s subscription=%s event=%s (%s)",
                org_id,
                subscription.id,
                event.event_id,
                event.event_type,
                exc_info=True,
            )
            return ReconcileOutcome.failed(
                event.event_id,
                event.event_type,
                "billing_upsert_failed",
                org_id=org_id,
            )

        logger.info(
            "Applied %s to org %s (subscription=%s status=%s)",
            event.event_type,
            org_id,
            subscription.id,
            subscription.status,
        )
        return ReconcileOutcome.applied(event.event_id, event.event_type, org_id)

    async def _lookup_tier(self, org_id: str, tier_code: str | None) -> str | None:
        if tier_code is None:
            return None
        try:
            tier_id = await self._store.find_tier_id(tier_code)
        except Exception:
            logger.warning(
                "Tier lookup for %r failed for org %s; tier left unchanged",
                tier_code,
                org_id,
                exc_info=True,
            )
            return None
        if tier_id is None:
            logger.warning("Unknown tier code %r for org %s; tier left unchanged", tier_code, org_id)
        return tier_id
