"""Stripe webhook endpoint.

Authenticated by the ``Stripe-Signature`` header rather than a user token.
Responses are plain text because Stripe only looks at the status code:

* ``200 ok`` -- applied, skipped, duplicate, unhandled type, or a failure
  that has been logged for manual reconciliation.
* ``400`` -- bad signature or a body that is not a Stripe event.
* ``405`` -- any method other than POST (raised by the router).
* ``500`` -- unexpected error, or an event the sender should redeliver.
"""

from __future__ import annotations

import logging

from billing_core.billing import OutcomeStatus, ReconcileOutcome
from billing_core.events import InvalidEventPayload
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from billing_api.dependencies import ReconcilerDep
from billing_api.services.reconciler import SignatureVerificationFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


def outcome_status_code(outcome: ReconcileOutcome) -> int:
    """Map a reconciliation outcome to the HTTP status returned to Stripe."""
    if outcome.status is OutcomeStatus.FAILED and outcome.retryable:
        return 500
    return 200


@router.post("/webhook", response_class=PlainTextResponse)
async def stripe_webhook(request: Request, reconciler: ReconcilerDep) -> PlainTextResponse:
    """Receive a Stripe event and reconcile it into organization billing.

    The raw body is read as bytes: the signature covers the exact byte
    sequence Stripe sent.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        outcome = await reconciler.handle_delivery(payload, signature)
    except SignatureVerificationFailed as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        return PlainTextResponse("Bad signature", status_code=400)
    except InvalidEventPayload as exc:
        logger.warning("Stripe webhook payload rejected: %s", exc)
        return PlainTextResponse("Invalid payload", status_code=400)
    except Exception:
        logger.exception("Unexpected error in Stripe webhook handler")
        return PlainTextResponse("Internal error", status_code=500)

    status_code = outcome_status_code(outcome)
    logger.info(
        "Stripe event %s (%s) -> %s%s",
        outcome.event_id,
        outcome.event_type,
        outcome.status.value,
        f" [{outcome.reason}]" if outcome.reason else "",
    )
    if status_code != 200:
        return PlainTextResponse("Internal error", status_code=status_code)
    return PlainTextResponse("ok", status_code=200)
