"""Typed Stripe webhook events.

A verified webhook body is parsed once into one of the event variants
below, discriminated by the Stripe event type.  Handlers then work with
typed fields instead of reaching into nested dictionaries.

Only the fields the reconciler reads are modelled; everything else in the
Stripe payload is ignored.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class InvalidEventPayload(ValueError):
    """Raised when a verified webhook body is not a usable Stripe event."""


class BillingEventType(str, Enum):
    """Stripe event types the reconciler acts on."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _object_id(value: Any) -> Any:
    """Collapse an expanded Stripe object (``{"id": ...}``) to its id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _string_metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


# ---------------------------------------------------------------------------
# Payload objects
# ---------------------------------------------------------------------------


class SubscriptionSnapshot(BaseModel):
    """The subset of a Stripe subscription that drives organization billing.

    Attributes
    ----------
    id:
        Stripe subscription id (``sub_...``).
    customer:
        Stripe customer id.  Expanded customer objects are collapsed to
        their id.
    status:
        Lifecycle status (``trialing``, ``active``, ``past_due``, ...).
    current_period_start, current_period_end:
        Unix timestamps in seconds.  Newer Stripe API versions only carry
        them on subscription items; the first item's values are used when
        the top-level fields are absent.
    metadata:
        String metadata written at checkout (``org_id``, ``tier``, ...).
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    customer: str | None = None
    status: str | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_item_periods(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["customer"] = _object_id(data.get("customer"))
        items = _as_dict(data.get("items")).get("data") or []
        first_item = _as_dict(items[0]) if isinstance(items, list) and items else {}
        for key in ("current_period_start", "current_period_end"):
            if data.get(key) is None and first_item.get(key) is not None:
                data[key] = first_item[key]
        return data

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> dict[str, str]:
        return _string_metadata(value)

    @property
    def org_id(self) -> str | None:
        return self.metadata.get("org_id") or None

    @property
    def tier(self) -> str | None:
        return self.metadata.get("tier") or None

    @classmethod
    def from_stripe(cls, obj: Any) -> SubscriptionSnapshot:
        """Build a snapshot from a ``stripe.Subscription`` or a plain dict."""
        if isinstance(obj, dict):
            return cls.model_validate(obj)
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            return cls.model_validate(to_dict())
        return cls.model_validate(json.loads(str(obj)))


class CheckoutSessionPayload(BaseModel):
    """A completed Checkout Session."""

    model_config = ConfigDict(extra="ignore")

    id: str
    customer: str | None = None
    subscription: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def _collapse_expanded(cls, value: Any) -> Any:
        return _object_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> dict[str, str]:
        return _string_metadata(value)

    @property
    def org_id(self) -> str | None:
        return self.metadata.get("org_id") or None

    @property
    def tier(self) -> str | None:
        return self.metadata.get("tier") or None


class InvoicePayload(BaseModel):
    """An invoice, reduced to the subscription it bills."""

    model_config = ConfigDict(extra="ignore")

    id: str
    customer: str | None = None
    subscription: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_subscription(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["customer"] = _object_id(data.get("customer"))
        subscription = _object_id(data.get("subscription"))
        if not subscription:
            # API versions from 2025 onward move the link under ``parent``.
            details = _as_dict(_as_dict(data.get("parent")).get("subscription_details"))
            subscription = _object_id(details.get("subscription"))
        data["subscription"] = subscription or None
        return data


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


class _BillingEventBase(BaseModel):
    event_id: str
    event_type: str


class CheckoutCompletedEvent(_BillingEventBase):
    """``checkout.session.completed``."""

    session: CheckoutSessionPayload


class SubscriptionLifecycleEvent(_BillingEventBase):
    """``customer.subscription.created`` / ``updated`` / ``deleted``."""

    subscription: SubscriptionSnapshot


class InvoiceEvent(_BillingEventBase):
    """``invoice.paid`` / ``invoice.payment_failed``."""

    invoice: InvoicePayload


class UnhandledEvent(_BillingEventBase):
    """Any event type the reconciler does not act on."""


BillingEvent = CheckoutCompletedEvent | SubscriptionLifecycleEvent | InvoiceEvent | UnhandledEvent

_VARIANTS: dict[str, tuple[type[_BillingEventBase], str]] = {
    BillingEventType.CHECKOUT_SESSION_COMPLETED.value: (CheckoutCompletedEvent, "session"),
    BillingEventType.SUBSCRIPTION_CREATED.value: (SubscriptionLifecycleEvent, "subscription"),
    BillingEventType.SUBSCRIPTION_UPDATED.value: (SubscriptionLifecycleEvent, "subscription"),
    BillingEventType.SUBSCRIPTION_DELETED.value: (SubscriptionLifecycleEvent, "subscription"),
    BillingEventType.INVOICE_PAID.value: (InvoiceEvent, "invoice"),
    BillingEventType.INVOICE_PAYMENT_FAILED.value: (InvoiceEvent, "invoice"),
}


def parse_event(payload: bytes | str | dict[str, Any]) -> BillingEvent:
    """Parse a Stripe event envelope into its typed variant.

    Parameters
    ----------
    payload:
        The verified raw request body, or an already-decoded envelope.

    Returns
    -------
    BillingEvent
        One of :class:`CheckoutCompletedEvent`,
        :class:`SubscriptionLifecycleEvent`, :class:`InvoiceEvent` or
        :class:`UnhandledEvent`.

    Raises
    ------
    InvalidEventPayload
        If the body is not JSON, lacks ``id``/``type``, or the
        ``data.object`` of a handled event type is malformed.
    """
    if isinstance(payload, dict):
        envelope = payload
    else:
        try:
            envelope = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidEventPayload(f"Webhook body is not valid JSON: {exc}") from exc

    if not isinstance(envelope, dict):
        raise InvalidEventPayload("Webhook body is not a JSON object")

    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise InvalidEventPayload("Webhook event has no id")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidEventPayload("Webhook event has no type")

    variant = _VARIANTS.get(event_type)
    if variant is None:
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    model, field_name = variant
    data_object = _as_dict(envelope.get("data")).get("object")
    try:
        return model.model_validate(  # type: ignore[return-value]
            {"event_id": event_id, "event_type": event_type, field_name: data_object}
        )
    except ValidationError as exc:
        raise InvalidEventPayload(f"Malformed {event_type} payload in event {event_id}: {exc}") from exc
