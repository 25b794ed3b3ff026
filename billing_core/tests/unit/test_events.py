"""Tests for parsing Stripe webhook envelopes into typed events."""

from __future__ import annotations

import json

import pytest
from billing_core.events import (
    CheckoutCompletedEvent,
    InvalidEventPayload,
    InvoiceEvent,
    SubscriptionLifecycleEvent,
    SubscriptionSnapshot,
    UnhandledEvent,
    parse_event,
)


def _envelope(event_type: str, obj: dict | None, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


# ---------------------------------------------------------------------------
# Envelope parsing
# ---------------------------------------------------------------------------


class TestParseEvent:
    """Verify dispatch to the right variant."""

    def test_checkout_completed(self) -> None:
        event = parse_event(
            _envelope(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "customer": "cus_1",
                    "subscription": "sub_1",
                    "metadata": {"org_id": "org_1", "tier": "pro", "period": "yearly", "currency": "USD"},
                },
            )
        )
        assert isinstance(event, CheckoutCompletedEvent)
        assert event.event_id == "evt_1"
        assert event.session.subscription == "sub_1"
        assert event.session.org_id == "org_1"
        assert event.session.tier == "pro"

    @pytest.mark.parametrize(
        "event_type",
        ["customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"],
    )
    def test_subscription_lifecycle(self, event_type: str) -> None:
        event = parse_event(_envelope(event_type, {"id": "sub_1", "customer": "cus_1", "status": "active"}))
        assert isinstance(event, SubscriptionLifecycleEvent)
        assert event.event_type == event_type
        assert event.subscription.id == "sub_1"

    @pytest.mark.parametrize("event_type", ["invoice.paid", "invoice.payment_failed"])
    def test_invoice(self, event_type: str) -> None:
        event = parse_event(_envelope(event_type, {"id": "in_1", "subscription": "sub_1"}))
        assert isinstance(event, InvoiceEvent)
        assert event.invoice.subscription == "sub_1"

    def test_unknown_type_is_unhandled(self) -> None:
        event = parse_event(_envelope("customer.created", {"id": "cus_1"}))
        assert isinstance(event, UnhandledEvent)
        assert event.event_type == "customer.created"

    def test_parses_raw_bytes(self) -> None:
        raw = json.dumps(_envelope("invoice.paid", {"id": "in_1"})).encode()
        event = parse_event(raw)
        assert isinstance(event, InvoiceEvent)
        assert event.invoice.subscription is None

    def test_rejects_non_json(self) -> None:
        with pytest.raises(InvalidEventPayload):
            parse_event(b"not json")

    def test_rejects_non_object(self) -> None:
        with pytest.raises(InvalidEventPayload):
            parse_event(b"[1, 2, 3]")

    def test_rejects_missing_id(self) -> None:
        with pytest.raises(InvalidEventPayload, match="no id"):
            parse_event({"type": "invoice.paid", "data": {"object": {"id": "in_1"}}})

    def test_rejects_missing_type(self) -> None:
        with pytest.raises(InvalidEventPayload, match="no type"):
            parse_event({"id": "evt_1", "data": {"object": {}}})

    def test_rejects_malformed_handled_object(self) -> None:
        with pytest.raises(InvalidEventPayload, match="Malformed"):
            parse_event(_envelope("customer.subscription.updated", None))

    def test_invalid_payload_is_value_error(self) -> None:
        assert issubclass(InvalidEventPayload, ValueError)


# ---------------------------------------------------------------------------
# Payload normalisation
# ---------------------------------------------------------------------------


class TestSubscriptionSnapshot:
    """Verify subscription field extraction."""

    def test_top_level_periods(self) -> None:
        sub = SubscriptionSnapshot.model_validate(
            {"id": "sub_1", "current_period_start": 1700000000, "current_period_end": 1731536000}
        )
        assert sub.current_period_start == 1700000000
        assert sub.current_period_end == 1731536000

    def test_periods_lifted_from_first_item(self) -> None:
        sub = SubscriptionSnapshot.model_validate(
            {
                "id": "sub_1",
                "items": {
                    "object": "list",
                    "data": [{"id": "si_1", "current_period_start": 10, "current_period_end": 20}],
                },
            }
        )
        assert sub.current_period_start == 10
        assert sub.current_period_end == 20

    def test_top_level_periods_win_over_items(self) -> None:
        sub = SubscriptionSnapshot.model_validate(
            {
                "id": "sub_1",
                "current_period_end": 99,
                "items": {"data": [{"current_period_end": 20}]},
            }
        )
        assert sub.current_period_end == 99

    def test_missing_periods_are_none(self) -> None:
        sub = SubscriptionSnapshot.model_validate({"id": "sub_1", "status": "active"})
        assert sub.current_period_start is None
        assert sub.current_period_end is None

    def test_expanded_customer_collapsed(self) -> None:
        sub = SubscriptionSnapshot.model_validate({"id": "sub_1", "customer": {"id": "cus_1", "object": "customer"}})
        assert sub.customer == "cus_1"

    def test_metadata_accessors(self) -> None:
        sub = SubscriptionSnapshot.model_validate({"id": "sub_1", "metadata": {"org_id": "org_1", "tier": "starter"}})
        assert sub.org_id == "org_1"
        assert sub.tier == "starter"

    def test_blank_org_id_is_none(self) -> None:
        sub = SubscriptionSnapshot.model_validate({"id": "sub_1", "metadata": {"org_id": ""}})
        assert sub.org_id is None

    def test_null_metadata_is_empty(self) -> None:
        sub = SubscriptionSnapshot.model_validate({"id": "sub_1", "metadata": None})
        assert sub.metadata == {}

    def test_from_stripe_uses_to_dict(self) -> None:
        class _StripeLike:
            def to_dict(self) -> dict:
                return {"id": "sub_9", "status": "past_due"}

        sub = SubscriptionSnapshot.from_stripe(_StripeLike())
        assert sub.id == "sub_9"
        assert sub.status == "past_due"


class TestInvoicePayload:
    """Verify invoice subscription resolution."""

    def test_expanded_subscription(self) -> None:
        event = parse_event(_envelope("invoice.paid", {"id": "in_1", "subscription": {"id": "sub_1"}}))
        assert event.invoice.subscription == "sub_1"

    def test_subscription_from_parent_details(self) -> None:
        event = parse_event(
            _envelope(
                "invoice.paid",
                {
                    "id": "in_1",
                    "subscription": None,
                    "parent": {"type": "subscription_details", "subscription_details": {"subscription": "sub_2"}},
                },
            )
        )
        assert event.invoice.subscription == "sub_2"
