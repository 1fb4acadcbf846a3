"""Provider webhook payloads to subscription snapshots."""

from datetime import datetime, timezone

import pytest

from src.billing.events import InvalidBillingEventError, parse_provider_event

CREATED = 1_750_000_000


def _event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "created": CREATED, "data": {"object": obj}}


def test_subscription_updated():
    snapshot = parse_provider_event(_event("customer.subscription.updated", {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "past_due",
        "current_period_end": CREATED + 86400,
        "metadata": {"user_id": "user-1", "tier": "pro"},
    }))

    assert snapshot.event_id == "evt_1"
    assert snapshot.occurred_at == datetime.fromtimestamp(CREATED, tz=timezone.utc)
    assert snapshot.provider_subscription_id == "sub_1"
    assert snapshot.provider_customer_id == "cus_1"
    assert snapshot.status == "past_due"
    assert snapshot.period_end == datetime.fromtimestamp(CREATED + 86400, tz=timezone.utc)
    assert snapshot.user_id == "user-1"
    assert snapshot.tier == "pro"


def test_subscription_deleted_is_canceled():
    snapshot = parse_provider_event(
        _event("customer.subscription.deleted", {"id": "sub_1", "status": "active"})
    )
    assert snapshot.status == "canceled"


def test_checkout_completed():
    snapshot = parse_provider_event(_event("checkout.session.completed", {
        "subscription": "sub_1",
        "customer": "cus_1",
        "metadata": {"user_id": "user-1"},
    }))
    assert snapshot.status == "active"
    assert snapshot.user_id == "user-1"


def test_checkout_without_subscription_is_ignored():
    assert parse_provider_event(_event("checkout.session.completed", {"mode": "payment"})) is None


@pytest.mark.parametrize(
    "event_type,status",
    [("invoice.payment_succeeded", "active"), ("invoice.payment_failed", "past_due")],
)
def test_invoice_events(event_type, status):
    snapshot = parse_provider_event(_event(event_type, {
        "subscription": "sub_1",
        "customer": "cus_1",
        "lines": {"data": [{"period": {"end": CREATED + 3600}}]},
    }))
    assert snapshot.status == status
    assert snapshot.period_end == datetime.fromtimestamp(CREATED + 3600, tz=timezone.utc)


def test_unrelated_event_type_is_ignored():
    assert parse_provider_event(_event("customer.created", {"id": "cus_1"})) is None


@pytest.mark.parametrize(
    "event",
    [
        {},
        {"id": "evt_1", "type": "customer.subscription.updated", "created": CREATED},
        {"id": "evt_1", "type": "customer.subscription.updated", "created": None,
         "data": {"object": {}}},
        {"id": "evt_1", "type": "customer.subscription.updated", "created": CREATED,
         "data": {"object": "sub_1"}},
    ],
)
def test_malformed_events(event):
    with pytest.raises(InvalidBillingEventError):
        parse_provider_event(event)
