"""
Pull reconciliation against the billing provider.

The provider client is replaced by a fake for the job tests; the client
itself is exercised with the stripe SDK call patched out.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
import stripe

from src.billing.errors import BillingProviderError
from src.billing.events import BillingEventSnapshot
from src.billing.provider_client import StripeBillingClient
from src.jobs.reconcile_subscriptions import SubscriptionReconciliationJob
from src.models.user import SubscriptionStatus, SubscriptionTier


class FakeBillingClient:
    def __init__(self, snapshots=None, failures=()):
        self.snapshots = snapshots or {}
        self.failures = set(failures)
        self.fetched = []

    async def fetch_subscription(self, subscription_id):
        self.fetched.append(subscription_id)
        if subscription_id in self.failures:
            raise BillingProviderError("Billing API error: 500", code="500", status_code=500)
        return self.snapshots[subscription_id]


def _sync_snapshot(subscription_id, status, occurred_at):
    return BillingEventSnapshot(
        event_id=f"sync:{subscription_id}:{int(occurred_at.timestamp())}",
        event_type="subscription.sync",
        occurred_at=occurred_at,
        provider_subscription_id=subscription_id,
        status=status,
    )


@pytest.mark.asyncio
async def test_missed_cancellation_is_applied(db_session, make_user, fixed_now):
    user = make_user(
        tier=SubscriptionTier.PRO,
        status=SubscriptionStatus.ACTIVE,
        provider_subscription_id="sub_1",
    )
    client = FakeBillingClient({"sub_1": _sync_snapshot("sub_1", "canceled", fixed_now)})

    results = await SubscriptionReconciliationJob(db_session, client, clock=lambda: fixed_now).run()

    assert results["subscriptions_checked"] == 1
    assert results["subscriptions_updated"] == 1
    assert results["errors"] == []
    db_session.refresh(user)
    assert user.subscription_status == SubscriptionStatus.CANCELED
    assert user.subscription_tier == SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_unchanged_subscription_is_not_counted(db_session, make_user, fixed_now):
    make_user(
        tier=SubscriptionTier.PRO,
        status=SubscriptionStatus.ACTIVE,
        provider_subscription_id="sub_1",
    )
    client = FakeBillingClient({"sub_1": _sync_snapshot("sub_1", "active", fixed_now)})

    results = await SubscriptionReconciliationJob(db_session, client, clock=lambda: fixed_now).run()

    assert results["subscriptions_checked"] == 1
    assert results["subscriptions_updated"] == 0


@pytest.mark.asyncio
async def test_provider_errors_are_collected(db_session, make_user, fixed_now):
    make_user(status=SubscriptionStatus.ACTIVE, provider_subscription_id="sub_bad")
    good = make_user(
        tier=SubscriptionTier.PRO,
        status=SubscriptionStatus.ACTIVE,
        provider_subscription_id="sub_good",
    )
    client = FakeBillingClient(
        {"sub_good": _sync_snapshot("sub_good", "past_due", fixed_now)},
        failures={"sub_bad"},
    )

    results = await SubscriptionReconciliationJob(db_session, client, clock=lambda: fixed_now).run()

    assert results["subscriptions_checked"] == 2
    assert len(results["errors"]) == 1
    db_session.refresh(good)
    assert good.subscription_status == SubscriptionStatus.PAST_DUE


@pytest.mark.asyncio
async def test_canceled_users_are_not_polled(db_session, make_user, fixed_now):
    make_user(status=SubscriptionStatus.CANCELED, provider_subscription_id="sub_old")
    client = FakeBillingClient()

    results = await SubscriptionReconciliationJob(db_session, client, clock=lambda: fixed_now).run()

    assert client.fetched == []
    assert results["subscriptions_checked"] == 0


@pytest.mark.asyncio
async def test_expired_trials(db_session, make_user, fixed_now):
    expired = make_user(
        tier=SubscriptionTier.PRO,
        status=SubscriptionStatus.TRIALING,
        trial_ends_at=fixed_now - timedelta(hours=1),
    )
    live = make_user(
        tier=SubscriptionTier.PRO,
        status=SubscriptionStatus.TRIALING,
        trial_ends_at=fixed_now + timedelta(days=2),
    )

    results = await SubscriptionReconciliationJob(
        db_session, FakeBillingClient(), clock=lambda: fixed_now
    ).run()

    assert results["trials_expired"] == 1
    db_session.refresh(expired)
    db_session.refresh(live)
    assert expired.subscription_status == SubscriptionStatus.CANCELED
    assert live.subscription_status == SubscriptionStatus.TRIALING


class TestStripeBillingClient:
    @pytest.mark.asyncio
    async def test_fetch_subscription(self):
        subscription = {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "current_period_end": 1_760_000_000,
            "metadata": {"tier": "pro"},
        }
        with patch.object(stripe.Subscription, "retrieve", return_value=subscription) as retrieve:
            snapshot = await StripeBillingClient(api_key="sk_test").fetch_subscription("sub_1")

        retrieve.assert_called_once_with("sub_1", api_key="sk_test")
        assert snapshot.event_type == "subscription.sync"
        assert snapshot.event_id.startswith("sync:sub_1:")
        assert snapshot.status == "active"
        assert snapshot.tier == "pro"
        assert snapshot.period_end is not None

    @pytest.mark.asyncio
    async def test_period_end_from_items(self):
        subscription = {
            "id": "sub_1",
            "status": "active",
            "items": {"data": [{"current_period_end": 1_760_000_000}]},
        }
        with patch.object(stripe.Subscription, "retrieve", return_value=subscription):
            snapshot = await StripeBillingClient(api_key="sk_test").fetch_subscription("sub_1")

        assert int(snapshot.period_end.timestamp()) == 1_760_000_000

    @pytest.mark.asyncio
    async def test_http_error(self):
        error = stripe.InvalidRequestError(
            "No such subscription", "id", code="resource_missing", http_status=404,
        )
        with patch.object(stripe.Subscription, "retrieve", side_effect=error):
            with pytest.raises(BillingProviderError) as exc_info:
                await StripeBillingClient(api_key="sk_test").fetch_subscription("sub_missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "resource_missing"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        error = stripe.APIConnectionError("connection refused")
        with patch.object(stripe.Subscription, "retrieve", side_effect=error):
            with pytest.raises(BillingProviderError, match="Request failed"):
                await StripeBillingClient(api_key="sk_test").fetch_subscription("sub_1")
