"""
Billing provider client.

Used by the reconciliation job to pull subscription snapshots when webhooks
were missed. Webhooks stay the primary source of state.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import stripe

from src.billing.errors import BillingProviderError
from src.billing.events import (
    EVENT_SUBSCRIPTION_SYNC,
    BillingEventSnapshot,
    subscription_snapshot,
)
from src.config.settings import get_billing_api_key

logger = logging.getLogger(__name__)


class StripeBillingClient:
    """Async wrapper around the stripe SDK's subscription endpoints."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or get_billing_api_key()

    async def fetch_subscription(self, subscription_id: str) -> BillingEventSnapshot:
        """
        Fetch the provider's current view of a subscription as a snapshot.

        The snapshot is stamped with the fetch time, so it is newer than any
        webhook delivered before the fetch.
        """
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.retrieve, subscription_id, api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("Billing API error", extra={
                "provider_subscription_id": subscription_id,
                "status_code": e.http_status,
                "error": str(e),
            })
            if e.http_status is None:
                raise BillingProviderError(f"Request failed: {e}") from e
            raise BillingProviderError(
                f"Billing API error: {e.http_status}",
                code=e.code or str(e.http_status),
                status_code=e.http_status,
            ) from e

        fetched_at = datetime.now(timezone.utc)
        event_id = f"sync:{subscription_id}:{int(fetched_at.timestamp())}"
        return subscription_snapshot(subscription, event_id, EVENT_SUBSCRIPTION_SYNC, fetched_at)
