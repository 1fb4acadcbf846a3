"""
Subscription reconciliation job.

Runs hourly to pull subscription state from the billing provider.
Ensures subscription status is accurate even if webhooks are missed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.billing.errors import BillingProviderError
from src.billing.lifecycle import SubscriptionLifecycle
from src.billing.provider_client import StripeBillingClient
from src.models.user import SubscriptionStatus, User

logger = logging.getLogger(__name__)

_SYNCED_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)


class SubscriptionReconciliationJob:
    """
    Reconciles local subscription state with the billing provider.

    Handles:
    - Missed or reordered webhooks (provider snapshot applied via the lifecycle)
    - Expired local trials
    """

    def __init__(
        self,
        db_session: Session,
        client: StripeBillingClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_session = db_session
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.lifecycle = SubscriptionLifecycle(db_session, clock=self.clock)

    async def run(self) -> dict:
        logger.info("Starting subscription reconciliation job")

        results = {
            "started_at": self.clock().isoformat(),
            "subscriptions_checked": 0,
            "subscriptions_updated": 0,
            "trials_expired": 0,
            "errors": [],
        }

        users = self.db_session.query(User).filter(
            User.provider_subscription_id.isnot(None),
            User.subscription_status.in_(_SYNCED_STATUSES),
        ).all()

        for user in users:
            results["subscriptions_checked"] += 1
            try:
                snapshot = await self.client.fetch_subscription(user.provider_subscription_id)
            except BillingProviderError as e:
                error_msg = f"Failed to fetch subscription for user {user.id}: {e}"
                logger.warning(error_msg, extra={
                    "user_id": user.id,
                    "provider_subscription_id": user.provider_subscription_id,
                })
                results["errors"].append(error_msg)
                continue

            previous = user.subscription_status
            result = self.lifecycle.apply_billing_event(snapshot)
            if result.status is not None and result.status != previous:
                results["subscriptions_updated"] += 1

        self._expire_trials(results)

        results["completed_at"] = self.clock().isoformat()
        logger.info("Subscription reconciliation completed", extra=results)
        return results

    def _expire_trials(self, results: dict) -> None:
        now = self.clock()
        trials = self.db_session.query(User).filter(
            User.subscription_status == SubscriptionStatus.TRIALING,
            User.trial_ends_at.isnot(None),
            User.trial_ends_at < now,
        ).all()

        for user in trials:
            if self.lifecycle.check_trial_expiration(user, now=now):
                results["trials_expired"] += 1


async def run_reconciliation(db_session: Session) -> dict:
    job = SubscriptionReconciliationJob(db_session, StripeBillingClient())
    return await job.run()


if __name__ == "__main__":
    import sys

    from src.database.session import get_session_factory

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    session = get_session_factory()()
    try:
        results = asyncio.run(run_reconciliation(session))
        logger.info("Reconciliation finished", extra={"errors": len(results["errors"])})
    finally:
        session.close()
    sys.exit(1 if results["errors"] else 0)
