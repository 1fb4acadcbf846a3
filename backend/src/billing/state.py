"""
Subscription state machine.

Local transitions (start_trial, cancel, trial expiry) must follow
ALLOWED_TRANSITIONS. Provider snapshots are authoritative and may move a
subscription outside the table; SubscriptionLifecycle applies those with
a warning instead of rejecting them.

Grace evaluation is lazy: past_due never turns into canceled on a timer,
is_subscription_active() decides at read time.
"""

from datetime import datetime, timedelta
from typing import Optional

from src.models.user import SubscriptionStatus

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.NONE: {
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.ACTIVE,
    },
    SubscriptionStatus.TRIALING: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.PAST_DUE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.UNPAID,
    },
    SubscriptionStatus.UNPAID: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.CANCELED: set(),
}

_PROVIDER_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
}


def map_provider_status(raw_status: Optional[str]) -> SubscriptionStatus:
    """Map a provider status string to a local status; anything unknown is NONE."""
    if not raw_status:
        return SubscriptionStatus.NONE
    return _PROVIDER_STATUS_MAP.get(raw_status.lower(), SubscriptionStatus.NONE)


def is_transition_allowed(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(SubscriptionStatus(current), set())


def is_subscription_active(
    status: SubscriptionStatus,
    period_end: Optional[datetime],
    now: datetime,
    grace_period: timedelta,
) -> bool:
    """
    Return whether a subscription currently grants its tier.

    active and trialing are always active. past_due stays active while
    now - period_end < grace_period; the comparison is exclusive, so at
    exactly grace_period the subscription is no longer active. A past_due
    row without a period end has no grace window.
    """
    status = SubscriptionStatus(status)
    if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        return True
    if status == SubscriptionStatus.PAST_DUE:
        if period_end is None:
            return False
        return now - period_end < grace_period
    return False
