"""
Entitlement policy evaluation.

EntitlementEngine is the single place that knows what a subscription tier
grants. Routes, the dispatcher, the upload gate and the billing lifecycle
call its methods; none of them compare tier strings themselves.

Every method is a deterministic function of its arguments. Counters are
passed in rather than read from storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Optional

from src.billing.state import is_subscription_active
from src.config.settings import payment_grace_period
from src.models.user import SubscriptionStatus, SubscriptionTier

logger = logging.getLogger(__name__)

UNLIMITED = -1

# Features that map one-to-one onto dispatcher actions.
ACTION_FEATURES: FrozenSet[str] = frozenset({
    "thumbnail",
    "sm",
    "md",
    "lg",
    "xl",
    "og",
    "twitter",
    "instagram_square",
    "instagram_portrait",
    "instagram_story",
    "webp",
    "watermark",
    "pdf_preview",
    "video_thumbnail",
    "hls",
})

# Features that gate a whole bundle of actions.
BUNDLE_FEATURES: FrozenSet[str] = frozenset({"responsive", "social"})

KNOWN_FEATURES: FrozenSet[str] = ACTION_FEATURES | BUNDLE_FEATURES


class APIAccess(str, Enum):
    """Level of programmatic API access granted by a tier."""
    NONE = "none"
    READ_ONLY = "read_only"
    FULL = "full"


@dataclass(frozen=True)
class TierLimits:
    """Limits and feature set granted by one subscription tier."""
    files_limit: int
    max_file_size: int
    transformations_limit: int
    allowed_features: FrozenSet[str]
    api_access: APIAccess
    priority_queue: bool = False
    custom_watermark: bool = False


FREE_LIMITS = TierLimits(
    files_limit=100,
    max_file_size=10 * 1024 * 1024,
    transformations_limit=100,
    allowed_features=frozenset({"thumbnail", "sm"}),
    api_access=APIAccess.READ_ONLY,
)

PRO_LIMITS = TierLimits(
    files_limit=2000,
    max_file_size=100 * 1024 * 1024,
    transformations_limit=10000,
    allowed_features=KNOWN_FEATURES,
    api_access=APIAccess.FULL,
    priority_queue=True,
    custom_watermark=True,
)

ENTERPRISE_LIMITS = TierLimits(
    files_limit=PRO_LIMITS.files_limit,
    max_file_size=PRO_LIMITS.max_file_size,
    transformations_limit=UNLIMITED,
    allowed_features=KNOWN_FEATURES,
    api_access=APIAccess.FULL,
    priority_queue=True,
    custom_watermark=True,
)

_TIER_LIMITS = {
    SubscriptionTier.FREE: FREE_LIMITS,
    SubscriptionTier.PRO: PRO_LIMITS,
    SubscriptionTier.ENTERPRISE: ENTERPRISE_LIMITS,
}


@dataclass(frozen=True)
class QuotaLimits:
    """Quota limits in force for one user at one instant."""
    files_limit: int
    max_file_size: int
    transformations_limit: int


@dataclass
class EntitlementCheckResult:
    """Result of an entitlement check."""
    is_entitled: bool
    tier: SubscriptionTier
    feature: str
    reason: Optional[str] = None
    required_tier: Optional[SubscriptionTier] = None


def _coerce_tier(tier) -> SubscriptionTier:
    try:
        return SubscriptionTier(tier)
    except ValueError:
        logger.warning("Unknown subscription tier, using free limits", extra={"tier": str(tier)})
        return SubscriptionTier.FREE


class EntitlementEngine:
    """
    Evaluates feature access and quotas for subscription tiers.

    Holds only the payment grace period, so instances are cheap and tests
    can build isolated ones with a custom window.
    """

    def __init__(self, grace_period: Optional[timedelta] = None):
        self.grace_period = grace_period if grace_period is not None else payment_grace_period()

    # ------------------------------------------------------------------
    # Tier limits and features
    # ------------------------------------------------------------------

    def limits_for(self, tier) -> TierLimits:
        return _TIER_LIMITS[_coerce_tier(tier)]

    def can_use_feature(self, tier, feature: str) -> bool:
        return feature in self.limits_for(tier).allowed_features

    def check_feature(self, tier, feature: str) -> EntitlementCheckResult:
        """
        Check a feature and explain a denial.

        The required tier is the lowest tier whose feature set contains it.
        """
        tier = _coerce_tier(tier)
        if self.can_use_feature(tier, feature):
            return EntitlementCheckResult(is_entitled=True, tier=tier, feature=feature)

        required = None
        for candidate in (SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE):
            if self.can_use_feature(candidate, feature):
                required = candidate
                break
        return EntitlementCheckResult(
            is_entitled=False,
            tier=tier,
            feature=feature,
            reason=f"Feature '{feature}' is not included in the {tier.value} plan",
            required_tier=required,
        )

    def can_use_api(self, tier, is_write: bool) -> bool:
        access = self.limits_for(tier).api_access
        if access == APIAccess.FULL:
            return True
        if access == APIAccess.READ_ONLY:
            return not is_write
        return False

    def has_priority_queue(self, tier) -> bool:
        return self.limits_for(tier).priority_queue

    def has_custom_watermark(self, tier) -> bool:
        return self.limits_for(tier).custom_watermark

    # ------------------------------------------------------------------
    # Subscription state
    # ------------------------------------------------------------------

    def is_active(
        self,
        status: SubscriptionStatus,
        period_end: Optional[datetime],
        now: datetime,
    ) -> bool:
        return is_subscription_active(status, period_end, now, self.grace_period)

    def effective_tier(
        self,
        tier,
        status: SubscriptionStatus,
        period_end: Optional[datetime],
        now: datetime,
    ) -> SubscriptionTier:
        """Tier the user is entitled to right now: their tier if active, otherwise free."""
        tier = _coerce_tier(tier)
        if tier == SubscriptionTier.FREE:
            return tier
        if self.is_active(status, period_end, now):
            return tier
        return SubscriptionTier.FREE

    def effective_tier_for(self, user, now: datetime) -> SubscriptionTier:
        return self.effective_tier(
            user.subscription_tier,
            user.subscription_status,
            user.subscription_period_end,
            now,
        )

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    def quota_for(self, user, now: datetime) -> QuotaLimits:
        """
        Quota limits that apply to a user right now.

        The per-user columns apply while the subscription grants its tier.
        A lapsed subscription (canceled, or past_due beyond grace) falls back
        to the defaults of the tier it is effectively entitled to.
        """
        tier = self.effective_tier_for(user, now)
        if tier == _coerce_tier(user.subscription_tier):
            return QuotaLimits(
                files_limit=user.files_limit,
                max_file_size=user.max_file_size,
                transformations_limit=user.transformations_limit,
            )
        limits = self.limits_for(tier)
        return QuotaLimits(
            files_limit=limits.files_limit,
            max_file_size=limits.max_file_size,
            transformations_limit=limits.transformations_limit,
        )

    @staticmethod
    def can_upload(files_used: int, files_limit: int) -> bool:
        return files_used < files_limit

    def can_upload_size(self, tier, size_bytes: int) -> bool:
        return size_bytes <= self.limits_for(tier).max_file_size

    @staticmethod
    def can_transform(used: int, limit: int) -> bool:
        return limit == UNLIMITED or used < limit

    @staticmethod
    def remaining_transformations(used: int, limit: int) -> int:
        if limit == UNLIMITED:
            return UNLIMITED
        return max(0, limit - used)

    @staticmethod
    def files_usage_percent(files_used: int, files_limit: int) -> int:
        if files_limit <= 0:
            return 100
        return int(files_used * 100 / files_limit)

    @staticmethod
    def transformations_usage_percent(used: int, limit: int) -> int:
        if limit == UNLIMITED or limit <= 0:
            return 0
        return int(used * 100 / limit)

    @staticmethod
    def trial_days_remaining(
        status: SubscriptionStatus,
        trial_ends_at: Optional[datetime],
        now: datetime,
    ) -> int:
        """Whole days left in a trial, rounded up; 0 outside a live trial."""
        if SubscriptionStatus(status) != SubscriptionStatus.TRIALING or trial_ends_at is None:
            return 0
        remaining = trial_ends_at - now
        if remaining <= timedelta(0):
            return 0
        return int(remaining.total_seconds() / 3600 / 24) + 1
