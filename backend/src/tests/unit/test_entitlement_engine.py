"""
EntitlementEngine: tier limits, feature gating, API access, quota arithmetic,
effective tier under the payment grace window.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from src.entitlements.policy import (
    KNOWN_FEATURES,
    UNLIMITED,
    APIAccess,
    EntitlementEngine,
)
from src.models.user import SubscriptionStatus, SubscriptionTier

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
TIERS_ASCENDING = (SubscriptionTier.FREE, SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE)


@pytest.fixture
def engine():
    return EntitlementEngine(grace_period=timedelta(days=3))


def _user(tier, status, period_end=None, **limits):
    values = dict(
        subscription_tier=tier,
        subscription_status=status,
        subscription_period_end=period_end,
        files_limit=limits.get("files_limit", 2000),
        max_file_size=limits.get("max_file_size", 100 * 1024 * 1024),
        transformations_limit=limits.get("transformations_limit", 10000),
    )
    return SimpleNamespace(**values)


class TestTierLimits:
    def test_free_limits(self, engine):
        limits = engine.limits_for(SubscriptionTier.FREE)
        assert limits.files_limit == 100
        assert limits.max_file_size == 10 * 1024 * 1024
        assert limits.transformations_limit == 100
        assert limits.allowed_features == frozenset({"thumbnail", "sm"})
        assert limits.api_access == APIAccess.READ_ONLY
        assert limits.priority_queue is False

    def test_pro_limits(self, engine):
        limits = engine.limits_for(SubscriptionTier.PRO)
        assert limits.files_limit == 2000
        assert limits.max_file_size == 100 * 1024 * 1024
        assert limits.transformations_limit == 10000
        assert limits.allowed_features == KNOWN_FEATURES
        assert limits.api_access == APIAccess.FULL

    def test_enterprise_is_unlimited(self, engine):
        assert engine.limits_for(SubscriptionTier.ENTERPRISE).transformations_limit == UNLIMITED

    def test_unknown_tier_falls_back_to_free(self, engine):
        assert engine.limits_for("platinum") == engine.limits_for(SubscriptionTier.FREE)

    def test_tier_accepts_plain_strings(self, engine):
        assert engine.limits_for("pro") == engine.limits_for(SubscriptionTier.PRO)


class TestFeatureGating:
    @pytest.mark.parametrize("feature", sorted(KNOWN_FEATURES))
    def test_monotonic_across_tiers(self, engine, feature):
        allowed = [engine.can_use_feature(tier, feature) for tier in TIERS_ASCENDING]
        # once a tier grants a feature every higher tier does too
        assert allowed == sorted(allowed)

    def test_feature_sets_are_nested(self, engine):
        free, pro, enterprise = (engine.limits_for(t).allowed_features for t in TIERS_ASCENDING)
        assert free <= pro <= enterprise

    def test_free_user_cannot_use_md(self, engine):
        assert engine.can_use_feature(SubscriptionTier.FREE, "md") is False
        assert engine.can_use_feature(SubscriptionTier.FREE, "thumbnail") is True

    def test_check_feature_reports_required_tier(self, engine):
        result = engine.check_feature(SubscriptionTier.FREE, "watermark")
        assert result.is_entitled is False
        assert result.required_tier == SubscriptionTier.PRO
        assert "free" in result.reason

    def test_check_feature_unknown_feature_has_no_required_tier(self, engine):
        result = engine.check_feature(SubscriptionTier.ENTERPRISE, "teleport")
        assert result.is_entitled is False
        assert result.required_tier is None

    def test_check_feature_allowed(self, engine):
        result = engine.check_feature(SubscriptionTier.PRO, "social")
        assert result.is_entitled is True
        assert result.reason is None


class TestAPIAccess:
    def test_free_reads_only(self, engine):
        assert engine.can_use_api(SubscriptionTier.FREE, is_write=False) is True
        assert engine.can_use_api(SubscriptionTier.FREE, is_write=True) is False

    @pytest.mark.parametrize("tier", [SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE])
    def test_paid_tiers_have_full_access(self, engine, tier):
        assert engine.can_use_api(tier, is_write=True) is True
        assert engine.can_use_api(tier, is_write=False) is True


class TestQuotaArithmetic:
    def test_can_upload_is_strictly_below_limit(self, engine):
        assert engine.can_upload(99, 100) is True
        assert engine.can_upload(100, 100) is False

    def test_can_upload_size(self, engine):
        max_size = 10 * 1024 * 1024
        assert engine.can_upload_size(SubscriptionTier.FREE, max_size) is True
        assert engine.can_upload_size(SubscriptionTier.FREE, max_size + 1) is False

    def test_can_transform(self, engine):
        assert engine.can_transform(99, 100) is True
        assert engine.can_transform(100, 100) is False
        assert engine.can_transform(10 ** 9, UNLIMITED) is True

    def test_remaining_transformations(self, engine):
        assert engine.remaining_transformations(30, 100) == 70
        assert engine.remaining_transformations(150, 100) == 0
        assert engine.remaining_transformations(5, UNLIMITED) == UNLIMITED

    def test_usage_percent_guards(self, engine):
        assert engine.files_usage_percent(50, 100) == 50
        assert engine.files_usage_percent(0, 0) == 100
        assert engine.transformations_usage_percent(25, 100) == 25
        assert engine.transformations_usage_percent(25, 0) == 0
        assert engine.transformations_usage_percent(25, UNLIMITED) == 0

    def test_trial_days_remaining_rounds_up(self, engine):
        ends = NOW + timedelta(days=2, hours=1)
        assert engine.trial_days_remaining(SubscriptionStatus.TRIALING, ends, NOW) == 3

    def test_trial_days_remaining_zero_outside_trial(self, engine):
        ends = NOW + timedelta(days=2)
        assert engine.trial_days_remaining(SubscriptionStatus.ACTIVE, ends, NOW) == 0
        assert engine.trial_days_remaining(SubscriptionStatus.TRIALING, NOW, NOW) == 0
        assert engine.trial_days_remaining(SubscriptionStatus.TRIALING, None, NOW) == 0


class TestEffectiveTier:
    def test_active_pro_keeps_pro(self, engine):
        tier = engine.effective_tier(SubscriptionTier.PRO, SubscriptionStatus.ACTIVE, None, NOW)
        assert tier == SubscriptionTier.PRO

    def test_canceled_pro_is_free(self, engine):
        tier = engine.effective_tier(SubscriptionTier.PRO, SubscriptionStatus.CANCELED, None, NOW)
        assert tier == SubscriptionTier.FREE

    def test_past_due_within_grace_keeps_tier(self, engine):
        period_end = NOW - timedelta(days=2)
        tier = engine.effective_tier(
            SubscriptionTier.PRO, SubscriptionStatus.PAST_DUE, period_end, NOW
        )
        assert tier == SubscriptionTier.PRO

    def test_past_due_beyond_grace_is_free(self, engine):
        period_end = NOW - timedelta(days=4)
        tier = engine.effective_tier(
            SubscriptionTier.PRO, SubscriptionStatus.PAST_DUE, period_end, NOW
        )
        assert tier == SubscriptionTier.FREE

    def test_quota_uses_user_columns_while_active(self, engine):
        user = _user(SubscriptionTier.PRO, SubscriptionStatus.ACTIVE, files_limit=2500)
        assert engine.quota_for(user, NOW).files_limit == 2500

    def test_quota_falls_back_to_free_defaults_when_lapsed(self, engine):
        user = _user(
            SubscriptionTier.PRO,
            SubscriptionStatus.PAST_DUE,
            period_end=NOW - timedelta(days=10),
        )
        quota = engine.quota_for(user, NOW)
        assert quota.files_limit == 100
        assert quota.transformations_limit == 100
