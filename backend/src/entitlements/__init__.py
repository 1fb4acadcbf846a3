"""
Entitlement enforcement for subscription tiers.

This module provides:
- EntitlementEngine: pure tier -> features/limits/quota evaluation
- TierLimits / QuotaLimits: per-tier limits and the limits in force for a user
- Entitlement errors for feature and quota denials
- log_entitlement_denied: audit event for every denied check

Grace period: 3 days (PAYMENT_GRACE_DAYS), exclusive boundary.
"""

from src.entitlements.errors import (
    EntitlementError,
    FeatureDeniedError,
    FileTooLargeError,
    QuotaExceededError,
)
from src.entitlements.policy import (
    ACTION_FEATURES,
    BUNDLE_FEATURES,
    KNOWN_FEATURES,
    UNLIMITED,
    APIAccess,
    EntitlementCheckResult,
    EntitlementEngine,
    QuotaLimits,
    TierLimits,
)

__all__ = [
    "ACTION_FEATURES",
    "BUNDLE_FEATURES",
    "KNOWN_FEATURES",
    "UNLIMITED",
    "APIAccess",
    "EntitlementCheckResult",
    "EntitlementEngine",
    "EntitlementError",
    "FeatureDeniedError",
    "FileTooLargeError",
    "QuotaExceededError",
    "QuotaLimits",
    "TierLimits",
]
