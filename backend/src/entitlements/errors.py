"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- FeatureDeniedError: feature not included in the user's tier (upgrade prompt)
- QuotaExceededError: a usage quota is exhausted (wait or upgrade)

Both are recoverable by the user and are never retried automatically.
"""

from typing import Optional


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FeatureDeniedError(EntitlementError):
    """Raised when a feature is not part of the user's effective tier."""

    def __init__(
        self,
        user_id: str,
        feature_key: str,
        reason: str,
        required_tier: Optional[str] = None,
    ):
        self.user_id = user_id
        self.feature_key = feature_key
        self.reason = reason
        self.required_tier = required_tier
        self.error_code = "FEATURE_DENIED"
        super().__init__(f"Feature {feature_key} denied for {user_id}: {reason}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "feature_key": self.feature_key,
            "message": self.reason,
            "required_tier": self.required_tier,
        }


class QuotaExceededError(EntitlementError):
    """Raised when a counter has reached its limit."""

    def __init__(self, user_id: str, quota: str, used: int, limit: int):
        self.user_id = user_id
        self.quota = quota
        self.used = used
        self.limit = limit
        self.error_code = "QUOTA_EXCEEDED"
        super().__init__(f"Quota {quota} exhausted for {user_id}: {used}/{limit}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "quota": self.quota,
            "used": self.used,
            "limit": self.limit,
        }


class FileTooLargeError(EntitlementError):
    """Raised when an upload exceeds the tier's maximum file size."""

    def __init__(self, user_id: str, size_bytes: int, max_file_size: int):
        self.user_id = user_id
        self.size_bytes = size_bytes
        self.max_file_size = max_file_size
        self.error_code = "FILE_TOO_LARGE"
        super().__init__(f"Upload of {size_bytes} bytes exceeds {max_file_size} for {user_id}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "size_bytes": self.size_bytes,
            "max_file_size": self.max_file_size,
        }
