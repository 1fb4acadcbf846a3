"""Billing error types."""

from typing import Optional


class BillingError(Exception):
    """Base class for billing failures."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class TrialNotAllowedError(BillingError):
    """Raised when a user who already had a subscription asks for a trial."""

    def __init__(self, user_id: str, current_status: str):
        self.user_id = user_id
        self.current_status = current_status
        super().__init__(
            f"User {user_id} cannot start a trial from status {current_status}",
            code="trial_not_allowed",
        )


class WebhookSignatureError(BillingError):
    """Raised when a webhook signature header is missing, malformed, stale or wrong."""

    def __init__(self, message: str):
        super().__init__(message, code="invalid_signature")


class BillingProviderError(BillingError):
    """Error returned by, or while talking to, the billing provider API."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, code=code)
