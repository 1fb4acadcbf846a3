"""
Database models for users, files, credentials and billing.

Importing this package registers the core tables on the shared metadata.
Processing jobs and the audit log are declared in src.jobs.models and
src.platform.audit.
"""

from src.models.base import TimestampMixin, UTCDateTime
from src.models.user import User, SubscriptionTier, SubscriptionStatus
from src.models.file import File, FileStatus
from src.models.file_variant import FileVariant
from src.models.user_session import UserSession
from src.models.api_token import APIToken
from src.models.oauth_account import OAuthAccount
from src.models.billing_event import BillingEvent, BillingEventOutcome

__all__ = [
    "TimestampMixin",
    "UTCDateTime",
    "User",
    "SubscriptionTier",
    "SubscriptionStatus",
    "File",
    "FileStatus",
    "FileVariant",
    "UserSession",
    "APIToken",
    "OAuthAccount",
    "BillingEvent",
    "BillingEventOutcome",
]
