"""
User model with the per-user subscription state.

Subscription fields are written only by SubscriptionLifecycle
(src.billing.lifecycle). Tier and status are independent: a canceled
pro row is entitled to free features only. Entitlement decisions read
these columns through src.entitlements.policy, never directly.
"""

import enum
import uuid

from sqlalchemy import BigInteger, Column, Enum, Integer, String, Text, Index

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, enum.Enum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


SUBSCRIPTION_TIER_ENUM = Enum(
    SubscriptionTier,
    name="subscription_tier",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)

SUBSCRIPTION_STATUS_ENUM = Enum(
    SubscriptionStatus,
    name="subscription_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class User(Base, TimestampMixin):
    """Account holder. Password hash is optional for OAuth-only accounts."""

    __tablename__ = "users"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(
        Text,
        nullable=True,
        comment="NULL for accounts that only sign in through OAuth"
    )

    subscription_tier = Column(
        SUBSCRIPTION_TIER_ENUM,
        nullable=False,
        default=SubscriptionTier.FREE,
    )
    subscription_status = Column(
        SUBSCRIPTION_STATUS_ENUM,
        nullable=False,
        default=SubscriptionStatus.NONE,
        index=True,
    )
    provider_customer_id = Column(String(255), nullable=True, unique=True)
    provider_subscription_id = Column(String(255), nullable=True, index=True)
    subscription_period_end = Column(UTCDateTime, nullable=True)
    trial_ends_at = Column(UTCDateTime, nullable=True)
    billing_updated_at = Column(
        UTCDateTime,
        nullable=True,
        comment="Provider timestamp of the last applied billing snapshot"
    )

    files_limit = Column(Integer, nullable=False, default=100)
    max_file_size = Column(BigInteger, nullable=False, default=10485760)
    transformations_count = Column(Integer, nullable=False, default=0)
    transformations_limit = Column(
        Integer,
        nullable=False,
        default=100,
        comment="-1 means unlimited"
    )
    transformations_reset_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_users_provider_customer", "provider_customer_id"),
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)
