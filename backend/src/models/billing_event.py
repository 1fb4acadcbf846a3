"""
Ledger of billing-provider events received by the webhook.

The unique provider_event_id makes redelivered events a no-op.
"""

import enum
import uuid

from sqlalchemy import Column, JSON, String

from src.db_base import Base
from src.models.base import UTCDateTime, utcnow


class BillingEventOutcome(str, enum.Enum):
    APPLIED = "applied"
    STALE = "stale"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"


class BillingEvent(Base):
    __tablename__ = "billing_events"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    provider_event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    provider_subscription_id = Column(String(255), nullable=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)
    status_snapshot = Column(String(50), nullable=True)
    outcome = Column(String(20), nullable=False)
    occurred_at = Column(UTCDateTime, nullable=False)
    processed_at = Column(UTCDateTime, nullable=False, default=utcnow)
    event_metadata = Column(JSON, nullable=False, default=dict)
