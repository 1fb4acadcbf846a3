"""
Billing provider event parsing.

Provider webhooks are reduced to BillingEventSnapshot: the provider's own
subscription id plus a full status snapshot, never a delta. Only the event
types below affect subscription state; everything else is ignored.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_SUBSCRIPTION_CREATED = "customer.subscription.created"
EVENT_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
EVENT_SUBSCRIPTION_DELETED = "customer.subscription.deleted"
EVENT_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
EVENT_PAYMENT_FAILED = "invoice.payment_failed"
EVENT_SUBSCRIPTION_SYNC = "subscription.sync"

SUBSCRIPTION_EVENTS = frozenset({
    EVENT_SUBSCRIPTION_CREATED,
    EVENT_SUBSCRIPTION_UPDATED,
    EVENT_SUBSCRIPTION_DELETED,
})


class InvalidBillingEventError(ValueError):
    """The payload is not a well-formed provider event."""


@dataclass
class BillingEventSnapshot:
    """Subscription snapshot carried by one provider event."""
    event_id: str
    event_type: str
    occurred_at: datetime
    provider_subscription_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    status: Optional[str] = None
    period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("user_id") or None

    @property
    def tier(self) -> Optional[str]:
        return self.metadata.get("tier") or None


def from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring malformed provider timestamp", extra={"value": str(value)})
        return None


def _subscription_period_end(obj: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions carry the period on each subscription item.
    period_end = from_timestamp(obj.get("current_period_end"))
    if period_end is not None:
        return period_end
    items = (obj.get("items") or {}).get("data") or []
    ends = [from_timestamp(item.get("current_period_end")) for item in items]
    ends = [end for end in ends if end is not None]
    return max(ends) if ends else None


def subscription_snapshot(
    obj: Dict[str, Any],
    event_id: str,
    event_type: str,
    occurred_at: datetime,
) -> BillingEventSnapshot:
    """Build a snapshot from a provider subscription object."""
    status = obj.get("status")
    if event_type == EVENT_SUBSCRIPTION_DELETED:
        status = "canceled"
    return BillingEventSnapshot(
        event_id=event_id,
        event_type=event_type,
        occurred_at=occurred_at,
        provider_subscription_id=obj.get("id"),
        provider_customer_id=obj.get("customer"),
        status=status,
        period_end=_subscription_period_end(obj),
        trial_end=from_timestamp(obj.get("trial_end")),
        metadata=dict(obj.get("metadata") or {}),
    )


def _invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    lines = (invoice.get("lines") or {}).get("data") or []
    for line in lines:
        period_end = from_timestamp((line.get("period") or {}).get("end"))
        if period_end is not None:
            return period_end
    return None


def parse_provider_event(event: Dict[str, Any]) -> Optional[BillingEventSnapshot]:
    """
    Convert a provider webhook event into a snapshot.

    Returns:
        The snapshot, or None for event types that do not affect subscriptions

    Raises:
        InvalidBillingEventError: If id, type, created or data.object is missing
    """
    try:
        event_id = event["id"]
        event_type = event["type"]
        occurred_at = from_timestamp(event["created"])
        obj = event["data"]["object"]
    except (KeyError, TypeError) as e:
        raise InvalidBillingEventError(f"Malformed billing event: missing {e}") from e
    if occurred_at is None or not isinstance(obj, dict):
        raise InvalidBillingEventError("Malformed billing event: bad created or data.object")

    if event_type in SUBSCRIPTION_EVENTS:
        return subscription_snapshot(obj, event_id, event_type, occurred_at)

    if event_type == EVENT_CHECKOUT_COMPLETED:
        if not obj.get("subscription"):
            return None
        return BillingEventSnapshot(
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
            provider_subscription_id=obj.get("subscription"),
            provider_customer_id=obj.get("customer"),
            status="active",
            metadata=dict(obj.get("metadata") or {}),
        )

    if event_type in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED):
        if not obj.get("subscription"):
            return None
        return BillingEventSnapshot(
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
            provider_subscription_id=obj.get("subscription"),
            provider_customer_id=obj.get("customer"),
            status="active" if event_type == EVENT_PAYMENT_SUCCEEDED else "past_due",
            period_end=_invoice_period_end(obj),
            metadata=dict((obj.get("subscription_details") or {}).get("metadata") or {}),
        )

    logger.debug("Ignoring billing event type", extra={"event_type": event_type})
    return None
