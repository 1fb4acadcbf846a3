"""
Subscription lifecycle.

Owns every write to the subscription columns of a user:
- local actions: start_trial, cancel, trial expiry
- provider snapshots: apply_billing_event (webhooks and pull reconciliation)

Reconciliation policy:
- Duplicate provider event ids are no-ops (billing_events ledger).
- The newest snapshot wins, ordered by the provider's event timestamp.
  A snapshot older than the last applied one is recorded as stale, logged
  as a warning and not applied. Equal timestamps apply, so replaying the
  same snapshot leaves the state unchanged.
- Each snapshot is applied in one commit with the user row locked, so
  readers see either the old or the new subscription state.
- Provider moves outside the local state machine are applied with a
  warning; the provider is authoritative.
- An ending snapshot (canceled or deleted) for a subscription other than
  the user's live one is recorded as stale, so a late event for a replaced
  subscription cannot cancel the current one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.billing.errors import TrialNotAllowedError
from src.billing.events import BillingEventSnapshot
from src.billing.state import is_transition_allowed, map_provider_status
from src.config.settings import trial_duration
from src.entitlements.policy import EntitlementEngine
from src.models.billing_event import BillingEvent, BillingEventOutcome
from src.models.user import SubscriptionStatus, SubscriptionTier, User
from src.platform.audit import AuditAction, log_system_audit_event_sync

logger = logging.getLogger(__name__)

_PAID_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.UNPAID,
)


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNMATCHED = "unmatched"


@dataclass
class ReconciliationResult:
    outcome: ReconciliationOutcome
    event_id: str
    user_id: Optional[str] = None
    previous_status: Optional[SubscriptionStatus] = None
    status: Optional[SubscriptionStatus] = None


class SubscriptionLifecycle:
    """
    Subscription state transitions for one database session.

    Commits its own work; callers should not hold uncommitted changes on
    the session when calling in.
    """

    def __init__(
        self,
        db_session: Session,
        engine: Optional[EntitlementEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.engine = engine or EntitlementEngine()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_active(self, user: User, now: Optional[datetime] = None) -> bool:
        """Whether the user's subscription grants its tier right now (grace included)."""
        now = now or self._clock()
        return self.engine.is_active(user.subscription_status, user.subscription_period_end, now)

    # ------------------------------------------------------------------
    # Local transitions
    # ------------------------------------------------------------------

    def start_trial(self, user: User) -> User:
        """
        Start a pro trial.

        Raises:
            TrialNotAllowedError: If the user has ever had a subscription status
        """
        current = SubscriptionStatus(user.subscription_status)
        if current != SubscriptionStatus.NONE:
            raise TrialNotAllowedError(user.id, current.value)

        now = self._clock()
        user.subscription_status = SubscriptionStatus.TRIALING
        user.trial_ends_at = now + trial_duration()
        self._apply_tier(user, SubscriptionTier.PRO)

        log_system_audit_event_sync(
            self.db,
            action=AuditAction.BILLING_TRIAL_STARTED,
            user_id=user.id,
            resource_type="subscription",
            resource_id=user.id,
            metadata={"trial_ends_at": user.trial_ends_at.isoformat()},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("Trial started", extra={"user_id": user.id})
        return user

    def cancel(self, user: User) -> User:
        """
        Cancel locally: status canceled, free tier and limits.

        Canceling a user with no live subscription is a no-op.
        """
        current = SubscriptionStatus(user.subscription_status)
        if current not in _PAID_STATUSES:
            logger.info(
                "Cancel requested without a live subscription",
                extra={"user_id": user.id, "status": current.value},
            )
            return user

        self._cancel(user)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.BILLING_SUBSCRIPTION_CANCELLED,
            user_id=user.id,
            resource_type="subscription",
            resource_id=user.id,
            metadata={"previous_status": current.value},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("Subscription canceled", extra={"user_id": user.id})
        return user

    def check_trial_expiration(self, user: User, now: Optional[datetime] = None) -> bool:
        """
        Expire a lapsed trial (trialing -> canceled).

        Returns:
            True if the trial was expired by this call
        """
        now = now or self._clock()
        if SubscriptionStatus(user.subscription_status) != SubscriptionStatus.TRIALING:
            return False
        if user.trial_ends_at is None or now <= user.trial_ends_at:
            return False

        self._cancel(user)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.BILLING_TRIAL_EXPIRED,
            user_id=user.id,
            resource_type="subscription",
            resource_id=user.id,
            commit=False,
        )
        self.db.commit()
        logger.info("Trial expired", extra={"user_id": user.id})
        return True

    # ------------------------------------------------------------------
    # Provider reconciliation
    # ------------------------------------------------------------------

    def apply_billing_event(self, snapshot: BillingEventSnapshot) -> ReconciliationResult:
        """
        Apply a provider snapshot. Idempotent and order tolerant.

        Stale and duplicate events are never raised to the caller.
        """
        if self._event_seen(snapshot.event_id):
            logger.info(
                "Duplicate billing event ignored",
                extra={"event_id": snapshot.event_id, "event_type": snapshot.event_type},
            )
            return ReconciliationResult(ReconciliationOutcome.DUPLICATE, snapshot.event_id)

        user = self._find_user(snapshot)
        if user is None:
            logger.warning(
                "Billing event does not match any user",
                extra={
                    "event_id": snapshot.event_id,
                    "event_type": snapshot.event_type,
                    "provider_subscription_id": snapshot.provider_subscription_id,
                },
            )
            return self._finish(snapshot, None, BillingEventOutcome.UNMATCHED,
                                ReconciliationOutcome.UNMATCHED)

        previous = SubscriptionStatus(user.subscription_status)
        if user.billing_updated_at is not None and snapshot.occurred_at < user.billing_updated_at:
            logger.warning(
                "Stale billing event ignored; a newer snapshot was already applied",
                extra={
                    "event_id": snapshot.event_id,
                    "user_id": user.id,
                    "event_occurred_at": snapshot.occurred_at.isoformat(),
                    "last_applied_at": user.billing_updated_at.isoformat(),
                    "snapshot_status": snapshot.status,
                },
            )
            return self._finish(snapshot, user, BillingEventOutcome.STALE,
                                ReconciliationOutcome.STALE, previous=previous)

        target = map_provider_status(snapshot.status)
        if self._is_superseded(user, snapshot, previous, target):
            logger.warning(
                "Billing event for a superseded subscription ignored",
                extra={
                    "event_id": snapshot.event_id,
                    "user_id": user.id,
                    "provider_subscription_id": snapshot.provider_subscription_id,
                    "current_subscription_id": user.provider_subscription_id,
                    "snapshot_status": snapshot.status,
                },
            )
            return self._finish(snapshot, user, BillingEventOutcome.STALE,
                                ReconciliationOutcome.STALE, previous=previous)

        if not is_transition_allowed(previous, target):
            logger.warning(
                "Provider moved subscription outside the local state machine",
                extra={
                    "event_id": snapshot.event_id,
                    "user_id": user.id,
                    "from_status": previous.value,
                    "to_status": target.value,
                },
            )

        self._apply_snapshot(user, snapshot, target)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.BILLING_SUBSCRIPTION_RECONCILED,
            user_id=user.id,
            resource_type="subscription",
            resource_id=snapshot.provider_subscription_id,
            metadata={
                "event_id": snapshot.event_id,
                "event_type": snapshot.event_type,
                "from_status": previous.value,
                "to_status": target.value,
            },
            source="webhook",
            commit=False,
        )
        return self._finish(snapshot, user, BillingEventOutcome.APPLIED,
                            ReconciliationOutcome.APPLIED, previous=previous)

    @staticmethod
    def _is_superseded(
        user: User,
        snapshot: BillingEventSnapshot,
        previous: SubscriptionStatus,
        target: SubscriptionStatus,
    ) -> bool:
        """An ending snapshot for a subscription other than the user's live one."""
        if target in _PAID_STATUSES or previous not in _PAID_STATUSES:
            return False
        current = user.provider_subscription_id
        return bool(
            current
            and snapshot.provider_subscription_id
            and snapshot.provider_subscription_id != current
        )

    def _apply_snapshot(
        self,
        user: User,
        snapshot: BillingEventSnapshot,
        status: SubscriptionStatus,
    ) -> None:
        if status == SubscriptionStatus.CANCELED:
            self._cancel(user)
        else:
            user.subscription_status = status
            if snapshot.provider_subscription_id:
                user.provider_subscription_id = snapshot.provider_subscription_id
            self._apply_tier(user, self._tier_for_snapshot(user, snapshot, status))

        if snapshot.provider_customer_id:
            user.provider_customer_id = snapshot.provider_customer_id
        if snapshot.period_end is not None:
            user.subscription_period_end = snapshot.period_end
        if snapshot.trial_end is not None:
            user.trial_ends_at = snapshot.trial_end
        user.billing_updated_at = snapshot.occurred_at

    def _tier_for_snapshot(
        self,
        user: User,
        snapshot: BillingEventSnapshot,
        status: SubscriptionStatus,
    ) -> SubscriptionTier:
        if snapshot.tier:
            try:
                return SubscriptionTier(snapshot.tier)
            except ValueError:
                logger.warning(
                    "Unknown tier in billing metadata",
                    extra={"event_id": snapshot.event_id, "tier": snapshot.tier},
                )
        current = SubscriptionTier(user.subscription_tier)
        if status in _PAID_STATUSES and current == SubscriptionTier.FREE:
            return SubscriptionTier.PRO
        return current

    def _finish(
        self,
        snapshot: BillingEventSnapshot,
        user: Optional[User],
        ledger_outcome: BillingEventOutcome,
        outcome: ReconciliationOutcome,
        previous: Optional[SubscriptionStatus] = None,
    ) -> ReconciliationResult:
        user_id = user.id if user is not None else None
        self.db.add(BillingEvent(
            provider_event_id=snapshot.event_id,
            event_type=snapshot.event_type,
            provider_subscription_id=snapshot.provider_subscription_id,
            user_id=user_id,
            status_snapshot=snapshot.status,
            outcome=ledger_outcome.value,
            occurred_at=snapshot.occurred_at,
            event_metadata=snapshot.metadata,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # The same event id was committed by a concurrent delivery
            self.db.rollback()
            logger.info("Duplicate billing event ignored", extra={"event_id": snapshot.event_id})
            return ReconciliationResult(ReconciliationOutcome.DUPLICATE, snapshot.event_id)

        status = SubscriptionStatus(user.subscription_status) if user is not None else None
        logger.info(
            "Billing event processed",
            extra={
                "event_id": snapshot.event_id,
                "event_type": snapshot.event_type,
                "user_id": user_id,
                "outcome": outcome.value,
                "status": status.value if status else None,
            },
        )
        return ReconciliationResult(
            outcome=outcome,
            event_id=snapshot.event_id,
            user_id=user_id,
            previous_status=previous,
            status=status,
        )

    def _event_seen(self, event_id: str) -> bool:
        stmt = select(BillingEvent.id).where(BillingEvent.provider_event_id == event_id)
        return self.db.execute(stmt).first() is not None

    def _find_user(self, snapshot: BillingEventSnapshot) -> Optional[User]:
        """Locate and lock the user: metadata user id, then subscription id, then customer id."""
        candidates = []
        if snapshot.user_id:
            candidates.append(User.id == snapshot.user_id)
        if snapshot.provider_subscription_id:
            candidates.append(User.provider_subscription_id == snapshot.provider_subscription_id)
        if snapshot.provider_customer_id:
            candidates.append(User.provider_customer_id == snapshot.provider_customer_id)

        for condition in candidates:
            user = self.db.execute(
                select(User).where(condition).with_for_update()
            ).scalars().first()
            if user is not None:
                return user
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cancel(self, user: User) -> None:
        user.subscription_status = SubscriptionStatus.CANCELED
        user.provider_subscription_id = None
        self._apply_tier(user, SubscriptionTier.FREE)

    def _apply_tier(self, user: User, tier: SubscriptionTier) -> None:
        limits = self.engine.limits_for(tier)
        user.subscription_tier = tier
        user.files_limit = limits.files_limit
        user.max_file_size = limits.max_file_size
        user.transformations_limit = limits.transformations_limit
