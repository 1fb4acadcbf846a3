"""
Billing API routes for the signed-in user's subscription.

Plan changes driven by payment happen through the billing provider and
arrive via /webhooks/billing; these routes only read state, start the
one-time trial, and cancel locally.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from src.api.dependencies.auth import get_current_user
from src.billing.errors import TrialNotAllowedError
from src.billing.lifecycle import SubscriptionLifecycle
from src.database.session import get_db_session
from src.entitlements.policy import EntitlementEngine
from src.models.user import SubscriptionStatus, SubscriptionTier, User
from src.platform.errors import ConflictError
from src.services.usage_service import count_files, reset_transformations_if_due

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


class SubscriptionResponse(BaseModel):
    """Subscription, limits and usage for the current user."""
    tier: str
    effective_tier: str
    status: str
    is_active: bool
    current_period_end: Optional[datetime]
    trial_ends_at: Optional[datetime]
    trial_days_remaining: int
    files_used: int
    files_limit: int
    files_usage_percent: int
    max_file_size: int
    transformations_used: int
    transformations_limit: int
    transformations_remaining: int
    transformations_usage_percent: int
    transformations_reset_at: Optional[datetime]
    features: List[str]


def _subscription_response(db: Session, user: User) -> SubscriptionResponse:
    engine = EntitlementEngine()
    now = datetime.now(timezone.utc)
    if reset_transformations_if_due(user, now):
        db.commit()

    effective = engine.effective_tier_for(user, now)
    quota = engine.quota_for(user, now)
    files_used = count_files(db, user.id)
    used = user.transformations_count or 0

    return SubscriptionResponse(
        tier=SubscriptionTier(user.subscription_tier).value,
        effective_tier=effective.value,
        status=SubscriptionStatus(user.subscription_status).value,
        is_active=engine.is_active(user.subscription_status, user.subscription_period_end, now),
        current_period_end=user.subscription_period_end,
        trial_ends_at=user.trial_ends_at,
        trial_days_remaining=engine.trial_days_remaining(
            user.subscription_status, user.trial_ends_at, now
        ),
        files_used=files_used,
        files_limit=quota.files_limit,
        files_usage_percent=engine.files_usage_percent(files_used, quota.files_limit),
        max_file_size=quota.max_file_size,
        transformations_used=used,
        transformations_limit=quota.transformations_limit,
        transformations_remaining=engine.remaining_transformations(used, quota.transformations_limit),
        transformations_usage_percent=engine.transformations_usage_percent(
            used, quota.transformations_limit
        ),
        transformations_reset_at=user.transformations_reset_at,
        features=sorted(engine.limits_for(effective).allowed_features),
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    lifecycle = SubscriptionLifecycle(db)
    lifecycle.check_trial_expiration(user)
    return _subscription_response(db, user)


@router.post("/trial", response_model=SubscriptionResponse)
async def start_trial(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    """Start the one-time Pro trial."""
    try:
        SubscriptionLifecycle(db).start_trial(user)
    except TrialNotAllowedError as e:
        logger.info("Trial refused", extra={"user_id": user.id, "status": e.current_status})
        raise ConflictError(
            "A trial is only available to accounts that never had a subscription",
            details={"status": e.current_status},
            code="TRIAL_NOT_ALLOWED",
        )
    return _subscription_response(db, user)


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    """
    Cancel locally and drop to the free tier.

    The provider-side subscription is not touched here; its own
    cancellation webhook reconciles to the same state.
    """
    SubscriptionLifecycle(db).cancel(user)
    return _subscription_response(db, user)
