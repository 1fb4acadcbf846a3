"""
Audit logging for entitlement enforcement.

Every denied entitlement check (feature or quota) writes an
ENTITLEMENT_DENIED audit event, whichever call site made the check.
Allowed checks are not audited.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from src.platform.audit import AuditAction, AuditOutcome, log_system_audit_event_sync

logger = logging.getLogger(__name__)


def log_entitlement_denied(
    db: Session,
    user_id: str,
    feature: str,
    tier: str,
    reason: str,
    error_code: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Log entitlement denial audit event.

    Args:
        db: Database session
        user_id: User that was denied
        feature: Feature or quota name that was checked
        tier: Effective tier at the time of the check
        reason: Human-readable denial reason
        error_code: FEATURE_DENIED or QUOTA_EXCEEDED
        resource_type: Type of resource the action targeted (e.g. "file")
        resource_id: ID of that resource
        correlation_id: Optional correlation ID for tracing
    """
    logger.info(
        "Entitlement denied",
        extra={
            "user_id": user_id,
            "feature": feature,
            "tier": tier,
            "error_code": error_code,
            "resource_type": resource_type,
            "resource_id": resource_id,
        },
    )
    log_system_audit_event_sync(
        db=db,
        action=AuditAction.ENTITLEMENT_DENIED,
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata={"feature": feature, "tier": tier, "reason": reason},
        correlation_id=correlation_id,
        source="api",
        outcome=AuditOutcome.DENIED,
        error_code=error_code,
    )
