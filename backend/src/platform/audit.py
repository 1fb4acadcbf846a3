"""
Audit logging for the file-processing backend.

SECURITY REQUIREMENTS:
- Audit logs MUST be append-only (no UPDATE/DELETE)
- Events include: user_id, action, timestamp, IP, user_agent, metadata
- Token and credential fields MUST be redacted before persistence
- Failed logging attempts MUST fall back to secondary logger

Audited actions:
- Session and API token lifecycle
- OAuth link changes
- Billing changes (trial, cancel, reconciled provider events)
- Transform requests, uploads and deletions
- Every denied entitlement check
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Optional

from fastapi import Request
from sqlalchemy import Column, Index, JSON, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.auth.client_ip import resolve_client_ip
from src.config.settings import get_trusted_proxies
from src.db_base import Base
from src.models.base import UTCDateTime

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")


class AuditAction(str, Enum):
    """
    Enumeration of all auditable actions.

    Add new actions here as features are developed.
    """
    # Auth events
    AUTH_SESSION_CREATED = "auth.session_created"
    AUTH_SESSION_REVOKED = "auth.session_revoked"
    AUTH_SESSIONS_REVOKED_ALL = "auth.sessions_revoked_all"
    AUTH_API_TOKEN_CREATED = "auth.api_token_created"
    AUTH_API_TOKEN_DELETED = "auth.api_token_deleted"
    AUTH_OAUTH_LINKED = "auth.oauth_linked"
    AUTH_OAUTH_UNLINKED = "auth.oauth_unlinked"
    AUTH_OAUTH_UNLINK_REFUSED = "auth.oauth_unlink_refused"
    AUTH_USER_REGISTERED = "auth.user_registered"
    AUTH_LOGIN_FAILED = "auth.login_failed"

    # Billing events
    BILLING_TRIAL_STARTED = "billing.trial_started"
    BILLING_TRIAL_EXPIRED = "billing.trial_expired"
    BILLING_SUBSCRIPTION_CANCELLED = "billing.subscription_cancelled"
    BILLING_SUBSCRIPTION_RECONCILED = "billing.subscription_reconciled"

    # File events
    FILE_UPLOADED = "file.uploaded"
    FILE_DELETED = "file.deleted"
    FILE_TRANSFORM_REQUESTED = "file.transform_requested"

    # Entitlement events
    ENTITLEMENT_DENIED = "entitlement.denied"

    # Maintenance
    SESSION_CLEANUP_COMPLETED = "maintenance.session_cleanup_completed"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class PIIRedactor:
    """
    Redacts secrets and PII from audit metadata before persistence.

    Redacted fields are replaced with "[REDACTED]" to maintain
    structure while removing sensitive data.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "token",
        "raw_token",
        "session_token",
        "access_token",
        "refresh_token",
        "api_key",
        "password",
        "password_hash",
        "secret",
        "signature",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(data, dict):
            return data
        return cls._redact_dict(data)

    @classmethod
    def _redact_dict(cls, d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            lower_key = key.lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    cls._redact_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        # Keep the email domain, it is useful when triaging abuse
        if key == "email" and isinstance(value, str) and "@" in value:
            return f"***@{value.split('@', 1)[1]}"
        return cls.REDACTION_MARKER


class AuditLog(Base):
    """
    Audit log database model.

    CRITICAL: This table is append-only. No UPDATE or DELETE operations are allowed.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=True, index=True)  # NULL for system events
    action = Column(String(100), nullable=False, index=True)
    timestamp = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    ip_address = Column(String(45), nullable=True)  # IPv6 max length
    user_agent = Column(Text, nullable=True)
    resource_type = Column(String(100), nullable=True, index=True)
    resource_id = Column(String(255), nullable=True, index=True)
    event_metadata = Column(JSON, nullable=False, default=dict)
    correlation_id = Column(String(36), nullable=False, index=True)
    source = Column(String(50), nullable=False, default="api")  # api, worker, system, webhook
    outcome = Column(String(20), nullable=False, default="success")  # success, failure, denied
    error_code = Column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_user_timestamp", "user_id", "timestamp"),
        Index("ix_audit_logs_user_action", "user_id", "action"),
    )


@dataclass
class AuditEvent:
    """
    Audit event data structure.

    Metadata is redacted before persistence.
    """
    action: AuditAction
    user_id: Optional[str] = None  # NULL for system events
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "api"
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion with PII redaction."""
        return {
            "user_id": self.user_id,
            "action": _value(self.action),
            "timestamp": self.timestamp,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "event_metadata": PIIRedactor.redact(self.metadata),
            "correlation_id": self.correlation_id or str(uuid.uuid4()),
            "source": self.source,
            "outcome": _value(self.outcome),
            "error_code": self.error_code,
        }


def _value(member) -> str:
    return member.value if isinstance(member, Enum) else member


def extract_client_info(request: Request) -> tuple[Optional[str], Optional[str]]:
    """
    Extract client IP and user agent from request.

    Forwarded headers are honoured only when the direct peer is a
    trusted proxy (TRUSTED_PROXIES).
    """
    peer = request.client.host if request.client else None
    ip_address = resolve_client_ip(peer, request.headers, get_trusted_proxies())
    user_agent = request.headers.get("User-Agent")
    return ip_address, user_agent


def get_correlation_id(request: Request) -> Optional[str]:
    """Get correlation ID from request state or headers."""
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return request.headers.get("X-Correlation-ID")


def write_audit_log_sync(
    db: Session,
    event: AuditEvent,
    commit: bool = True,
) -> Optional[AuditLog]:
    """
    Write an audit event to the database.

    With commit=False the row is written inside a savepoint and becomes
    durable with the caller's own commit.
    On failure, writes to fallback logger and returns None (never crashes request flow).

    Args:
        db: SQLAlchemy Session
        event: The audit event to write
        commit: Commit immediately (default) or leave it to the caller

    Returns:
        The created AuditLog record, or None if fallback was used
    """
    audit_id = str(uuid.uuid4())
    audit_log = AuditLog(id=audit_id, **event.to_dict())
    try:
        if commit:
            db.add(audit_log)
            db.commit()
        else:
            with db.begin_nested():
                db.add(audit_log)

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_id,
                "user_id": event.user_id,
                "action": _value(event.action),
                "correlation_id": event.correlation_id,
                "source": event.source,
                "outcome": _value(event.outcome),
            }
        )
        return audit_log

    except SQLAlchemyError as e:
        if commit:
            db.rollback()
        _write_fallback_log(event, audit_id, str(e))
        return None


def _write_fallback_log(event: AuditEvent, audit_id: str, error_reason: str) -> None:
    """Write audit event to fallback logger when primary DB fails."""
    fallback_entry = {
        "event_id": audit_id,
        "user_id": event.user_id,
        "action": _value(event.action),
        "timestamp": event.timestamp.isoformat(),
        "correlation_id": event.correlation_id,
        "source": event.source,
        "outcome": _value(event.outcome),
        "resource_type": event.resource_type,
        "resource_id": event.resource_id,
        "metadata": PIIRedactor.redact(event.metadata),
        "ip_address": event.ip_address,
        "fallback_reason": error_reason,
    }
    fallback_logger.error(
        "Audit log fallback",
        extra={"audit_entry": json.dumps(fallback_entry, default=str)},
    )


def log_audit_event_sync(
    db: Session,
    request: Request,
    action: AuditAction,
    user_id: Optional[str],
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    error_code: Optional[str] = None,
    commit: bool = True,
) -> str:
    """
    Log an audit event from a request context.

    Extracts IP, user agent, and correlation ID from the request.
    Returns the correlation_id for request tracing.
    """
    ip_address, user_agent = extract_client_info(request)
    correlation_id = get_correlation_id(request) or str(uuid.uuid4())

    event = AuditEvent(
        action=action,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata or {},
        correlation_id=correlation_id,
        source="api",
        outcome=outcome,
        error_code=error_code,
    )

    write_audit_log_sync(db, event, commit=commit)
    return correlation_id


def log_system_audit_event_sync(
    db: Session,
    action: AuditAction,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
    source: str = "system",
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    error_code: Optional[str] = None,
    commit: bool = True,
) -> str:
    """
    Log an audit event without a request context (webhooks, workers, jobs).

    Returns the correlation_id for tracing.
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    event = AuditEvent(
        action=action,
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata or {},
        correlation_id=correlation_id,
        source=source,
        outcome=outcome,
        error_code=error_code,
    )

    write_audit_log_sync(db, event, commit=commit)
    return correlation_id
