"""Audit writer: redaction, savepoint writes and the fallback logger."""

from unittest.mock import MagicMock, patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditLog,
    AuditOutcome,
    PIIRedactor,
    log_system_audit_event_sync,
    write_audit_log_sync,
)


class TestPIIRedactor:
    def test_redacts_secrets(self):
        redacted = PIIRedactor.redact({
            "access_token": "gho_secret",
            "nested": {"password": "hunter2", "provider": "github"},
            "items": [{"api_key": "k"}, "plain"],
        })
        assert redacted["access_token"] == "[REDACTED]"
        assert redacted["nested"] == {"password": "[REDACTED]", "provider": "github"}
        assert redacted["items"] == [{"api_key": "[REDACTED]"}, "plain"]

    def test_email_keeps_domain(self):
        assert PIIRedactor.redact({"email": "ada@example.com"})["email"] == "***@example.com"

    def test_non_dict_passthrough(self):
        assert PIIRedactor.redact("text") == "text"


def test_system_event_is_persisted_redacted(db_session):
    correlation_id = log_system_audit_event_sync(
        db_session,
        action=AuditAction.AUTH_API_TOKEN_CREATED,
        user_id="user-1",
        resource_type="api_token",
        metadata={"name": "ci", "token": "fp_raw"},
        source="api",
    )

    row = db_session.execute(select(AuditLog)).scalars().one()
    assert row.correlation_id == correlation_id
    assert row.action == "auth.api_token_created"
    assert row.event_metadata == {"name": "ci", "token": "[REDACTED]"}
    assert row.outcome == "success"


def test_uncommitted_write_is_discarded_with_caller_rollback(db_session):
    log_system_audit_event_sync(
        db_session, action=AuditAction.FILE_UPLOADED, user_id="user-1", commit=False,
    )
    db_session.rollback()
    assert db_session.execute(select(AuditLog)).scalars().all() == []


def test_denied_outcome(db_session):
    log_system_audit_event_sync(
        db_session,
        action=AuditAction.ENTITLEMENT_DENIED,
        user_id="user-1",
        outcome=AuditOutcome.DENIED,
        error_code="FEATURE_DENIED",
    )
    row = db_session.execute(select(AuditLog)).scalars().one()
    assert row.outcome == "denied"
    assert row.error_code == "FEATURE_DENIED"


def test_database_failure_uses_fallback_logger():
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
    event = AuditEvent(action=AuditAction.FILE_DELETED, user_id="user-1")

    with patch("src.platform.audit.fallback_logger") as fallback:
        result = write_audit_log_sync(db, event)

    assert result is None
    db.rollback.assert_called_once()
    fallback.error.assert_called_once()
