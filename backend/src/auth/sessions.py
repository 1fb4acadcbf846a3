"""
Browser session management.

Raw session tokens are returned once (to be set as a cookie) and only
their hash is stored. Sessions have a fixed absolute lifetime; expiry is
checked on every validation, and expired rows are purged by the session
cleanup worker.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from src.auth.tokens import generate_token, hash_token
from src.config.settings import session_ttl
from src.models.user import User
from src.models.user_session import UserSession
from src.platform.audit import AuditAction, log_system_audit_event_sync

logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    """A freshly created session. ``token`` is never stored."""
    token: str
    session: UserSession


class SessionManager:
    def __init__(
        self,
        db_session: Session,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_session(
        self,
        user_id: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> IssuedSession:
        token = generate_token()
        record = UserSession(
            user_id=user_id,
            token_hash=hash_token(token),
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=self._clock() + session_ttl(),
        )
        self.db.add(record)
        self.db.flush()
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_SESSION_CREATED,
            user_id=user_id,
            resource_type="session",
            resource_id=record.id,
            metadata={"ip_address": ip_address},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("Session created", extra={"user_id": user_id, "session_id": record.id})
        return IssuedSession(token=token, session=record)

    def validate(self, token: Optional[str]) -> Optional[User]:
        """
        Resolve a raw session token to its user.

        Unknown and expired tokens both return None.
        """
        if not token:
            return None
        stmt = (
            select(User)
            .join(UserSession, UserSession.user_id == User.id)
            .where(
                UserSession.token_hash == hash_token(token),
                UserSession.expires_at > self._clock(),
            )
        )
        return self.db.execute(stmt).scalars().first()

    def revoke(self, token: Optional[str]) -> bool:
        """Delete the session for a raw token. Absent sessions are a no-op."""
        if not token:
            return False
        record = self.db.execute(
            select(UserSession).where(UserSession.token_hash == hash_token(token))
        ).scalars().first()
        if record is None:
            return False

        self.db.delete(record)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_SESSION_REVOKED,
            user_id=record.user_id,
            resource_type="session",
            resource_id=record.id,
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("Session revoked", extra={"user_id": record.user_id, "session_id": record.id})
        return True

    def revoke_all_for_user(self, user_id: str) -> int:
        result = self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_SESSIONS_REVOKED_ALL,
            user_id=user_id,
            resource_type="session",
            metadata={"revoked": result.rowcount},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("All sessions revoked", extra={"user_id": user_id, "revoked": result.rowcount})
        return result.rowcount

    def count_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        stmt = (
            select(func.count())
            .select_from(UserSession)
            .where(UserSession.expires_at <= now)
        )
        return self.db.execute(stmt).scalar() or 0

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired session. Returns the number removed."""
        now = now or self._clock()
        result = self.db.execute(delete(UserSession).where(UserSession.expires_at <= now))
        self.db.commit()
        return result.rowcount
