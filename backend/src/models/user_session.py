"""
Browser sessions.

Only the SHA-256 hash of the session token is stored. The raw token is
handed to the client once, as a cookie, and never persisted or logged.
"""

import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text

from src.db_base import Base
from src.models.base import UTCDateTime, utcnow


class UserSession(Base):
    __tablename__ = "sessions"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(255), nullable=False, unique=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_sessions_expires_at", "expires_at"),
    )
