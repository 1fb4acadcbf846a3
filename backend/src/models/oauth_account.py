"""
OAuth sign-in links (Google, GitHub...).

SECURITY:
- Provider access/refresh tokens are Fernet-encrypted at rest
- Tokens are NEVER exposed in API responses or logs
- A provider account can be linked to at most one user
"""

import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text, UniqueConstraint

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime


class OAuthAccount(Base, TimestampMixin):
    __tablename__ = "oauth_accounts"

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
    )
    provider = Column(String(50), nullable=False, comment="OAuth provider (google, github)")
    provider_user_id = Column(String(255), nullable=False)

    # Encrypted tokens - NEVER log these values
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "provider_user_id", name="uq_oauth_accounts_provider_user"),
        Index("ix_oauth_accounts_user_provider", "user_id", "provider"),
    )
