"""
Personal API tokens.

Raw tokens look like ``fp_<43 chars>``. Only the hash and the first ten
characters (for display) are stored.
"""

import uuid

from sqlalchemy import JSON, Column, ForeignKey, String

from src.db_base import Base
from src.models.base import UTCDateTime, utcnow


class APIToken(Base):
    __tablename__ = "api_tokens"

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
    name = Column(String(255), nullable=False)
    token_hash = Column(String(255), nullable=False, unique=True)
    token_prefix = Column(String(16), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    last_used_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True, comment="NULL means the token never expires")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
