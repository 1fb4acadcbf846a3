"""
Derived artifacts of a file (thumbnails, resized copies, conversions...).

UNIQUE(file_id, variant_type) is the idempotency guarantee for dispatch:
at most one variant of each type can ever exist for a file. Variants are
created by job completion only and are never updated.
"""

import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, UniqueConstraint

from src.db_base import Base
from src.models.base import UTCDateTime, utcnow


class FileVariant(Base):
    __tablename__ = "file_variants"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    file_id = Column(
        String(255),
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    variant_type = Column(String(100), nullable=False)
    content_type = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    storage_key = Column(String(1024), nullable=False)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("file_id", "variant_type", name="uq_file_variants_file_type"),
    )
