"""
Uploaded files.

Status only moves forward (pending -> processing -> completed/failed),
with failed -> processing allowed for retries. Files are soft-deleted;
a soft-deleted file accepts no new jobs.
"""

import enum
import uuid

from sqlalchemy import BigInteger, Column, Enum, Index, String

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime


class FileStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


FILE_STATUS_ENUM = Enum(
    FileStatus,
    name="file_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)

_ALLOWED_TRANSITIONS = {
    FileStatus.PENDING: {FileStatus.PROCESSING, FileStatus.COMPLETED, FileStatus.FAILED},
    FileStatus.PROCESSING: {FileStatus.COMPLETED, FileStatus.FAILED},
    FileStatus.COMPLETED: set(),
    FileStatus.FAILED: {FileStatus.PROCESSING},
}


def can_transition(current: FileStatus, target: FileStatus) -> bool:
    """Return True when moving a file from current to target keeps status monotonic."""
    if current == target:
        return True
    return target in _ALLOWED_TRANSITIONS.get(FileStatus(current), set())


class File(Base, TimestampMixin):
    """An uploaded object owned by one user."""

    __tablename__ = "files"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    user_id = Column(String(255), nullable=False, index=True)
    filename = Column(String(1024), nullable=False)
    content_type = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    storage_key = Column(String(1024), nullable=False)
    status = Column(
        FILE_STATUS_ENUM,
        nullable=False,
        default=FileStatus.PENDING,
        index=True,
    )
    deleted_at = Column(UTCDateTime, nullable=True, comment="Soft-delete marker")

    __table_args__ = (
        Index("ix_files_user_deleted", "user_id", "deleted_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def set_status(self, target: FileStatus) -> bool:
        """Apply target if the transition is allowed. Returns whether it was applied."""
        if not can_transition(self.status, target):
            return False
        self.status = target
        return True
