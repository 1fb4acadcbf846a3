"""
Processing job bookkeeping.

A ProcessingJob row records a transform handed to the broker. It does not
perform work itself; the worker reports back through
src.jobs.completion.JobCompletionHandler.

At most one job per (file_id, variant_type) may be in flight at a time.
The partial unique index below enforces that at the database level.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Integer, Enum, Text, JSON, ForeignKey, Index, text
)

from src.db_base import Base
from src.models.base import TimestampMixin, UTCDateTime


class JobStatus(str, PyEnum):
    """Job status values for processing jobs."""
    PENDING = "pending"  # Submitted to the broker, not yet picked up
    RUNNING = "running"  # Worker reported start
    COMPLETED = "completed"  # Variant recorded
    FAILED = "failed"  # Worker reported an error


IN_FLIGHT_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)

PROCESSING_JOB_STATUS_ENUM = Enum(
    JobStatus,
    name="processing_job_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)

_IN_FLIGHT_PREDICATE = "status IN ('pending', 'running')"


class ProcessingJob(Base, TimestampMixin):
    """
    Transform job tracking model.

    Created by TransformDispatcher at submission time, then mutated by the
    completion callbacks as the worker executes it.
    """

    __tablename__ = "processing_jobs"

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

    job_type = Column(
        String(100),
        nullable=False,
        index=True,
        comment="Worker task type (thumbnail, resize, webp, video_hls, ...)"
    )

    variant_type = Column(
        String(100),
        nullable=False,
        comment="Variant this job will produce"
    )

    queue_id = Column(
        String(255),
        nullable=True,
        comment="Identifier returned by the broker on submission"
    )

    status = Column(
        PROCESSING_JOB_STATUS_ENUM,
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    priority = Column(Integer, nullable=False, default=0)

    attempts = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of execution attempts reported by workers"
    )

    error_message = Column(Text, nullable=True, comment="Last error reported by the worker")

    payload = Column(JSON, nullable=True, comment="Payload handed to the broker")

    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_processing_jobs_in_flight_variant",
            "file_id",
            "variant_type",
            unique=True,
            postgresql_where=text(_IN_FLIGHT_PREDICATE),
            sqlite_where=text(_IN_FLIGHT_PREDICATE),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingJob(id={self.id}, file_id={self.file_id}, "
            f"job_type={self.job_type}, status={self.status}, attempts={self.attempts})>"
        )

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def mark_running(self) -> None:
        self.status = JobStatus.RUNNING
        self.attempts += 1
        self.started_at = datetime.now(timezone.utc)

    def mark_completed(self) -> None:
        """Mark job as completed successfully."""
        self.status = JobStatus.COMPLETED
        self.error_message = None
        self.completed_at = datetime.now(timezone.utc)

    def mark_failed(self, error_message: str) -> None:
        """Mark job as failed."""
        self.status = JobStatus.FAILED
        self.error_message = error_message
        self.completed_at = datetime.now(timezone.utc)
