"""
Job completion write path.

Workers report progress out of band; these callbacks are the only code
that moves a ProcessingJob past pending and the only code that creates
FileVariant rows.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from src.jobs.models import JobStatus, ProcessingJob
from src.jobs.variant_ledger import VariantLedger
from src.models.file import File, FileStatus
from src.models.file_variant import FileVariant

logger = logging.getLogger(__name__)


class UnknownJobError(LookupError):
    """Raised when a worker reports on a job id we never recorded."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown processing job {job_id}")


@dataclass
class VariantArtifact:
    """What a worker produced."""
    storage_key: str
    content_type: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None


class JobCompletionHandler:
    def __init__(self, db_session: Session):
        self.db = db_session
        self.ledger = VariantLedger(db_session)

    def _get_job(self, job_id: str) -> ProcessingJob:
        job = self.db.get(ProcessingJob, job_id)
        if job is None:
            raise UnknownJobError(job_id)
        return job

    def mark_running(self, job_id: str) -> ProcessingJob:
        job = self._get_job(job_id)
        if job.status == JobStatus.COMPLETED:
            logger.info("Ignoring start report for completed job", extra={"job_id": job_id})
            return job
        job.mark_running()
        self._set_file_status(job.file_id, FileStatus.PROCESSING)
        self.db.commit()
        return job

    def complete(self, job_id: str, artifact: VariantArtifact) -> FileVariant:
        """
        Record the produced variant and close the job.

        A duplicate completion (redelivered worker message) returns the
        existing variant without creating another.
        """
        job = self._get_job(job_id)
        variant, created = self.ledger.record(
            file_id=job.file_id,
            variant_type=job.variant_type,
            storage_key=artifact.storage_key,
            content_type=artifact.content_type,
            size_bytes=artifact.size_bytes,
            width=artifact.width,
            height=artifact.height,
        )
        job.mark_completed()
        self.db.flush()

        if not self.ledger.has_in_flight_jobs(job.file_id):
            self._set_file_status(job.file_id, FileStatus.COMPLETED)

        self.db.commit()
        logger.info(
            "Processing job completed",
            extra={
                "job_id": job_id,
                "file_id": job.file_id,
                "variant_type": job.variant_type,
                "variant_created": created,
            },
        )
        return variant

    def fail(self, job_id: str, error_message: str) -> ProcessingJob:
        job = self._get_job(job_id)
        if job.attempts == 0:
            job.attempts = 1
        job.mark_failed(error_message[:2000])
        self._set_file_status(job.file_id, FileStatus.FAILED)
        self.db.commit()
        logger.warning(
            "Processing job failed",
            extra={"job_id": job_id, "file_id": job.file_id, "job_type": job.job_type},
        )
        return job

    def _set_file_status(self, file_id: str, status: FileStatus) -> None:
        file = self.db.get(File, file_id)
        if file is None:
            return
        if not file.set_status(status):
            logger.debug(
                "File status transition skipped",
                extra={"file_id": file_id, "from": str(file.status), "to": status.value},
            )
