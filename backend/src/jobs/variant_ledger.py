"""
Variant ledger: the idempotency gate for transform dispatch.

exists() and in_flight_job() are the cheap pre-checks the dispatcher runs.
They are not what keeps duplicates out under concurrency; the unique
constraint on file_variants(file_id, variant_type) and the partial unique
index on in-flight processing_jobs do that. record() relies on the former
and turns a duplicate insert into a lookup of the row that won.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.jobs.models import IN_FLIGHT_STATUSES, ProcessingJob
from src.models.file_variant import FileVariant

logger = logging.getLogger(__name__)


class VariantLedger:
    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, file_id: str, variant_type: str) -> Optional[FileVariant]:
        stmt = select(FileVariant).where(
            FileVariant.file_id == file_id,
            FileVariant.variant_type == variant_type,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def exists(self, file_id: str, variant_type: str) -> bool:
        return self.get(file_id, variant_type) is not None

    def list_for_file(self, file_id: str) -> List[FileVariant]:
        stmt = (
            select(FileVariant)
            .where(FileVariant.file_id == file_id)
            .order_by(FileVariant.created_at)
        )
        return list(self.db.execute(stmt).scalars())

    def in_flight_job(self, file_id: str, variant_type: str) -> Optional[ProcessingJob]:
        """Return the pending or running job for this variant, if any."""
        stmt = select(ProcessingJob).where(
            ProcessingJob.file_id == file_id,
            ProcessingJob.variant_type == variant_type,
            ProcessingJob.status.in_(IN_FLIGHT_STATUSES),
        )
        return self.db.execute(stmt).scalars().first()

    def has_in_flight_jobs(self, file_id: str) -> bool:
        stmt = select(ProcessingJob.id).where(
            ProcessingJob.file_id == file_id,
            ProcessingJob.status.in_(IN_FLIGHT_STATUSES),
        )
        return self.db.execute(stmt).first() is not None

    def record(
        self,
        file_id: str,
        variant_type: str,
        storage_key: str,
        content_type: str,
        size_bytes: int,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> Tuple[FileVariant, bool]:
        """
        Insert a variant unless one already exists for (file_id, variant_type).

        Runs in a savepoint so a duplicate does not poison the caller's
        transaction. Does not commit.

        Returns:
            (variant, created) where created is False if another writer got there first
        """
        existing = self.get(file_id, variant_type)
        if existing is not None:
            return existing, False

        variant = FileVariant(
            file_id=file_id,
            variant_type=variant_type,
            storage_key=storage_key,
            content_type=content_type,
            size_bytes=size_bytes,
            width=width,
            height=height,
        )
        try:
            with self.db.begin_nested():
                self.db.add(variant)
        except IntegrityError:
            logger.info(
                "Variant already recorded by a concurrent writer",
                extra={"file_id": file_id, "variant_type": variant_type},
            )
            existing = self.get(file_id, variant_type)
            if existing is None:
                raise
            return existing, False

        return variant, True

    def delete_for_file(self, file_id: str) -> int:
        """Delete every variant of a file. Does not commit."""
        result = self.db.execute(delete(FileVariant).where(FileVariant.file_id == file_id))
        return result.rowcount or 0
