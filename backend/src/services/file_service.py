"""
File upload and deletion.

Upload order matters: entitlement checks (file count, file size) run
before anything is written to object storage, so a rejected upload never
leaves an orphaned object behind.
"""

import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.settings import STORAGE_ROOT
from src.entitlements.audit import log_entitlement_denied
from src.entitlements.errors import FileTooLargeError, QuotaExceededError
from src.entitlements.policy import EntitlementEngine
from src.jobs.variant_ledger import VariantLedger
from src.models.file import File, FileStatus
from src.models.user import User
from src.platform.audit import AuditAction, log_system_audit_event_sync
from src.services.usage_service import count_files

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageClient(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class LocalFileStorage:
    """StorageClient backed by a local directory (development and single-node deploys)."""

    def __init__(self, root: str = STORAGE_ROOT):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes the storage root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


def sanitize_filename(filename: str) -> str:
    """Strip directories and unsafe characters; never returns an empty name."""
    name = os.path.basename(filename.replace("\\", "/"))
    name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return name[:255] or "file"


class FileService:
    def __init__(
        self,
        db_session: Session,
        storage: StorageClient,
        engine: Optional[EntitlementEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.storage = storage
        self.engine = engine or EntitlementEngine()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def upload(
        self,
        user: User,
        filename: str,
        content_type: Optional[str],
        data: bytes,
    ) -> File:
        """
        Store a new file for the user.

        Raises:
            QuotaExceededError: The user already has files_limit files
            FileTooLargeError: The upload exceeds the user's max file size
        """
        now = self._clock()
        quota = self.engine.quota_for(user, now)
        tier = self.engine.effective_tier_for(user, now).value

        files_used = count_files(self.db, user.id)
        if not self.engine.can_upload(files_used, quota.files_limit):
            error = QuotaExceededError(user.id, "files", files_used, quota.files_limit)
            log_entitlement_denied(
                self.db,
                user_id=user.id,
                feature="files",
                tier=tier,
                reason=f"File limit of {quota.files_limit} reached",
                error_code=error.error_code,
                resource_type="file",
            )
            raise error

        size = len(data)
        if size > quota.max_file_size:
            error = FileTooLargeError(user.id, size, quota.max_file_size)
            log_entitlement_denied(
                self.db,
                user_id=user.id,
                feature="max_file_size",
                tier=tier,
                reason=f"File of {size} bytes exceeds the {quota.max_file_size} byte limit",
                error_code=error.error_code,
                resource_type="file",
            )
            raise error

        file_id = str(uuid.uuid4())
        safe_name = sanitize_filename(filename)
        storage_key = f"uploads/{user.id}/{file_id}/{safe_name}"
        content_type = content_type or "application/octet-stream"

        self.storage.put(storage_key, data, content_type)

        file = File(
            id=file_id,
            user_id=user.id,
            filename=safe_name,
            content_type=content_type,
            size_bytes=size,
            storage_key=storage_key,
            status=FileStatus.PENDING,
        )
        self.db.add(file)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.FILE_UPLOADED,
            user_id=user.id,
            resource_type="file",
            resource_id=file_id,
            metadata={"content_type": content_type, "size_bytes": size},
            source="api",
            commit=False,
        )
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "File row commit failed; removing stored object",
                extra={"user_id": user.id, "file_id": file_id, "storage_key": storage_key},
            )
            self._discard_object(storage_key)
            raise
        logger.info(
            "File uploaded",
            extra={"user_id": user.id, "file_id": file_id, "size_bytes": size},
        )
        return file

    def _discard_object(self, storage_key: str) -> None:
        try:
            self.storage.delete(storage_key)
        except OSError:
            logger.error(
                "Could not remove orphaned upload",
                extra={"storage_key": storage_key},
                exc_info=True,
            )

    def soft_delete(self, file: File) -> File:
        """Mark a file deleted and drop its variants. Stored objects are purged separately."""
        if file.is_deleted:
            return file

        file.deleted_at = self._clock()
        removed = VariantLedger(self.db).delete_for_file(file.id)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.FILE_DELETED,
            user_id=file.user_id,
            resource_type="file",
            resource_id=file.id,
            metadata={"variants_removed": removed},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info(
            "File deleted",
            extra={"user_id": file.user_id, "file_id": file.id, "variants_removed": removed},
        )
        return file
