"""
File API routes: upload, inspect, transform, delete.

Files are always looked up by (id, owner); another user's file is a 404.
Transform requests go through TransformDispatcher, which owns entitlement
gating and idempotency; this module only maps its results to HTTP.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.api.dependencies.auth import AuthContext, require_permission
from src.auth.api_tokens import PERM_FILES_DELETE, PERM_FILES_READ, PERM_FILES_WRITE, PERM_TRANSFORM
from src.database.session import get_db_session
from src.entitlements.errors import FileTooLargeError
from src.entitlements.errors import QuotaExceededError as FileQuotaExceededError
from src.jobs.dispatcher import (
    BundleResult,
    DispatchOutcome,
    DispatchResult,
    RejectionReason,
    TransformDispatcher,
)
from src.jobs.sink import JobSink, get_job_sink
from src.jobs.variant_ledger import VariantLedger
from src.models.file import File
from src.platform.errors import (
    AppError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    ServiceUnavailableError,
    ValidationError,
)
from src.services.file_service import FileService, LocalFileStorage, StorageClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


# Request/Response Models

class ProcessRequest(BaseModel):
    action: str = Field(..., description="Action name, e.g. thumbnail, md, watermark")
    options: Dict[str, Any] = Field(default_factory=dict)


class ProcessBundleRequest(BaseModel):
    bundle: str = Field(..., description="Bundle name: responsive or social")


class ProcessResponse(BaseModel):
    status: str
    action: str
    variant_type: Optional[str] = None
    job_id: Optional[str] = None
    in_progress: bool = False
    message: Optional[str] = None


class ProcessBundleResponse(BaseModel):
    status: str
    bundle: str
    jobs_enqueued: int
    job_ids: List[str]
    existing: List[str]
    failed: Dict[str, str]
    message: Optional[str] = None


class VariantResponse(BaseModel):
    variant_type: str
    content_type: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None
    created_at: datetime


class FileDetailResponse(BaseModel):
    id: str
    filename: str
    content_type: str
    size_bytes: int
    status: str
    created_at: Optional[datetime] = None
    variants: List[VariantResponse] = []


# Dependencies

def get_storage() -> StorageClient:
    return LocalFileStorage()


def _get_owned_file(db: Session, file_id: str, user_id: str) -> File:
    file = db.execute(
        select(File).where(
            File.id == file_id,
            File.user_id == user_id,
            File.deleted_at.is_(None),
        )
    ).scalars().first()
    if file is None:
        raise NotFoundError("File", file_id)
    return file


def _file_response(db: Session, file: File) -> FileDetailResponse:
    variants = VariantLedger(db).list_for_file(file.id)
    return FileDetailResponse(
        id=file.id,
        filename=file.filename,
        content_type=file.content_type,
        size_bytes=file.size_bytes,
        status=getattr(file.status, "value", file.status),
        created_at=file.created_at,
        variants=[
            VariantResponse(
                variant_type=v.variant_type,
                content_type=v.content_type,
                size_bytes=v.size_bytes,
                width=v.width,
                height=v.height,
                created_at=v.created_at,
            )
            for v in variants
        ],
    )


def rejection_error(
    reason: Optional[RejectionReason],
    message: Optional[str],
    details: Optional[Dict[str, Any]] = None,
) -> AppError:
    """Map a dispatcher rejection to the API error it is reported as."""
    message = message or "Request rejected"
    if reason in (RejectionReason.INVALID_ACTION, RejectionReason.INVALID_FOR_TYPE):
        return ValidationError(message, details=details, code=reason.value.upper())
    if reason == RejectionReason.NOT_FOUND:
        return NotFoundError("File")
    if reason == RejectionReason.FORBIDDEN:
        return PermissionDeniedError(message, details=details, code="UPGRADE_REQUIRED")
    if reason == RejectionReason.QUOTA_EXCEEDED:
        return QuotaExceededError(message, details=details)
    return ServiceUnavailableError(message)


def _dispatch_response(result: DispatchResult, response: Response) -> ProcessResponse:
    if result.outcome == DispatchOutcome.REJECTED:
        details = {"action": result.action}
        if result.required_tier is not None:
            details["required_tier"] = result.required_tier.value
        raise rejection_error(result.reason, result.message, details)

    response.status_code = (
        status.HTTP_202_ACCEPTED if result.is_accepted else status.HTTP_200_OK
    )
    return ProcessResponse(
        status=result.outcome.value,
        action=result.action,
        variant_type=result.variant_type,
        job_id=result.job_id,
        in_progress=result.in_progress,
        message=result.message,
    )


def _bundle_response(result: BundleResult, response: Response) -> ProcessBundleResponse:
    outcome = result.outcome
    if outcome == DispatchOutcome.REJECTED:
        raise rejection_error(
            result.rejection_reason,
            result.message,
            {"bundle": result.bundle, "failed": {k: v.value for k, v in result.failed.items()}},
        )

    response.status_code = (
        status.HTTP_202_ACCEPTED if outcome == DispatchOutcome.ACCEPTED else status.HTTP_200_OK
    )
    return ProcessBundleResponse(
        status=outcome.value,
        bundle=result.bundle,
        jobs_enqueued=result.enqueued,
        job_ids=result.job_ids,
        existing=result.existing,
        failed={k: v.value for k, v in result.failed.items()},
        message=result.message,
    )


# Routes

@router.post("", response_model=FileDetailResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    request: Request,
    filename: str = Query(..., min_length=1, max_length=1024),
    auth: AuthContext = Depends(require_permission(PERM_FILES_WRITE)),
    db: Session = Depends(get_db_session),
    storage: StorageClient = Depends(get_storage),
):
    """
    Upload a file as the raw request body.

    The Content-Type header is recorded as the file's content type.
    """
    data = await request.body()
    if not data:
        raise ValidationError("Request body is empty", code="MISSING_FILE")

    service = FileService(db, storage)
    try:
        file = service.upload(
            auth.user,
            filename=filename,
            content_type=request.headers.get("Content-Type"),
            data=data,
        )
    except FileQuotaExceededError as e:
        raise QuotaExceededError(
            f"File limit of {e.limit} reached. Delete files or upgrade your plan.",
            details=e.to_dict(),
        )
    except FileTooLargeError as e:
        raise ValidationError(
            f"File too large, max size: {e.max_file_size // (1024 * 1024)} MB",
            details=e.to_dict(),
            code="FILE_TOO_LARGE",
        )
    return _file_response(db, file)


@router.get("/{file_id}", response_model=FileDetailResponse)
async def get_file(
    file_id: str,
    auth: AuthContext = Depends(require_permission(PERM_FILES_READ)),
    db: Session = Depends(get_db_session),
):
    return _file_response(db, _get_owned_file(db, file_id, auth.user.id))


@router.post("/{file_id}/process", response_model=ProcessResponse)
async def process_file(
    file_id: str,
    body: ProcessRequest,
    response: Response,
    auth: AuthContext = Depends(require_permission(PERM_TRANSFORM)),
    db: Session = Depends(get_db_session),
    sink: JobSink = Depends(get_job_sink),
):
    """
    Request one transform.

    202 with the job id when queued, 200 when the variant already exists
    or is being produced.
    """
    file = _get_owned_file(db, file_id, auth.user.id)
    result = TransformDispatcher(db, sink).request_transform(
        file, body.action, auth.user, options=body.options
    )
    return _dispatch_response(result, response)


@router.post("/{file_id}/process-bundle", response_model=ProcessBundleResponse)
async def process_bundle(
    file_id: str,
    body: ProcessBundleRequest,
    response: Response,
    auth: AuthContext = Depends(require_permission(PERM_TRANSFORM)),
    db: Session = Depends(get_db_session),
    sink: JobSink = Depends(get_job_sink),
):
    """
    Request every variant of a bundle.

    202 when at least one job was queued, 200 when everything already exists.
    """
    file = _get_owned_file(db, file_id, auth.user.id)
    result = TransformDispatcher(db, sink).request_bundle(file, body.bundle, auth.user)
    return _bundle_response(result, response)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: str,
    auth: AuthContext = Depends(require_permission(PERM_FILES_DELETE)),
    db: Session = Depends(get_db_session),
    storage: StorageClient = Depends(get_storage),
):
    file = _get_owned_file(db, file_id, auth.user.id)
    FileService(db, storage).soft_delete(file)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
