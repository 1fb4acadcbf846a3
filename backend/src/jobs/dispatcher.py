"""
Transform dispatcher with entitlement gating.

Decides, for one file and one requested action, whether to reject it,
short-circuit because the variant already exists (or is being produced),
or submit a job to the broker.

Order of checks:
1. action is in the action table           -> invalid_action
2. file is not soft-deleted               -> not_found
3. feature is in the user's effective tier -> forbidden (upgrade prompt)
4. action applies to the content type     -> invalid_for_type
5. no variant and no in-flight job        -> already exists (success-shaped)
6. monthly transformation quota           -> quota_exceeded (try later)
7. job row + broker submission            -> internal on broker failure

A Job row only survives if the broker accepted the job. Denied checks are
audited; see src.entitlements.audit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.entitlements.audit import log_entitlement_denied
from src.entitlements.policy import EntitlementEngine
from src.jobs.actions import PayloadContext, get_action, get_bundle
from src.jobs.models import JobStatus, ProcessingJob
from src.jobs.sink import JobSink, JobSubmissionError
from src.jobs.variant_ledger import VariantLedger
from src.models.file import File, FileStatus
from src.models.user import User, SubscriptionTier
from src.platform.audit import AuditAction, log_system_audit_event_sync
from src.services.usage_service import reset_transformations_if_due

logger = logging.getLogger(__name__)

PRIORITY_HIGH = 10
PRIORITY_NORMAL = 0

UPGRADE_MESSAGE = "This feature requires a Pro subscription. Upgrade to unlock it."
QUOTA_MESSAGE = (
    "You have used all transformations for this billing period. "
    "Try again after the monthly reset or upgrade your plan."
)
ALREADY_EXISTS_MESSAGE = "This variant already exists."
IN_PROGRESS_MESSAGE = "This variant is already being processed."
RETRY_LATER_MESSAGE = "Processing is temporarily unavailable. Please try again later."


class DispatchOutcome(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_EXISTS = "already_exists"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    INVALID_ACTION = "invalid_action"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_FOR_TYPE = "invalid_for_type"
    QUOTA_EXCEEDED = "quota_exceeded"
    INTERNAL = "internal"


@dataclass
class DispatchResult:
    """Result of a single transform request."""
    outcome: DispatchOutcome
    action: str
    variant_type: Optional[str] = None
    job_id: Optional[str] = None
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    required_tier: Optional[SubscriptionTier] = None
    in_progress: bool = False

    @property
    def is_accepted(self) -> bool:
        return self.outcome == DispatchOutcome.ACCEPTED

    @property
    def already_exists(self) -> bool:
        return self.outcome == DispatchOutcome.ALREADY_EXISTS


@dataclass
class BundleResult:
    """Result of applying a bundle of actions to one file."""
    bundle: str
    job_ids: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    failed: Dict[str, RejectionReason] = field(default_factory=dict)
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @property
    def enqueued(self) -> int:
        return len(self.job_ids)

    @property
    def outcome(self) -> DispatchOutcome:
        if self.reason is not None:
            return DispatchOutcome.REJECTED
        if self.job_ids:
            return DispatchOutcome.ACCEPTED
        if not self.failed:
            return DispatchOutcome.ALREADY_EXISTS
        return DispatchOutcome.REJECTED

    @property
    def rejection_reason(self) -> Optional[RejectionReason]:
        if self.reason is not None:
            return self.reason
        if self.outcome == DispatchOutcome.REJECTED:
            return next(iter(self.failed.values()))
        return None


def _rejected(action: str, reason: RejectionReason, message: str, **kwargs) -> DispatchResult:
    return DispatchResult(
        outcome=DispatchOutcome.REJECTED,
        action=action,
        reason=reason,
        message=message,
        **kwargs,
    )


class TransformDispatcher:
    """
    Dispatches transform jobs for files.

    Handles:
    - Entitlement and quota gating through EntitlementEngine
    - Idempotency through VariantLedger and the database constraints
    - Broker submission through a JobSink
    - Best-effort file status updates
    """

    def __init__(
        self,
        db_session: Session,
        sink: JobSink,
        engine: Optional[EntitlementEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            db_session: Database session (committed by the dispatcher)
            sink: Job submission collaborator
            engine: Entitlement engine (default grace period if omitted)
            clock: Returns the current UTC time; injectable for tests
        """
        self.db = db_session
        self.sink = sink
        self.engine = engine or EntitlementEngine()
        self.ledger = VariantLedger(db_session)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def request_transform(
        self,
        file: File,
        action: str,
        user: User,
        options: Optional[Mapping[str, Any]] = None,
        update_status: bool = True,
    ) -> DispatchResult:
        """
        Request one transform of a file.

        Args:
            file: Target file (owned by user)
            action: Action name from the action table
            user: Requesting user
            options: Action options (watermark text, pdf page, webp quality...)
            update_status: Move the file to processing on success

        Returns:
            DispatchResult (accepted, already exists or rejected)
        """
        spec = get_action(action)
        if spec is None:
            return _rejected(action, RejectionReason.INVALID_ACTION, f"Unknown action '{action}'")

        if file.is_deleted:
            return _rejected(action, RejectionReason.NOT_FOUND, "File not found")

        now = self._clock()
        tier = self.engine.effective_tier_for(user, now)

        check = self.engine.check_feature(tier, spec.feature)
        if not check.is_entitled:
            self._record_denial(user, file, spec.feature, tier, check.reason, "FEATURE_DENIED")
            return _rejected(
                action,
                RejectionReason.FORBIDDEN,
                UPGRADE_MESSAGE,
                variant_type=spec.variant_type,
                required_tier=check.required_tier,
            )

        if not spec.accepts(file.content_type):
            return _rejected(
                action,
                RejectionReason.INVALID_FOR_TYPE,
                f"Action '{action}' requires a {spec.content_type_hint} file",
                variant_type=spec.variant_type,
            )

        if self.ledger.exists(file.id, spec.variant_type):
            return DispatchResult(
                outcome=DispatchOutcome.ALREADY_EXISTS,
                action=action,
                variant_type=spec.variant_type,
                message=ALREADY_EXISTS_MESSAGE,
            )

        in_flight = self.ledger.in_flight_job(file.id, spec.variant_type)
        if in_flight is not None:
            return DispatchResult(
                outcome=DispatchOutcome.ALREADY_EXISTS,
                action=action,
                variant_type=spec.variant_type,
                job_id=in_flight.id,
                message=IN_PROGRESS_MESSAGE,
                in_progress=True,
            )

        # Counter is read and incremented under the user row lock.
        self.db.refresh(user, with_for_update=True)
        reset_transformations_if_due(user, now)
        quota = self.engine.quota_for(user, now)
        if not self.engine.can_transform(user.transformations_count, quota.transformations_limit):
            self._record_denial(
                user, file, "transformations", tier,
                f"{user.transformations_count}/{quota.transformations_limit} transformations used",
                "QUOTA_EXCEEDED",
            )
            return _rejected(
                action, RejectionReason.QUOTA_EXCEEDED, QUOTA_MESSAGE,
                variant_type=spec.variant_type,
            )

        priority = PRIORITY_HIGH if self.engine.has_priority_queue(tier) else PRIORITY_NORMAL
        job = ProcessingJob(
            file_id=file.id,
            job_type=spec.job_type,
            variant_type=spec.variant_type,
            status=JobStatus.PENDING,
            priority=priority,
        )
        self.db.add(job)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent request for the same variant
            self.db.rollback()
            logger.info(
                "Concurrent dispatch already in flight",
                extra={"file_id": file.id, "variant_type": spec.variant_type},
            )
            return DispatchResult(
                outcome=DispatchOutcome.ALREADY_EXISTS,
                action=action,
                variant_type=spec.variant_type,
                message=IN_PROGRESS_MESSAGE,
                in_progress=True,
            )

        payload = spec.build_payload(PayloadContext(
            file_id=file.id,
            job_id=job.id,
            storage_key=file.storage_key,
            content_type=file.content_type,
            options=options or {},
            custom_watermark=self.engine.has_custom_watermark(tier),
        ))
        payload["priority"] = priority
        job.payload = payload

        job_id = job.id
        file_id = file.id
        try:
            queue_id = self.sink.submit(spec.job_type, payload)
        except JobSubmissionError:
            self.db.rollback()
            logger.error(
                "Job submission failed",
                extra={
                    "file_id": file_id,
                    "user_id": user.id,
                    "action": action,
                    "job_type": spec.job_type,
                },
                exc_info=True,
            )
            return _rejected(
                action, RejectionReason.INTERNAL, RETRY_LATER_MESSAGE,
                variant_type=spec.variant_type,
            )

        job.queue_id = queue_id
        user.transformations_count = (user.transformations_count or 0) + 1
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.FILE_TRANSFORM_REQUESTED,
            user_id=user.id,
            resource_type="file",
            resource_id=file_id,
            metadata={"action": action, "job_id": job_id, "variant_type": spec.variant_type},
            source="api",
            commit=False,
        )
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Job submitted but bookkeeping commit failed",
                extra={"file_id": file_id, "job_id": job_id, "queue_id": queue_id},
            )
            return _rejected(
                action, RejectionReason.INTERNAL, RETRY_LATER_MESSAGE,
                variant_type=spec.variant_type,
            )

        logger.info(
            "Transform job dispatched",
            extra={
                "file_id": file_id,
                "user_id": user.id,
                "job_id": job_id,
                "job_type": spec.job_type,
                "variant_type": spec.variant_type,
                "priority": priority,
            },
        )

        if update_status:
            self._mark_processing(file)

        return DispatchResult(
            outcome=DispatchOutcome.ACCEPTED,
            action=action,
            variant_type=spec.variant_type,
            job_id=job_id,
        )

    def request_bundle(self, file: File, bundle_name: str, user: User) -> BundleResult:
        """
        Apply every action of a bundle to a file.

        Members that already exist are skipped. A failing member is logged
        and the remaining members are still attempted.
        """
        bundle = get_bundle(bundle_name)
        if bundle is None:
            return BundleResult(
                bundle=bundle_name,
                reason=RejectionReason.INVALID_ACTION,
                message=f"Unknown bundle '{bundle_name}'",
            )
        if file.is_deleted:
            return BundleResult(
                bundle=bundle_name, reason=RejectionReason.NOT_FOUND, message="File not found"
            )

        tier = self.engine.effective_tier_for(user, self._clock())
        check = self.engine.check_feature(tier, bundle.feature)
        if not check.is_entitled:
            self._record_denial(user, file, bundle.feature, tier, check.reason, "FEATURE_DENIED")
            return BundleResult(
                bundle=bundle_name, reason=RejectionReason.FORBIDDEN, message=UPGRADE_MESSAGE
            )

        result = BundleResult(bundle=bundle_name)
        for action in bundle.actions:
            outcome = self.request_transform(file, action, user, update_status=False)
            if outcome.is_accepted:
                result.job_ids.append(outcome.job_id)
            elif outcome.already_exists:
                result.existing.append(action)
            else:
                result.failed[action] = outcome.reason
                logger.warning(
                    "Bundle member not dispatched",
                    extra={
                        "file_id": file.id,
                        "bundle": bundle_name,
                        "action": action,
                        "reason": outcome.reason.value if outcome.reason else None,
                    },
                )

        if result.job_ids:
            self._mark_processing(file)
        elif RejectionReason.INTERNAL in result.failed.values():
            result.message = RETRY_LATER_MESSAGE
        elif result.failed:
            result.message = "No bundle member could be processed"
        else:
            result.message = "All variants in this bundle already exist."

        logger.info(
            "Bundle dispatched",
            extra={
                "file_id": file.id,
                "bundle": bundle_name,
                "enqueued": result.enqueued,
                "existing": len(result.existing),
                "failed": len(result.failed),
            },
        )
        return result

    def _mark_processing(self, file: File) -> None:
        """Move the file to processing. Failures only affect UI freshness."""
        try:
            if file.set_status(FileStatus.PROCESSING):
                self.db.commit()
            else:
                logger.debug(
                    "File status left unchanged",
                    extra={"file_id": file.id, "status": str(file.status)},
                )
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(
                "Failed to update file status",
                extra={"file_id": file.id},
                exc_info=True,
            )

    def _record_denial(
        self,
        user: User,
        file: File,
        feature: str,
        tier: SubscriptionTier,
        reason: Optional[str],
        error_code: str,
    ) -> None:
        log_entitlement_denied(
            self.db,
            user_id=user.id,
            feature=feature,
            tier=tier.value,
            reason=reason or "",
            error_code=error_code,
            resource_type="file",
            resource_id=file.id,
        )
