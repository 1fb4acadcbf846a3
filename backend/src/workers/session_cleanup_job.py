"""
Session cleanup job: cron job that deletes expired browser sessions.

Session validation already rejects expired rows, so this job only keeps
the sessions table small. It never touches live sessions.

CONSTRAINTS:
- Operates across all users
- Respects SESSION_CLEANUP_DRY_RUN for safe rollout
- Each run is audit-logged

Run as an hourly cron job:
    python -m src.workers.session_cleanup_job
"""

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from src.auth.sessions import SessionManager
from src.config.settings import SESSION_CLEANUP_DRY_RUN
from src.database.session import get_session_factory
from src.platform.audit import AuditAction, log_system_audit_event_sync

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    """Statistics from a session cleanup run."""

    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    sessions_expired: int = 0
    sessions_deleted: int = 0
    dry_run: bool = SESSION_CLEANUP_DRY_RUN
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "sessions_expired": self.sessions_expired,
            "sessions_deleted": self.sessions_deleted,
            "dry_run": self.dry_run,
            "duration_seconds": duration,
        }


def run_cleanup(
    db_session: Session,
    dry_run: bool = SESSION_CLEANUP_DRY_RUN,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """
    Delete sessions whose expires_at has passed.

    Args:
        db_session: Database session
        dry_run: If True, only count without deleting
        now: Cut-off instant (defaults to the current time)
    """
    stats = CleanupStats(dry_run=dry_run)
    now = now or stats.started_at
    manager = SessionManager(db_session)

    stats.sessions_expired = manager.count_expired(now)
    if stats.sessions_expired and not dry_run:
        stats.sessions_deleted = manager.cleanup_expired(now)
    elif dry_run:
        logger.info("[DRY RUN] Would delete %d sessions", stats.sessions_expired)

    stats.completed_at = datetime.now(timezone.utc)
    log_system_audit_event_sync(
        db=db_session,
        action=AuditAction.SESSION_CLEANUP_COMPLETED,
        resource_type="session_cleanup",
        metadata=stats.to_dict(),
        source="worker",
    )
    logger.info("Session cleanup completed", extra=stats.to_dict())
    return stats


def main():
    """Entry point for the session cleanup job."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Session Cleanup Job starting", extra={"dry_run": SESSION_CLEANUP_DRY_RUN})

    session = get_session_factory()()
    try:
        run_cleanup(session, dry_run=SESSION_CLEANUP_DRY_RUN)
    except Exception as exc:
        logger.error(
            "Session Cleanup Job failed",
            extra={"error": str(exc)},
            exc_info=True,
        )
        sys.exit(1)
    finally:
        session.close()

    logger.info("Session Cleanup Job finished")


if __name__ == "__main__":
    main()
