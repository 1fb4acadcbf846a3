"""
Usage counters.

files_used is derived from the files table (non-deleted rows).
transformations_count lives on the user row and resets monthly; the reset
is applied lazily the first time the counter is read after
transformations_reset_at.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.models.file import File
from src.models.user import User

logger = logging.getLogger(__name__)


def next_reset_at(now: datetime) -> datetime:
    """First instant of the next calendar month (UTC)."""
    now = now.astimezone(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def count_files(db: Session, user_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(File)
        .where(File.user_id == user_id, File.deleted_at.is_(None))
    )
    return db.execute(stmt).scalar() or 0


def reset_transformations_if_due(user: User, now: datetime) -> bool:
    """
    Zero the monthly transformation counter when its reset time has passed.

    Mutates the user row without committing. Returns True if a reset happened.
    """
    if user.transformations_reset_at is None:
        user.transformations_reset_at = next_reset_at(now)
        return False
    if now < user.transformations_reset_at:
        return False

    logger.info(
        "Resetting monthly transformation counter",
        extra={"user_id": user.id, "previous_count": user.transformations_count},
    )
    user.transformations_count = 0
    user.transformations_reset_at = next_reset_at(now)
    return True
