"""Database schema readiness checks for the tables the API cannot run without."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "users",
    "sessions",
    "api_tokens",
    "files",
    "file_variants",
    "processing_jobs",
    "billing_events",
)


@dataclass(frozen=True)
class DBReadinessResult:
    ready: bool
    missing_tables: list[str]
    checked_tables: list[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    checked = list(required_tables)
    try:
        existing = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Failed listing database tables")
        raise

    missing = [name for name in checked if name not in existing]
    if missing:
        logger.warning("Database schema incomplete", extra={"missing_tables": missing})
    return DBReadinessResult(
        ready=not missing,
        missing_tables=missing,
        checked_tables=checked,
    )
