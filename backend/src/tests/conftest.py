"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database with the full schema.
SQLite needs the pysqlite savepoint recipe below for begin_nested(), which
the variant ledger and the audit writer rely on.
"""

import hashlib
import hmac
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import redis
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.db_base import Base
from src.entitlements.policy import EntitlementEngine
from src.jobs.sink import JobSubmissionError
from src.models.file import File, FileStatus
from src.models.user import SubscriptionStatus, SubscriptionTier, User

# Register every table on Base.metadata
import src.models  # noqa: F401
import src.jobs.models  # noqa: F401
import src.platform.audit  # noqa: F401


def enable_sqlite_savepoints(engine, begin_statement: str = "BEGIN") -> None:
    """Let SQLAlchemy, not pysqlite, manage transactions so SAVEPOINT works."""

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql(begin_statement)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    """Session configured like production (autoflush off)."""
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def make_user(db_session):
    """Factory for committed users with limits matching their tier."""

    def _make_user(
        tier: SubscriptionTier = SubscriptionTier.FREE,
        status: SubscriptionStatus = SubscriptionStatus.NONE,
        **overrides: Any,
    ) -> User:
        limits = EntitlementEngine().limits_for(tier)
        values = dict(
            id=str(uuid.uuid4()),
            email=f"{uuid.uuid4().hex[:12]}@example.com",
            subscription_tier=tier,
            subscription_status=status,
            files_limit=limits.files_limit,
            max_file_size=limits.max_file_size,
            transformations_limit=limits.transformations_limit,
            transformations_count=0,
        )
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_file(db_session):
    def _make_file(
        user: User,
        content_type: str = "image/png",
        filename: str = "photo.png",
        **overrides: Any,
    ) -> File:
        file_id = str(uuid.uuid4())
        values = dict(
            id=file_id,
            user_id=user.id,
            filename=filename,
            content_type=content_type,
            size_bytes=1024,
            storage_key=f"uploads/{user.id}/{file_id}/{filename}",
            status=FileStatus.PENDING,
        )
        values.update(overrides)
        file = File(**values)
        db_session.add(file)
        db_session.commit()
        return file

    return _make_file


class FakeJobSink:
    """Records submissions; fails every submit when ``fail`` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.submitted: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def submit(self, job_type: str, payload: Dict[str, Any]) -> str:
        if self.fail:
            raise JobSubmissionError("broker unavailable", job_type=job_type)
        with self._lock:
            self.submitted.append({"job_type": job_type, "payload": payload})
            return f"queue-{len(self.submitted)}"


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def put(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


class FakeRedis:
    """Minimal stand-in for redis.Redis used by the sink and latency publisher."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.values: Dict[str, Any] = {}
        self.expiry: Dict[str, int] = {}
        self.lists: Dict[str, List[str]] = {}

    def set(self, key, value, ex=None):
        if self.error:
            raise self.error
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    def lpush(self, key, value):
        if self.error:
            raise self.error
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])


@pytest.fixture
def job_sink():
    return FakeJobSink()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def failing_job_sink():
    return FakeJobSink(fail=True)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def broken_redis():
    return FakeRedis(error=redis.ConnectionError("connection refused"))


@pytest.fixture
def file_engine(tmp_path):
    """
    File-backed SQLite engine for tests that use several threads.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent writers
    queue behind each other instead of failing.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_savepoints(eng, begin_statement="BEGIN IMMEDIATE")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sign_webhook():
    """Build a Stripe-Signature header value the way the provider does."""

    def _sign(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
