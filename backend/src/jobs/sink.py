"""
Job submission sink.

The dispatcher hands work to the broker through JobSink.submit(). The
Redis implementation pushes a JSON envelope onto a list that the worker
fleet pops from:

    jobs:critical  -> priority tiers
    jobs:default   -> everyone else

Unlike the Redis stores that degrade gracefully, submission failures are
raised as JobSubmissionError: the caller must know the job was not queued
so that it can roll back its bookkeeping.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import redis

from src.config.settings import JOB_QUEUE_PREFIX, get_redis_url

logger = logging.getLogger(__name__)

QUEUE_CRITICAL = "critical"
QUEUE_DEFAULT = "default"


class JobSubmissionError(Exception):
    """Raised when a job could not be handed to the broker."""

    def __init__(self, message: str, job_type: Optional[str] = None):
        self.job_type = job_type
        super().__init__(message)


class JobSink(Protocol):
    def submit(self, job_type: str, payload: Dict[str, Any]) -> str:
        """Queue a job and return the broker's identifier for it."""
        ...


class RedisJobSink:
    """Pushes job envelopes onto Redis lists."""

    def __init__(self, redis_client: redis.Redis, queue_prefix: str = JOB_QUEUE_PREFIX):
        self._redis = redis_client
        self._prefix = queue_prefix

    def queue_key(self, queue: str) -> str:
        return f"{self._prefix}:{queue}"

    def submit(self, job_type: str, payload: Dict[str, Any]) -> str:
        queue = QUEUE_CRITICAL if payload.get("priority", 0) > 0 else QUEUE_DEFAULT
        envelope = {
            "id": str(uuid.uuid4()),
            "type": job_type,
            "payload": payload,
            "enqueued_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._redis.lpush(self.queue_key(queue), json.dumps(envelope))
        except redis.RedisError as e:
            logger.error(
                "Failed to submit job to Redis",
                extra={"job_type": job_type, "queue": queue, "error": str(e)},
            )
            raise JobSubmissionError(f"Failed to enqueue {job_type} job", job_type=job_type) from e

        logger.info(
            "Job submitted",
            extra={
                "queue_id": envelope["id"],
                "job_type": job_type,
                "queue": queue,
                "job_id": payload.get("job_id"),
            },
        )
        return envelope["id"]


_sink: Optional[RedisJobSink] = None


def get_job_sink() -> RedisJobSink:
    """Return the process-wide Redis job sink (REDIS_URL)."""
    global _sink
    if _sink is None:
        _sink = RedisJobSink(redis.Redis.from_url(get_redis_url()))
    return _sink
