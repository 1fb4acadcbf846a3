"""
API latency window.

Keeps the most recent request durations (milliseconds) in a bounded
window and publishes the p95 to Redis for the status page and health
checks. One tracker is created per process and injected where needed
(app.state.latency_tracker); it owns its lock.

Publishing degrades gracefully: a Redis failure is logged and the
request path is never affected.
"""

import logging
import threading
from collections import deque
from typing import Optional

import redis

from src.config.settings import LATENCY_WINDOW_SIZE

logger = logging.getLogger(__name__)

P95_REDIS_KEY = "metrics:api_latency_p95"
P95_TTL_SECONDS = 300


class LatencyTracker:
    def __init__(self, max_records: int = LATENCY_WINDOW_SIZE):
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self._window = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(self, duration_ms: int) -> None:
        with self._lock:
            self._window.append(int(duration_ms))

    def __len__(self) -> int:
        with self._lock:
            return len(self._window)

    def p95(self) -> int:
        """95th percentile of the window; 0 when empty."""
        with self._lock:
            samples = sorted(self._window)
        if not samples:
            return 0
        index = min(int(len(samples) * 0.95), len(samples) - 1)
        return samples[index]

    def publish(self, redis_client: Optional[redis.Redis]) -> Optional[int]:
        """
        Write the current p95 to Redis with a five minute TTL.

        Returns the published value, or None when Redis is unavailable.
        """
        if redis_client is None:
            return None
        value = self.p95()
        try:
            redis_client.set(P95_REDIS_KEY, str(value), ex=P95_TTL_SECONDS)
        except redis.RedisError as exc:
            logger.warning(
                "Failed to publish latency p95",
                extra={"error": str(exc), "p95_ms": value},
            )
            return None
        return value
