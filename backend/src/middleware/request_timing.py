"""Request latency recording."""

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from src.metrics.latency import LatencyTracker

logger = logging.getLogger(__name__)

UNTIMED_PATHS = frozenset({"/health", "/metrics"})


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Feed every API request's wall-clock duration into a LatencyTracker."""

    def __init__(self, app, tracker: LatencyTracker):
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNTIMED_PATHS:
            return await call_next(request)

        start = time.monotonic()
        try:
            return await call_next(request)
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self.tracker.record(duration_ms)
            if duration_ms > 5000:
                logger.warning(
                    "Slow request",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": duration_ms,
                    },
                )
