"""
FastAPI application entry point.

    uvicorn src.main:app

The action table is validated before the app is built, so a
misconfigured table fails the deploy instead of the first request.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI

from src.api.routes import auth, billing, files, health, webhooks_billing
from src.config.settings import LATENCY_PUBLISH_INTERVAL_SECONDS, get_redis_url
from src.jobs.actions import validate_action_table
from src.metrics.latency import LatencyTracker
from src.middleware.request_timing import RequestTimingMiddleware
from src.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler

logger = logging.getLogger(__name__)


async def _publish_latency(tracker: LatencyTracker, client: redis.Redis, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(tracker.publish, client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = redis.Redis.from_url(get_redis_url())
    task = asyncio.create_task(
        _publish_latency(app.state.latency_tracker, client, LATENCY_PUBLISH_INTERVAL_SECONDS)
    )
    logger.info("Latency publisher started", extra={"interval_seconds": LATENCY_PUBLISH_INTERVAL_SECONDS})
    try:
        yield
    finally:
        task.cancel()
        client.close()


def create_app(latency_tracker: Optional[LatencyTracker] = None) -> FastAPI:
    validate_action_table()

    tracker = latency_tracker if latency_tracker is not None else LatencyTracker()
    app = FastAPI(title="File Processor API", lifespan=lifespan)
    app.state.latency_tracker = tracker

    app.add_exception_handler(AppError, app_error_handler)
    app.add_middleware(RequestTimingMiddleware, tracker=tracker)
    app.add_middleware(ErrorHandlerMiddleware)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(files.router)
    app.include_router(billing.router)
    app.include_router(webhooks_billing.router)
    return app


app = create_app()
