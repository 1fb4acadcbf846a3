from fastapi import APIRouter, Depends, Request

from src.database.session import get_db_session
from src.platform.db_readiness import REQUIRED_TABLES, check_required_tables

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
async def readiness(request: Request, db=Depends(get_db_session)):
    """Readiness check: schema present, plus the current API latency p95."""
    result = check_required_tables(db, REQUIRED_TABLES)
    tracker = getattr(request.app.state, "latency_tracker", None)
    return {
        "status": "ready" if result.ready else "not_ready",
        "checks": {
            "database": "ok",
            "tables": {
                "required": result.checked_tables,
                "missing": result.missing_tables,
            },
        },
        "api_latency_p95_ms": tracker.p95() if tracker is not None else None,
    }
