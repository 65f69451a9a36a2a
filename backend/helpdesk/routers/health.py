"""Health check router."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpdesk.config import get_settings
from helpdesk.database import get_db

router = APIRouter(prefix="/health", tags=["health"])
settings = get_settings()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
    }


@router.get("/ready")
async def readiness_check(request: Request, db: Session = Depends(get_db)):
    """Readiness check (DB + key-value store connectivity)."""
    checks = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {type(e).__name__}"
    try:
        request.app.state.kv.ping()
        checks["redis"] = "ok"
    except RedisError as e:
        checks["redis"] = f"error: {type(e).__name__}"

    ready = all(value == "ok" for value in checks.values())
    return {"status": "ready" if ready else "degraded", "checks": checks}
