"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
Readiness covers the database and Redis; Google Calendar is optional
and only reported as configured or not.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.crm.config import get_settings
from src.crm.core.database import get_engine
from src.crm.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    try:
        redis = get_redis_pool()
        if not await redis.ping():
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except (RedisError, OSError) as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    settings = get_settings()
    checks["google_calendar"] = (
        "configured"
        if settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET
        else "not_configured"
    )
    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 if the database and Redis respond, 503 otherwise."""
    checks = await _check_dependencies()
    all_healthy = checks["database"] == "ok" and checks["redis"] == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
