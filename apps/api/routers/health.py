"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


async def _redis_status() -> str:
    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Overall system health.
    Redis only backs rate limiting, so a Redis outage degrades but does not fail.
    """
    database = await _database_status()
    redis_state = await _redis_status()
    degraded = database != "up" or redis_state != "up"
    return {
        "success": True,
        "message": "degraded" if degraded else "healthy",
        "data": {
            "api": "up",
            "database": database,
            "redis": redis_state,
            "push_notifications": "enabled" if settings.PUSH_NOTIFICATIONS_ENABLED else "disabled",
        },
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: the database must answer."""
    database = await _database_status()
    if database != "up":
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Database unavailable", "data": {"database": database}},
        )
    return {"success": True, "message": "ready"}


@router.get("/health/live")
async def liveness_check():
    """Liveness check."""
    return {"success": True, "message": "alive"}
