"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from services.task_dispatch import task_queue_configured

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports the storage driver, its database and Redis reachability, and job dispatch mode.
    """
    storage = getattr(request.app.state, "storage", None)
    health_status = {
        "status": "healthy",
        "api": "up",
        "store": storage.kind if storage else "uninitialised",
        "blobs": storage.blobs.kind if storage else "uninitialised",
        "database": "not_used",
        "redis": "not_used",
        "jobs": {
            "enabled": settings.JOBS_ENABLED,
            "queue": task_queue_configured(),
            "inlineFallback": settings.JOBS_INLINE_FALLBACK,
        },
    }
    if storage is None:
        health_status["status"] = "degraded"

    if storage is not None and storage.session_maker is not None:
        try:
            async with storage.session_maker() as db:
                await db.execute(text("SELECT 1"))
            health_status["database"] = "up"
        except Exception as e:
            health_status["database"] = f"down: {str(e)}"
            health_status["status"] = "degraded"

    if task_queue_configured():
        try:
            r = redis.from_url(settings.REDIS_URL)
            await r.ping()
            await r.aclose()
            health_status["redis"] = "up"
        except Exception as e:
            health_status["redis"] = f"down: {str(e)}"
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes-style readiness check."""
    if getattr(request.app.state, "storage", None) is None:
        return JSONResponse(status_code=503, content={"ready": False, "missing": ["storage"]})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness check."""
    return {"alive": True}
