"""
Snapshot Share API - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_security_settings
from database import Base, engine
from logging_config import setup_logging
import models  # noqa: F401
from routers import generations, health, jobs, shares
from services.storage.factory import build_storage
from services.task_dispatch import recover_stalled_share_jobs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    logger.info("Starting Snapshot Share API (store=%s)", settings.STORE_DRIVER)
    validate_security_settings()
    uses_database = settings.STORE_DRIVER.strip().lower() == "sql"
    if uses_database and settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database schema verified.")
        except Exception as e:
            logger.warning("Database bootstrap skipped: %s", e)
    app.state.storage = build_storage(settings)
    try:
        recovered = await recover_stalled_share_jobs(
            app.state.storage.jobs, settings.JOBS_STALLED_AFTER_MINUTES
        )
        if recovered:
            logger.info("Recovered %s stalled share jobs after startup.", recovered)
    except Exception as exc:
        logger.warning("Stalled share job recovery skipped: %s", exc)
    yield
    # Shutdown
    if uses_database:
        await engine.dispose()
    logger.info("Shutting down API...")


app = FastAPI(
    title="Snapshot Share API",
    description="Durable storage and retrieval of generated snapshots",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request_id = (request.headers.get("x-request-id") or "").strip()[:128] or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
        extra={"request_id": request_id},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "code": "INTERNAL",
                "message": "Internal server error",
                "requestId": request_id,
            }
        },
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(shares.router, prefix="/shares", tags=["Shares"])
app.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
app.include_router(jobs.internal_router, prefix="/internal/jobs", tags=["Internal"])
app.include_router(generations.router, prefix="/generations", tags=["Generations"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Snapshot Share API",
        "version": "0.1.0",
        "status": "running"
    }
