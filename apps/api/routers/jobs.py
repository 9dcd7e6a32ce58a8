"""
Router for asynchronous share jobs and the worker processing endpoint.
"""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request, Response

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from routers.schemas import JobCreatedResponse, JobResponse, ProcessJobResponse
from routers.shares import build_share_url
from services.errors import api_error
from services.ids import is_valid_job_id, is_valid_share_id
from services.payloads import PayloadError, read_idempotency_key, validate_share_payload
from services.share_jobs import process_share_job, run_share_job_inline
from services.storage.factory import Storage, get_storage
from services.storage.types import Owner
from services.task_dispatch import enqueue_share_job, task_queue_configured
from services.worker_auth import WorkerAuthError, require_worker_request

router = APIRouter()
internal_router = APIRouter()
logger = logging.getLogger(__name__)


def _require_job_id(job_id: Any) -> str:
    if not is_valid_job_id(job_id):
        raise api_error(400, "INVALID_JOB_ID", "Invalid jobId format")
    return job_id


@router.post("", status_code=202, response_model=JobCreatedResponse)
async def create_share_job(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Any = Body(default=None),
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    """Accept a snapshot for asynchronous storage; poll the returned URL for the result."""
    if not settings.JOBS_ENABLED:
        raise api_error(503, "JOBS_DISABLED", "Share jobs are disabled")
    try:
        snapshot = validate_share_payload(body)
        idempotency_key = read_idempotency_key(request.headers)
    except PayloadError as exc:
        raise api_error(400, exc.code, str(exc)) from exc

    job = await storage.jobs.create_job()
    owner = Owner(owner_type="user", owner_id=auth.user_id, owner_email=auth.email or "")
    dispatched = task_queue_configured()

    if dispatched:
        try:
            enqueue_share_job(
                job.job_id,
                snapshot,
                idempotency_key,
                owner.to_payload(),
                request_id=getattr(request.state, "request_id", None),
            )
        except Exception as exc:
            logger.exception("Failed to enqueue share job %s", job.job_id)
            await storage.jobs.fail_job(job.job_id, f"Failed to enqueue share job: {exc}")
            raise api_error(503, "QUEUE_UNAVAILABLE", "Share job queue is unavailable.") from exc
    elif settings.JOBS_INLINE_FALLBACK:
        background_tasks.add_task(
            run_share_job_inline, storage, job.job_id, snapshot, idempotency_key, owner
        )

    return JobCreatedResponse(
        job_id=job.job_id,
        status="queued",
        queued=bool(dispatched or settings.JOBS_INLINE_FALLBACK),
        poll_url=f"/jobs/{job.job_id}",
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_share_job(
    job_id: str,
    request: Request,
    response: Response,
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    job = await storage.jobs.get_job(_require_job_id(job_id))
    if job is None:
        raise api_error(404, "JOB_NOT_FOUND", "Job not found")

    result = job.result
    share_id = (result or {}).get("shareId")
    if is_valid_share_id(share_id):
        result = {**result, "shareUrl": build_share_url(request, share_id)}

    response.headers["Cache-Control"] = "no-store"
    return JobResponse(
        job_id=job.job_id,
        status=job.status,
        created_at=job.created_at,
        updated_at=job.updated_at,
        attempt_count=job.attempt_count,
        last_attempt_at=job.last_attempt_at,
        error=job.error,
        result=result,
    )


@internal_router.post("/process", response_model=ProcessJobResponse)
async def process_share_job_request(
    request: Request,
    body: Any = Body(default=None),
    storage: Storage = Depends(get_storage),
):
    """Worker-only: run one delivery attempt of a share job."""
    try:
        require_worker_request(request.headers)
    except WorkerAuthError as exc:
        raise api_error(exc.status_code, exc.code, exc.message) from exc

    body = body if isinstance(body, dict) else {}
    job_id = _require_job_id(str(body.get("jobId") or "").strip())
    try:
        snapshot = validate_share_payload(body.get("snapshot"))
    except PayloadError as exc:
        raise api_error(400, exc.code, str(exc)) from exc
    idempotency_key = body.get("idempotencyKey")
    idempotency_key = idempotency_key.strip() if isinstance(idempotency_key, str) else ""

    try:
        job = await process_share_job(
            storage,
            job_id,
            snapshot,
            idempotency_key,
            Owner.from_payload(body.get("owner")),
        )
    except LookupError as exc:
        raise api_error(404, "JOB_NOT_FOUND", str(exc)) from exc

    return ProcessJobResponse(ok=True, job_id=job_id, status=job.status, result=job.result)
