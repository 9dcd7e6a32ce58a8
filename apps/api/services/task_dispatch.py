"""Durable share job dispatch (Redis/RQ) and delivery to the worker endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings, worker_identity_can_sign
from services.storage.base import JobStore
from services.worker_auth import WORKER_TOKEN_HEADER, create_worker_identity_token

logger = logging.getLogger(__name__)


STALLED_JOB_MESSAGE = "Share job was interrupted. Submit the snapshot again."
DELIVERY_TIMEOUT_SECONDS = 60.0


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_share_job_queue() -> Queue:
    return Queue(
        name=settings.JOBS_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=300,
    )


def task_queue_configured() -> bool:
    """Push delivery is available only when jobs are enabled and a worker URL is set."""
    return bool(settings.JOBS_ENABLED and (settings.WORKER_URL or "").strip())


def build_job_descriptor(
    job_id: str,
    snapshot: Dict[str, Any],
    idempotency_key: Optional[str],
    owner: Optional[Dict[str, str]],
) -> Dict[str, Any]:
    return {
        "jobId": job_id,
        "snapshot": snapshot,
        "idempotencyKey": (idempotency_key or "").strip(),
        "owner": owner or None,
    }


def enqueue_share_job(
    job_id: str,
    snapshot: Dict[str, Any],
    idempotency_key: Optional[str],
    owner: Optional[Dict[str, str]],
    request_id: Optional[str] = None,
) -> Job:
    """Enqueue delivery of a share job with retries for durability."""
    queue = get_share_job_queue()
    return queue.enqueue(
        "services.task_dispatch.deliver_share_job",
        build_job_descriptor(job_id, snapshot, idempotency_key, owner),
        request_id,
        job_id=f"share:{job_id}",
        retry=Retry(max=3, interval=[10, 30, 120]),
        job_timeout=300,
        result_ttl=86400,
        failure_ttl=86400,
    )


def build_delivery_headers(request_id: Optional[str] = None) -> Dict[str, str]:
    headers = {"content-type": "application/json"}
    if request_id:
        headers["x-request-id"] = request_id
    if settings.WORKER_TOKEN:
        headers[WORKER_TOKEN_HEADER] = settings.WORKER_TOKEN
    if worker_identity_can_sign():
        headers["authorization"] = f"Bearer {create_worker_identity_token()}"
    return headers


def deliver_share_job(descriptor: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    """
    RQ job: POST the descriptor to the worker endpoint.

    A fresh identity token is signed per attempt. Non-2xx responses raise so
    RQ retries the delivery.
    """
    worker_url = (settings.WORKER_URL or "").strip()
    if not worker_url:
        raise RuntimeError("WORKER_URL is not configured.")
    with httpx.Client(timeout=DELIVERY_TIMEOUT_SECONDS) as client:
        response = client.post(worker_url, json=descriptor, headers=build_delivery_headers(request_id))
    if response.status_code >= 300:
        logger.warning(
            "Share job %s delivery failed status=%s", descriptor.get("jobId"), response.status_code
        )
        response.raise_for_status()
        raise RuntimeError(f"Unexpected worker response status {response.status_code}")
    logger.info("Share job %s delivered", descriptor.get("jobId"))
    return response.json()


async def recover_stalled_share_jobs(jobs: JobStore, max_age_minutes: int = 120) -> int:
    """Mark stale queued/processing share jobs as failed after restarts/worker interruptions."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(max_age_minutes, 1))
    return await jobs.fail_stalled_jobs(cutoff, STALLED_JOB_MESSAGE)
