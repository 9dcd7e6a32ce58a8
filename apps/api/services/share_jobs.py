"""Share job processing, shared by the worker endpoint and the inline fallback."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Optional

from services.storage.factory import Storage
from services.storage.types import JobRecord, Owner, format_time

logger = logging.getLogger(__name__)


async def process_share_job(
    storage: Storage,
    job_id: str,
    snapshot: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    owner: Optional[Owner] = None,
) -> JobRecord:
    """
    Run one attempt of a share job.

    Redelivered attempts for a completed job return the stored result. Without
    a caller key the job id scopes idempotency, so a retried attempt reuses the
    share created by an earlier attempt.
    """
    job = await storage.jobs.mark_processing(job_id)
    if job is None:
        raise LookupError(f"Unknown share job: {job_id}")
    if job.status == "completed" and (job.result or {}).get("shareId"):
        logger.info("Share job %s already completed", job_id)
        return job

    try:
        share = await storage.shares.create_share(
            snapshot,
            idempotency_key=idempotency_key or f"job:{job_id}",
            owner=owner,
        )
        result = {"shareId": share.share_id, "createdAt": format_time(share.created_at)}
        completed = await storage.jobs.complete_job(job_id, result)
    except Exception as exc:
        logger.exception("Share job %s attempt failed", job_id)
        await storage.jobs.fail_job(job_id, str(exc))
        raise

    logger.info("Share job %s completed with share %s", job_id, share.share_id)
    return completed or replace(job, status="completed", result=result)


async def run_share_job_inline(
    storage: Storage,
    job_id: str,
    snapshot: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    owner: Optional[Owner] = None,
) -> None:
    """Background-task wrapper: failures are recorded on the job and logged, never raised."""
    try:
        await process_share_job(storage, job_id, snapshot, idempotency_key, owner)
    except Exception as exc:
        logger.error("Inline share job %s failed: %s", job_id, exc)
