from datetime import timedelta

import pytest

from services.ids import is_valid_job_id
from services.storage.types import DEFAULT_JOB_ERROR, utcnow


@pytest.mark.asyncio
async def test_new_job_is_queued_with_no_attempts(storage):
    job = await storage.jobs.create_job()

    assert is_valid_job_id(job.job_id)
    assert job.status == "queued"
    assert job.attempt_count == 0
    assert job.result is None

    fetched = await storage.jobs.get_job(job.job_id)
    assert fetched.status == "queued"
    assert fetched.attempt_count == 0


@pytest.mark.asyncio
async def test_job_lifecycle_to_completed(storage):
    job = await storage.jobs.create_job()

    processing = await storage.jobs.mark_processing(job.job_id)
    assert processing.status == "processing"
    assert processing.attempt_count == 1
    assert processing.last_attempt_at is not None

    completed = await storage.jobs.complete_job(job.job_id, {"shareId": "shareAbc123", "createdAt": "x"})
    assert completed.status == "completed"
    assert completed.result == {"shareId": "shareAbc123", "createdAt": "x"}
    assert completed.error is None


@pytest.mark.asyncio
async def test_completed_job_is_sticky(storage):
    job = await storage.jobs.create_job()
    await storage.jobs.mark_processing(job.job_id)
    await storage.jobs.complete_job(job.job_id, {"shareId": "firstShare01"})

    again = await storage.jobs.mark_processing(job.job_id)
    assert again.status == "completed"
    assert again.attempt_count == 1

    failed = await storage.jobs.fail_job(job.job_id, "late failure")
    assert failed.status == "completed"
    assert failed.error is None

    second = await storage.jobs.complete_job(job.job_id, {"shareId": "otherShare02"})
    assert second.result == {"shareId": "firstShare01"}

    stored = await storage.jobs.get_job(job.job_id)
    assert stored.status == "completed"
    assert stored.result == {"shareId": "firstShare01"}


@pytest.mark.asyncio
async def test_failed_job_can_be_retried(storage):
    job = await storage.jobs.create_job()
    await storage.jobs.mark_processing(job.job_id)

    failed = await storage.jobs.fail_job(job.job_id, "storage unavailable")
    assert failed.status == "failed"
    assert failed.error == "storage unavailable"
    assert failed.attempt_count == 1

    retried = await storage.jobs.mark_processing(job.job_id)
    assert retried.status == "processing"
    assert retried.attempt_count == 2
    assert retried.error is None


@pytest.mark.asyncio
async def test_fail_job_uses_default_message(storage):
    job = await storage.jobs.create_job()

    failed = await storage.jobs.fail_job(job.job_id, "   ")
    assert failed.error == DEFAULT_JOB_ERROR


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(storage):
    assert await storage.jobs.get_job("unknownJob0001") is None
    assert await storage.jobs.mark_processing("unknownJob0001") is None
    assert await storage.jobs.complete_job("unknownJob0001", {"shareId": "x"}) is None
    assert await storage.jobs.fail_job("unknownJob0001", "boom") is None


@pytest.mark.asyncio
async def test_fail_stalled_jobs_only_touches_unfinished_jobs(storage):
    queued = await storage.jobs.create_job()
    processing = await storage.jobs.create_job()
    await storage.jobs.mark_processing(processing.job_id)
    completed = await storage.jobs.create_job()
    await storage.jobs.complete_job(completed.job_id, {"shareId": "doneShare001"})

    recovered = await storage.jobs.fail_stalled_jobs(utcnow() + timedelta(seconds=5), "interrupted")

    assert recovered == 2
    assert (await storage.jobs.get_job(queued.job_id)).status == "failed"
    assert (await storage.jobs.get_job(processing.job_id)).error == "interrupted"
    assert (await storage.jobs.get_job(completed.job_id)).status == "completed"


@pytest.mark.asyncio
async def test_fail_stalled_jobs_ignores_recent_jobs(storage):
    job = await storage.jobs.create_job()

    recovered = await storage.jobs.fail_stalled_jobs(utcnow() - timedelta(minutes=120), "interrupted")

    assert recovered == 0
    assert (await storage.jobs.get_job(job.job_id)).status == "queued"
