import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from config import settings
from services import task_dispatch
from services.storage.types import utcnow
from services.task_dispatch import (
    STALLED_JOB_MESSAGE,
    deliver_share_job,
    enqueue_share_job,
    recover_stalled_share_jobs,
    task_queue_configured,
)


REAL_HTTPX_CLIENT = httpx.Client
DESCRIPTOR = {
    "jobId": "jobAbcdef12345",
    "snapshot": {"intention": "rest"},
    "idempotencyKey": "",
    "owner": {"ownerType": "user", "ownerId": "u1", "ownerEmail": ""},
}


def _client_factory(handler):
    transport = httpx.MockTransport(handler)
    return lambda **kwargs: REAL_HTTPX_CLIENT(transport=transport, **kwargs)


def test_task_queue_requires_jobs_and_worker_url():
    with patch.multiple(settings, JOBS_ENABLED=True, WORKER_URL=""):
        assert task_queue_configured() is False
    with patch.multiple(settings, JOBS_ENABLED=False, WORKER_URL="https://worker.example.com/process"):
        assert task_queue_configured() is False
    with patch.multiple(settings, JOBS_ENABLED=True, WORKER_URL="https://worker.example.com/process"):
        assert task_queue_configured() is True


def test_enqueue_share_job_uses_retrying_queue():
    queue = MagicMock()
    with patch("services.task_dispatch.get_share_job_queue", return_value=queue):
        enqueue_share_job("jobAbcdef12345", {"intention": "rest"}, " key-1234 ", {"ownerType": "user"}, "req-1")

    args, kwargs = queue.enqueue.call_args
    assert args[0] == "services.task_dispatch.deliver_share_job"
    assert args[1]["jobId"] == "jobAbcdef12345"
    assert args[1]["idempotencyKey"] == "key-1234"
    assert args[2] == "req-1"
    assert kwargs["job_id"] == "share:jobAbcdef12345"
    assert kwargs["retry"].max == 3


def test_deliver_share_job_posts_descriptor_with_credentials():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "jobId": DESCRIPTOR["jobId"], "status": "completed"})

    with patch.multiple(
        settings,
        WORKER_URL="https://worker.example.com/internal/jobs/process",
        WORKER_TOKEN="worker-secret",
        WORKER_IDENTITY_SERVICE_ACCOUNT="dispatch@example.com",
        WORKER_IDENTITY_SECRET="s" * 40,
        WORKER_IDENTITY_AUDIENCE="",
    ), patch.object(task_dispatch.httpx, "Client", _client_factory(handler)):
        result = deliver_share_job(DESCRIPTOR, "req-42")

    assert result["status"] == "completed"
    assert captured["url"] == "https://worker.example.com/internal/jobs/process"
    assert captured["body"] == DESCRIPTOR
    assert captured["headers"]["x-worker-token"] == "worker-secret"
    assert captured["headers"]["x-request-id"] == "req-42"
    assert captured["headers"]["authorization"].startswith("Bearer ")


def test_deliver_share_job_raises_on_error_status_so_rq_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "busy"})

    with patch.multiple(settings, WORKER_URL="https://worker.example.com/process", WORKER_TOKEN="t"), patch.object(
        task_dispatch.httpx, "Client", _client_factory(handler)
    ):
        with pytest.raises(httpx.HTTPStatusError):
            deliver_share_job(DESCRIPTOR)


def test_deliver_share_job_requires_worker_url():
    with patch.object(settings, "WORKER_URL", ""):
        with pytest.raises(RuntimeError):
            deliver_share_job(DESCRIPTOR)


@pytest.mark.asyncio
async def test_recover_stalled_share_jobs_marks_old_jobs_failed(storage):
    job = await storage.jobs.create_job()

    assert await recover_stalled_share_jobs(storage.jobs, max_age_minutes=120) == 0

    with patch("services.task_dispatch.datetime") as fake_datetime:
        fake_datetime.now.return_value = utcnow() + timedelta(minutes=180)
        recovered = await recover_stalled_share_jobs(storage.jobs, max_age_minutes=120)

    assert recovered == 1
    stalled = await storage.jobs.get_job(job.job_id)
    assert stalled.status == "failed"
    assert stalled.error == STALLED_JOB_MESSAGE
