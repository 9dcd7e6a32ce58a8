import asyncio
import os
import time

import pytest

from services.storage.local_driver import LOCK_STALE_SECONDS, JsonRecordDirectory


def _age(path, seconds):
    past = time.time() - seconds
    os.utime(path, (past, past))


def _increment(doc):
    doc = doc or {"count": 0}
    return {**doc, "count": doc["count"] + 1}


@pytest.mark.asyncio
async def test_stale_lock_is_taken_over(tmp_path):
    records = JsonRecordDirectory(tmp_path / "quota")
    lock_path = records.path_for("2026-10-19").with_suffix(".lock")
    lock_path.write_text("crashed holder")
    _age(lock_path, LOCK_STALE_SECONDS + 5)

    stored = await asyncio.wait_for(records.update("2026-10-19", _increment), timeout=5)

    assert stored["count"] == 1
    assert not lock_path.exists()


@pytest.mark.asyncio
async def test_waiters_behind_a_stale_lock_still_exclude_each_other(tmp_path):
    first = JsonRecordDirectory(tmp_path / "quota")
    second = JsonRecordDirectory(tmp_path / "quota")
    lock_path = first.path_for("2026-10-19").with_suffix(".lock")
    lock_path.write_text("crashed holder")
    _age(lock_path, LOCK_STALE_SECONDS + 5)

    await asyncio.gather(
        *[(first if index % 2 else second).update("2026-10-19", _increment) for index in range(12)]
    )

    assert (await first.read("2026-10-19"))["count"] == 12
    assert not lock_path.exists()


@pytest.mark.asyncio
async def test_fresh_lock_replacing_a_stale_one_is_kept(tmp_path):
    records = JsonRecordDirectory(tmp_path / "jobs")
    lock_path = records.path_for("jobAbcdef12345").with_suffix(".lock")
    lock_path.write_text("crashed holder")
    stale = os.stat(lock_path)

    replacement = tmp_path / "jobs" / "replacement"
    replacement.write_text("new holder")
    os.replace(replacement, lock_path)

    assert await records._remove_if_same(lock_path, stale) is False
    assert lock_path.read_text() == "new holder"
    assert [path.name for path in (tmp_path / "jobs").iterdir()] == [lock_path.name]


@pytest.mark.asyncio
async def test_release_leaves_a_lock_taken_by_someone_else(tmp_path):
    records = JsonRecordDirectory(tmp_path / "jobs")
    lock_path = records.path_for("jobAbcdef12345").with_suffix(".lock")

    async with records.locked("jobAbcdef12345"):
        replacement = tmp_path / "jobs" / "replacement"
        replacement.write_text("new holder")
        os.replace(replacement, lock_path)

    assert lock_path.read_text() == "new holder"
