import asyncio

import pytest

from services.storage.types import QuotaResult


@pytest.mark.asyncio
async def test_quota_boundary_sequence(storage):
    quota = storage.quota

    assert await quota.acquire("2026-01-01", 2) == QuotaResult(acquired=True, current=1, remaining=1)
    assert await quota.acquire("2026-01-01", 2) == QuotaResult(acquired=True, current=2, remaining=0)
    assert await quota.acquire("2026-01-01", 2) == QuotaResult(acquired=False, current=2, remaining=0)

    await quota.release("2026-01-01")
    assert await quota.acquire("2026-01-01", 2) == QuotaResult(acquired=True, current=2, remaining=0)


@pytest.mark.asyncio
async def test_days_are_counted_separately(storage):
    assert (await storage.quota.acquire("2026-01-01", 1)).acquired
    assert not (await storage.quota.acquire("2026-01-01", 1)).acquired
    assert (await storage.quota.acquire("2026-01-02", 1)).acquired


@pytest.mark.asyncio
async def test_disabled_quota_always_acquires(storage):
    for _ in range(3):
        result = await storage.quota.acquire("2026-01-01", 0)
        assert result == QuotaResult(acquired=True, current=0, remaining=0)

    assert await storage.quota.acquire("", 5) == QuotaResult(acquired=True, current=0, remaining=0)
    # Nothing was persisted by the disabled calls.
    assert await storage.quota.acquire("2026-01-01", 1) == QuotaResult(acquired=True, current=1, remaining=0)


@pytest.mark.asyncio
async def test_release_never_goes_below_zero(storage):
    await storage.quota.release("2026-03-01")
    await storage.quota.acquire("2026-03-01", 3)
    await storage.quota.release("2026-03-01")
    await storage.quota.release("2026-03-01")

    result = await storage.quota.acquire("2026-03-01", 3)
    assert result.current == 1


@pytest.mark.asyncio
async def test_concurrent_acquires_never_exceed_limit(storage):
    results = await asyncio.gather(*[storage.quota.acquire("2026-02-01", 3) for _ in range(8)])

    assert sum(1 for result in results if result.acquired) == 3
    assert all(0 <= result.current <= 3 for result in results)

    after = await storage.quota.acquire("2026-02-01", 3)
    assert after == QuotaResult(acquired=False, current=3, remaining=0)
