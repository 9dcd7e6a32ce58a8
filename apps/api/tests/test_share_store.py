import asyncio
import hashlib
from unittest.mock import patch

import pytest

from services.ids import idempotency_hash, is_valid_share_id
from services.storage.types import Owner


def _snapshot(intention: str = "breathe slowly") -> dict:
    return {
        "schemaVersion": 1,
        "intention": intention,
        "durationSeconds": 60,
        "backgroundTheme": "spring",
        "sceneTime": "morning",
        "sceneCode": "export default function scene() {}",
        "musicCode": "export default function music() {}",
        "prompts": None,
        "simulation": False,
    }


@pytest.mark.asyncio
async def test_create_then_get_round_trips_snapshot(storage):
    owner = Owner(owner_type="user", owner_id="user-1", owner_email="user@example.com")
    created = await storage.shares.create_share(_snapshot(), owner=owner)

    assert is_valid_share_id(created.share_id)
    assert len(created.share_id) == 12
    assert created.reused is False

    fetched = await storage.shares.get_share(created.share_id)
    assert fetched is not None
    assert fetched.snapshot == _snapshot()
    assert fetched.content_hash == created.content_hash
    assert fetched.owner_type == "user"
    assert fetched.owner_id == "user-1"
    assert fetched.view_count == 0


@pytest.mark.asyncio
async def test_content_hash_is_digest_of_stored_blob(storage):
    created = await storage.shares.create_share(_snapshot())

    raw = await storage.blobs.get(created.payload_path)
    assert raw is not None
    assert hashlib.sha256(raw).hexdigest() == created.content_hash


@pytest.mark.asyncio
async def test_same_idempotency_key_returns_original_share(storage):
    first = await storage.shares.create_share(_snapshot(), idempotency_key="client-key-0001")
    second = await storage.shares.create_share(_snapshot("different"), idempotency_key="client-key-0001")

    assert first.reused is False
    assert second.reused is True
    assert second.share_id == first.share_id
    assert second.snapshot == _snapshot()


@pytest.mark.asyncio
async def test_without_key_every_call_creates_a_new_share(storage):
    first = await storage.shares.create_share(_snapshot())
    second = await storage.shares.create_share(_snapshot())

    assert first.share_id != second.share_id
    assert not first.reused and not second.reused


@pytest.mark.asyncio
async def test_concurrent_creates_with_same_key_converge_on_one_share(storage):
    results = await asyncio.gather(
        *[storage.shares.create_share(_snapshot(), idempotency_key="race-key-0001") for _ in range(4)]
    )

    assert len({record.share_id for record in results}) == 1
    assert sum(1 for record in results if not record.reused) == 1

    winner = results[0].share_id
    assert await storage.shares.get_share(winner) is not None


@pytest.mark.asyncio
async def test_lost_race_discards_its_own_share(storage):
    key = "race-key-0002"
    metadata = storage.shares._metadata
    with patch.object(metadata, "insert", wraps=metadata.insert) as insert:
        results = await asyncio.gather(
            *[storage.shares.create_share(_snapshot(), idempotency_key=key) for _ in range(5)]
        )

    winner = results[0].share_id
    mapping = await storage.shares._idempotency.get(idempotency_hash(key))
    assert mapping is not None
    assert mapping.target_id == winner

    attempted = {call.args[0].share_id for call in insert.call_args_list}
    losers = attempted - {winner}
    assert winner in attempted
    for share_id in losers:
        assert await metadata.get(share_id) is None
        assert await storage.blobs.get(f"shares/{share_id}.json") is None

    blob_files = [
        path for path in (storage.blobs._root / "shares").iterdir() if not path.name.startswith(".")
    ]
    assert [path.name for path in blob_files] == [f"{winner}.json"]


@pytest.mark.asyncio
async def test_views_increase_monotonically(storage):
    created = await storage.shares.create_share(_snapshot())

    counts = []
    for _ in range(3):
        record = await storage.shares.get_share(created.share_id, increment_view=True)
        counts.append(record.view_count)

    assert counts == [1, 2, 3]
    assert record.last_viewed_at is not None


@pytest.mark.asyncio
async def test_concurrent_views_are_all_counted(storage):
    created = await storage.shares.create_share(_snapshot())

    await asyncio.gather(
        *[storage.shares.get_share(created.share_id, increment_view=True) for _ in range(5)]
    )

    stats = await storage.shares.get_share_stats(created.share_id)
    assert stats.view_count == 5


@pytest.mark.asyncio
async def test_stats_do_not_count_views(storage):
    created = await storage.shares.create_share(_snapshot())

    await storage.shares.get_share_stats(created.share_id)
    await storage.shares.get_share(created.share_id)
    stats = await storage.shares.get_share_stats(created.share_id)

    assert stats.view_count == 0
    assert stats.last_viewed_at is None
    assert stats.content_hash == created.content_hash


@pytest.mark.asyncio
async def test_unknown_share_is_not_found(storage):
    assert await storage.shares.get_share("unknownShare1", increment_view=True) is None
    assert await storage.shares.get_share_stats("unknownShare1") is None


@pytest.mark.asyncio
async def test_missing_blob_is_treated_as_not_found(storage):
    created = await storage.shares.create_share(_snapshot())
    await storage.blobs.delete(created.payload_path)

    assert await storage.shares.get_share(created.share_id, increment_view=True) is None
    stats = await storage.shares.get_share_stats(created.share_id)
    assert stats.view_count == 0


@pytest.mark.asyncio
async def test_corrupt_blob_is_treated_as_not_found(storage):
    created = await storage.shares.create_share(_snapshot())
    await storage.blobs.put(created.payload_path, b"{not json")

    assert await storage.shares.get_share(created.share_id) is None
