"""Snapshot (share) store: idempotent create, read with view counting, stats."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.ids import create_share_id, idempotency_hash, sha256_hex
from services.storage.base import BlobStore, IdempotencyIndex, ShareMetadataTable
from services.storage.blobs import normalize_prefix
from services.storage.types import (
    SCHEMA_VERSION,
    IdempotencyMapping,
    Owner,
    ShareRecord,
    ShareStats,
    utcnow,
)

logger = logging.getLogger(__name__)


def encode_share_envelope(share_id: str, created_at: datetime, snapshot: Dict[str, Any]) -> bytes:
    """Canonical blob bytes; the content hash is computed over exactly these bytes."""
    envelope = {
        "schemaVersion": SCHEMA_VERSION,
        "shareId": share_id,
        "createdAt": created_at.isoformat(),
        "snapshot": snapshot,
    }
    return json.dumps(envelope, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class CreatedArtifacts:
    """Resources written by a single create call, reversed when the call does not win."""

    def __init__(self, blobs: BlobStore, metadata: ShareMetadataTable):
        self._blobs = blobs
        self._metadata = metadata
        self._blob_paths: List[str] = []
        self._share_ids: List[str] = []

    def track_blob(self, path: str) -> None:
        self._blob_paths.append(path)

    def track_share(self, share_id: str) -> None:
        self._share_ids.append(share_id)

    async def discard(self) -> None:
        """Best-effort removal; an orphaned blob without metadata is unreachable."""
        for share_id in reversed(self._share_ids):
            try:
                await self._metadata.delete(share_id)
            except Exception as exc:
                logger.warning("Could not discard share metadata %s: %s", share_id, exc)
        for path in reversed(self._blob_paths):
            try:
                await self._blobs.delete(path)
            except Exception as exc:
                logger.warning("Could not discard share blob %s: %s", path, exc)
        self._share_ids.clear()
        self._blob_paths.clear()


class ShareStore:
    """Composes a blob store, a metadata table and an idempotency index."""

    def __init__(
        self,
        *,
        blobs: BlobStore,
        metadata: ShareMetadataTable,
        idempotency: IdempotencyIndex,
        object_prefix: str = "shares",
    ):
        self._blobs = blobs
        self._metadata = metadata
        self._idempotency = idempotency
        self._prefix = normalize_prefix(object_prefix) or "shares"

    async def _read_snapshot(self, record: ShareRecord) -> Optional[Dict[str, Any]]:
        raw = await self._blobs.get(record.payload_path)
        if raw is None:
            logger.warning("Share %s has metadata but no payload at %s", record.share_id, record.payload_path)
            return None
        try:
            envelope = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Share %s payload is not valid JSON", record.share_id)
            return None
        snapshot = envelope.get("snapshot") if isinstance(envelope, dict) else None
        if not isinstance(snapshot, dict):
            return None
        return snapshot

    async def _load(self, share_id: str) -> Optional[ShareRecord]:
        record = await self._metadata.get(share_id)
        if record is None:
            return None
        snapshot = await self._read_snapshot(record)
        if snapshot is None:
            return None
        return record.with_snapshot(snapshot)

    async def _load_mapped(self, key_hash: str) -> Optional[ShareRecord]:
        mapping = await self._idempotency.get(key_hash)
        if mapping is None or not mapping.target_id:
            return None
        return await self._load(mapping.target_id)

    async def create_share(
        self,
        snapshot: Dict[str, Any],
        *,
        idempotency_key: Optional[str] = None,
        owner: Optional[Owner] = None,
    ) -> ShareRecord:
        """
        Persist a snapshot and return its record.

        With an idempotency key, a prior record for the same key is returned with
        ``reused=True``. Concurrent callers with the same key race on the index's
        create-if-absent; losers discard their own blob and metadata.
        """
        key = (idempotency_key or "").strip()
        key_hash = idempotency_hash(key) if key else None

        if key_hash:
            existing = await self._load_mapped(key_hash)
            if existing is not None:
                logger.info("Share %s reused for idempotency key", existing.share_id)
                existing.reused = True
                return existing

        share_id = create_share_id()
        created_at = utcnow()
        raw = encode_share_envelope(share_id, created_at, snapshot)
        content_hash = sha256_hex(raw)
        payload_path = f"{self._prefix}/{share_id}.json"
        record = ShareRecord(
            share_id=share_id,
            created_at=created_at,
            content_hash=content_hash,
            payload_path=payload_path,
            owner_type=owner.owner_type if owner else None,
            owner_id=owner.owner_id if owner else None,
            owner_email=owner.owner_email if owner else None,
            idempotency_hash=key_hash,
        )

        artifacts = CreatedArtifacts(self._blobs, self._metadata)
        try:
            await self._blobs.put(payload_path, raw)
            artifacts.track_blob(payload_path)
            await self._metadata.insert(record)
            artifacts.track_share(share_id)
        except Exception:
            await artifacts.discard()
            raise

        if key_hash:
            # A failure here leaves the mapping state unknown, so our artifacts are kept.
            claimed = await self._idempotency.create(
                IdempotencyMapping(
                    idempotency_hash=key_hash,
                    target_id=share_id,
                    created_at=created_at,
                    content_hash=content_hash,
                )
            )
            if not claimed:
                winner = await self._load_mapped(key_hash)
                if winner is not None:
                    await artifacts.discard()
                    logger.info("Share %s lost idempotency race to %s", share_id, winner.share_id)
                    winner.reused = True
                    return winner
                logger.warning(
                    "Idempotency mapping exists but its share is unreadable; keeping share %s", share_id
                )

        logger.info("Share %s created", share_id)
        return record.with_snapshot(snapshot, reused=False)

    async def get_share(self, share_id: str, *, increment_view: bool = False) -> Optional[ShareRecord]:
        record = await self._load(share_id)
        if record is None or not increment_view:
            return record
        updated = await self._metadata.increment_views(share_id, utcnow())
        if updated is None:
            return None
        return updated.with_snapshot(record.snapshot or {})

    async def get_share_stats(self, share_id: str) -> Optional[ShareStats]:
        record = await self._metadata.get(share_id)
        if record is None:
            return None
        return ShareStats(
            share_id=record.share_id,
            created_at=record.created_at,
            content_hash=record.content_hash,
            view_count=record.view_count,
            last_viewed_at=record.last_viewed_at,
        )
