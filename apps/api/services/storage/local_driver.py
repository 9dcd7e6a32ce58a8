"""Local filesystem driver: one JSON document per record.

create-if-absent hard-links a fully written temp file onto the record path,
which fails if the record already exists. Read-modify-write runs while holding
an exclusive ``<record>.lock`` file.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import os
import re
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os

from services.ids import create_job_id
from services.storage.base import (
    GenerationMetadataTable,
    IdempotencyIndex,
    JobStore,
    QuotaCounter,
    ShareMetadataTable,
)
from services.storage.types import (
    DEFAULT_JOB_ERROR,
    SCHEMA_VERSION,
    GenerationRecord,
    IdempotencyMapping,
    JobRecord,
    QuotaResult,
    ShareRecord,
    StorageError,
    format_time,
    parse_time,
    utcnow,
)

logger = logging.getLogger(__name__)

RECORD_KEY_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,200}$")
LOCK_TIMEOUT_SECONDS = 10.0
LOCK_STALE_SECONDS = 30.0
LOCK_POLL_SECONDS = 0.01


class JsonRecordDirectory:
    """A directory of ``<key>.json`` documents."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not RECORD_KEY_RE.match(key or "") or key.startswith("."):
            raise StorageError(f"Invalid record key: {key!r}")
        return self.root / f"{key}.json"

    def _temp_path(self, target: Path) -> Path:
        return target.with_name(f".{target.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")

    async def _write_temp(self, target: Path, document: Dict[str, Any]) -> Path:
        temp_path = self._temp_path(target)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as handle:
            await handle.write(json.dumps(document, ensure_ascii=False))
        return temp_path

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as handle:
                raw = await handle.read()
        except FileNotFoundError:
            return None
        try:
            document = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Record %s is not valid JSON", path)
            return None
        return document if isinstance(document, dict) else None

    async def create(self, key: str, document: Dict[str, Any]) -> bool:
        """Write ``document`` only if no record exists for ``key``."""
        target = self.path_for(key)
        temp_path = await self._write_temp(target, document)
        try:
            await aiofiles.os.link(temp_path, target)
        except FileExistsError:
            return False
        finally:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(temp_path)
        return True

    async def write(self, key: str, document: Dict[str, Any]) -> None:
        target = self.path_for(key)
        temp_path = await self._write_temp(target, document)
        await aiofiles.os.replace(temp_path, target)

    async def delete(self, key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(self.path_for(key))

    async def keys(self) -> List[str]:
        names = await aiofiles.os.listdir(self.root)
        return [name[: -len(".json")] for name in names if name.endswith(".json") and not name.startswith(".")]

    @contextlib.asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        lock_path = self.path_for(key).with_suffix(".lock")
        deadline = time.monotonic() + LOCK_TIMEOUT_SECONDS
        while True:
            try:
                async with aiofiles.open(lock_path, "x") as handle:
                    await handle.write(f"{os.getpid()} {time.time()}")
                owned = await aiofiles.os.stat(lock_path)
                break
            except FileExistsError:
                await self._clear_stale_lock(lock_path)
                if time.monotonic() > deadline:
                    raise StorageError(f"Timed out waiting for lock on {key}")
                await asyncio.sleep(LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            # Only release the lock file this holder created.
            await self._remove_if_same(lock_path, owned)

    async def _remove_if_same(self, lock_path: Path, expected: os.stat_result) -> bool:
        """
        Remove ``lock_path`` only while it is still the file described by ``expected``.

        The lock is first renamed to a private name, so no other waiter can
        remove it concurrently. A file that turns out to be a newer lock is
        linked back into place.
        """
        claimed = lock_path.with_name(f".{lock_path.name}.{uuid.uuid4().hex}.claimed")
        try:
            await aiofiles.os.rename(lock_path, claimed)
        except FileNotFoundError:
            return False
        current = await aiofiles.os.stat(claimed)
        same = (current.st_dev, current.st_ino) == (expected.st_dev, expected.st_ino)
        if not same:
            try:
                await aiofiles.os.link(claimed, lock_path)
            except FileExistsError:
                logger.warning("Lock %s was retaken while restoring it", lock_path)
        await aiofiles.os.remove(claimed)
        return same

    async def _clear_stale_lock(self, lock_path: Path) -> None:
        try:
            stat = await aiofiles.os.stat(lock_path)
        except FileNotFoundError:
            return
        if time.time() - stat.st_mtime > LOCK_STALE_SECONDS:
            if await self._remove_if_same(lock_path, stat):
                logger.warning("Removed stale lock %s", lock_path)

    async def update(
        self,
        key: str,
        mutate: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Read, mutate and write one record while holding its lock.

        ``mutate`` receives the current document (None when absent) and returns
        the document to write, or None to leave the record untouched. Returns
        the document as stored after the call.
        """
        async with self.locked(key):
            current = await self.read(key)
            updated = mutate(current)
            if updated is None:
                return current
            await self.write(key, updated)
            return updated


def _share_to_doc(record: ShareRecord) -> Dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "shareId": record.share_id,
        "createdAt": format_time(record.created_at),
        "contentHash": record.content_hash,
        "payloadPath": record.payload_path,
        "ownerType": record.owner_type,
        "ownerId": record.owner_id,
        "ownerEmail": record.owner_email,
        "idempotencyHash": record.idempotency_hash,
        "viewCount": record.view_count,
        "lastViewedAt": format_time(record.last_viewed_at),
    }


def _share_from_doc(doc: Dict[str, Any]) -> ShareRecord:
    return ShareRecord(
        share_id=doc["shareId"],
        created_at=parse_time(doc.get("createdAt")),
        content_hash=doc.get("contentHash") or "",
        payload_path=doc["payloadPath"],
        owner_type=doc.get("ownerType"),
        owner_id=doc.get("ownerId"),
        owner_email=doc.get("ownerEmail"),
        idempotency_hash=doc.get("idempotencyHash"),
        view_count=int(doc.get("viewCount") or 0),
        last_viewed_at=parse_time(doc.get("lastViewedAt")),
    )


def _job_to_doc(job: JobRecord) -> Dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "jobId": job.job_id,
        "status": job.status,
        "createdAt": format_time(job.created_at),
        "updatedAt": format_time(job.updated_at),
        "attemptCount": job.attempt_count,
        "lastAttemptAt": format_time(job.last_attempt_at),
        "error": job.error,
        "result": job.result,
    }


def _job_from_doc(doc: Dict[str, Any]) -> JobRecord:
    created_at = parse_time(doc.get("createdAt"))
    return JobRecord(
        job_id=doc["jobId"],
        status=doc.get("status") or "queued",
        created_at=created_at,
        updated_at=parse_time(doc.get("updatedAt")) or created_at,
        attempt_count=int(doc.get("attemptCount") or 0),
        last_attempt_at=parse_time(doc.get("lastAttemptAt")),
        error=doc.get("error"),
        result=doc.get("result"),
    )


def _generation_to_doc(record: GenerationRecord) -> Dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "generationId": record.generation_id,
        "createdAt": format_time(record.created_at),
        "ownerType": record.owner_type,
        "ownerId": record.owner_id,
        "ownerEmail": record.owner_email,
        "intention": record.intention,
        "durationSeconds": record.duration_seconds,
        "backgroundTheme": record.background_theme,
        "sceneTime": record.scene_time,
        "thumbnailDataUrl": record.thumbnail_data_url,
        "sceneModel": record.scene_model,
        "musicModel": record.music_model,
        "payloadPath": record.payload_path,
    }


def _generation_from_doc(doc: Dict[str, Any]) -> GenerationRecord:
    return GenerationRecord(
        generation_id=doc["generationId"],
        created_at=parse_time(doc.get("createdAt")),
        owner_type=doc.get("ownerType") or "",
        owner_id=doc.get("ownerId") or "",
        owner_email=doc.get("ownerEmail") or "",
        payload_path=doc["payloadPath"],
        intention=doc.get("intention") or "",
        duration_seconds=int(doc.get("durationSeconds") or 60),
        background_theme=doc.get("backgroundTheme") or "spring",
        scene_time=doc.get("sceneTime") or "morning",
        thumbnail_data_url=doc.get("thumbnailDataUrl") or "",
        scene_model=doc.get("sceneModel") or "",
        music_model=doc.get("musicModel") or "",
    )


class LocalShareMetadata(ShareMetadataTable):
    def __init__(self, data_dir: Path):
        self._records = JsonRecordDirectory(Path(data_dir) / "shares")

    async def insert(self, record: ShareRecord) -> None:
        if not await self._records.create(record.share_id, _share_to_doc(record)):
            raise StorageError(f"Share {record.share_id} already exists")

    async def get(self, share_id: str) -> Optional[ShareRecord]:
        doc = await self._records.read(share_id)
        return _share_from_doc(doc) if doc else None

    async def increment_views(self, share_id: str, viewed_at: datetime) -> Optional[ShareRecord]:
        def bump(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if doc is None:
                return None
            return {**doc, "viewCount": int(doc.get("viewCount") or 0) + 1, "lastViewedAt": format_time(viewed_at)}

        doc = await self._records.update(share_id, bump)
        return _share_from_doc(doc) if doc else None

    async def delete(self, share_id: str) -> None:
        await self._records.delete(share_id)


class LocalIdempotencyIndex(IdempotencyIndex):
    def __init__(self, data_dir: Path):
        self._records = JsonRecordDirectory(Path(data_dir) / "idempotency")

    async def get(self, idempotency_hash: str) -> Optional[IdempotencyMapping]:
        doc = await self._records.read(idempotency_hash)
        if not doc:
            return None
        return IdempotencyMapping(
            idempotency_hash=doc.get("idempotencyHash") or idempotency_hash,
            target_id=doc.get("targetId") or "",
            created_at=parse_time(doc.get("createdAt")),
            content_hash=doc.get("contentHash"),
        )

    async def create(self, mapping: IdempotencyMapping) -> bool:
        return await self._records.create(
            mapping.idempotency_hash,
            {
                "schemaVersion": SCHEMA_VERSION,
                "idempotencyHash": mapping.idempotency_hash,
                "targetId": mapping.target_id,
                "contentHash": mapping.content_hash,
                "createdAt": format_time(mapping.created_at),
            },
        )


class LocalJobStore(JobStore):
    def __init__(self, data_dir: Path):
        self._records = JsonRecordDirectory(Path(data_dir) / "jobs")

    async def create_job(self) -> JobRecord:
        now = utcnow()
        job = JobRecord(job_id=create_job_id(), status="queued", created_at=now, updated_at=now)
        if not await self._records.create(job.job_id, _job_to_doc(job)):
            raise StorageError(f"Job {job.job_id} already exists")
        logger.info("Share job %s queued", job.job_id)
        return job

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        doc = await self._records.read(job_id)
        return _job_from_doc(doc) if doc else None

    async def _transition(
        self, job_id: str, apply: Callable[[JobRecord], None]
    ) -> Optional[JobRecord]:
        def mutate(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if doc is None:
                return None
            job = _job_from_doc(doc)
            if job.status == "completed":
                return None
            apply(job)
            return _job_to_doc(job)

        doc = await self._records.update(job_id, mutate)
        return _job_from_doc(doc) if doc else None

    async def mark_processing(self, job_id: str) -> Optional[JobRecord]:
        now = utcnow()

        def start(job: JobRecord) -> None:
            job.status = "processing"
            job.attempt_count += 1
            job.last_attempt_at = now
            job.updated_at = now
            job.error = None

        job = await self._transition(job_id, start)
        if job is not None:
            logger.info("Share job %s status=%s attempts=%s", job_id, job.status, job.attempt_count)
        return job

    async def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional[JobRecord]:
        def complete(job: JobRecord) -> None:
            job.status = "completed"
            job.result = dict(result)
            job.error = None
            job.updated_at = utcnow()

        return await self._transition(job_id, complete)

    async def fail_job(self, job_id: str, message: Optional[str]) -> Optional[JobRecord]:
        error = ((message or "").strip() or DEFAULT_JOB_ERROR)[:1000]

        def fail(job: JobRecord) -> None:
            job.status = "failed"
            job.error = error
            job.updated_at = utcnow()

        return await self._transition(job_id, fail)

    async def fail_stalled_jobs(self, older_than: datetime, message: str) -> int:
        expired: List[str] = []

        def expire(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if doc is None:
                return None
            job = _job_from_doc(doc)
            if job.status not in ("queued", "processing") or job.updated_at >= older_than:
                return None
            job.status = "failed"
            job.error = message
            job.updated_at = utcnow()
            expired.append(job.job_id)
            return _job_to_doc(job)

        for job_id in await self._records.keys():
            await self._records.update(job_id, expire)
        return len(expired)


class LocalQuotaCounter(QuotaCounter):
    def __init__(self, data_dir: Path):
        self._records = JsonRecordDirectory(Path(data_dir) / "quota")

    async def _acquire(self, date_key: str, limit: int) -> QuotaResult:
        outcome: Dict[str, Any] = {}

        def reserve(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            now = format_time(utcnow())
            if doc is None:
                doc = {"schemaVersion": SCHEMA_VERSION, "dateKey": date_key, "count": 0, "createdAt": now}
            current = int(doc.get("count") or 0)
            if current >= limit:
                outcome["acquired"] = False
                outcome["current"] = current
                return None
            outcome["acquired"] = True
            outcome["current"] = current + 1
            return {**doc, "count": current + 1, "limit": limit, "updatedAt": now}

        await self._records.update(date_key, reserve)
        current = int(outcome["current"])
        if not outcome["acquired"]:
            return QuotaResult(acquired=False, current=current, remaining=0)
        return QuotaResult(acquired=True, current=current, remaining=max(0, limit - current))

    async def _release(self, date_key: str) -> None:
        def decrement(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if doc is None or int(doc.get("count") or 0) <= 0:
                return None
            return {**doc, "count": int(doc["count"]) - 1, "updatedAt": format_time(utcnow())}

        await self._records.update(date_key, decrement)


class LocalGenerationMetadata(GenerationMetadataTable):
    """Generation documents plus a per-owner directory of marker files for scans."""

    def __init__(self, data_dir: Path):
        self._records = JsonRecordDirectory(Path(data_dir) / "generations")
        self._owner_root = Path(data_dir) / "generations_by_owner"

    def _owner_dir(self, owner_type: str, owner_id: str) -> Path:
        digest = hashlib.sha256(f"{owner_type}:{owner_id}".encode("utf-8")).hexdigest()
        return self._owner_root / digest

    async def insert(self, record: GenerationRecord) -> None:
        if not await self._records.create(record.generation_id, _generation_to_doc(record)):
            raise StorageError(f"Generation {record.generation_id} already exists")
        owner_dir = self._owner_dir(record.owner_type, record.owner_id)
        await aiofiles.os.makedirs(owner_dir, exist_ok=True)
        async with aiofiles.open(owner_dir / record.generation_id, "w", encoding="utf-8") as handle:
            await handle.write(format_time(record.created_at) or "")

    async def get(self, generation_id: str) -> Optional[GenerationRecord]:
        doc = await self._records.read(generation_id)
        return _generation_from_doc(doc) if doc else None

    async def delete(self, generation_id: str) -> None:
        record = await self.get(generation_id)
        await self._records.delete(generation_id)
        if record is not None:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(self._owner_dir(record.owner_type, record.owner_id) / generation_id)

    async def _owned_ids(self, owner_type: str, owner_id: str) -> List[str]:
        try:
            return await aiofiles.os.listdir(self._owner_dir(owner_type, owner_id))
        except FileNotFoundError:
            return []

    async def count_for_owner(self, owner_type: str, owner_id: str, *, cap: int) -> int:
        return min(len(await self._owned_ids(owner_type, owner_id)), cap)

    async def list_for_owner(self, owner_type: str, owner_id: str, *, limit: int) -> List[GenerationRecord]:
        records = []
        for generation_id in await self._owned_ids(owner_type, owner_id):
            record = await self.get(generation_id)
            if record is not None and record.is_owned_by(owner_type, owner_id):
                records.append(record)
        records.sort(key=lambda item: item.created_at, reverse=True)
        return records[:limit]

    async def update_thumbnail(
        self,
        generation_id: str,
        *,
        owner_type: str,
        owner_id: str,
        thumbnail_data_url: str,
    ) -> Optional[GenerationRecord]:
        matched: Dict[str, bool] = {}

        def set_thumbnail(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if doc is None or doc.get("ownerType") != owner_type or doc.get("ownerId") != owner_id:
                return None
            matched["owner"] = True
            return {**doc, "thumbnailDataUrl": thumbnail_data_url}

        doc = await self._records.update(generation_id, set_thumbnail)
        if not doc or not matched:
            return None
        return _generation_from_doc(doc)
