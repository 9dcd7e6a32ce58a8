"""Storage capability interfaces implemented by the sql and local drivers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.storage.types import (
    GenerationRecord,
    IdempotencyMapping,
    JobRecord,
    QuotaResult,
    ShareRecord,
)


class BlobStore(ABC):
    """Write-once payload documents addressed by path."""

    kind: str

    @abstractmethod
    async def put(self, path: str, data: bytes, *, content_type: str = "application/json") -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, path: str) -> Optional[bytes]:
        """Return the blob bytes, or None when the blob does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a blob; deleting a missing blob is not an error."""
        raise NotImplementedError

    def describe(self, path: str) -> str:
        """Fully-qualified location reported to clients (e.g. ``s3://bucket/key``)."""
        return path


class ShareMetadataTable(ABC):
    """Point reads/writes for share metadata rows."""

    @abstractmethod
    async def insert(self, record: ShareRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, share_id: str) -> Optional[ShareRecord]:
        raise NotImplementedError

    @abstractmethod
    async def increment_views(self, share_id: str, viewed_at: datetime) -> Optional[ShareRecord]:
        """Atomically bump view_count and set last_viewed_at; returns the updated row."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, share_id: str) -> None:
        raise NotImplementedError


class IdempotencyIndex(ABC):
    """Idempotency-key digest -> target id, with atomic create-if-absent."""

    @abstractmethod
    async def get(self, idempotency_hash: str) -> Optional[IdempotencyMapping]:
        raise NotImplementedError

    @abstractmethod
    async def create(self, mapping: IdempotencyMapping) -> bool:
        """Insert the mapping. Returns False when the key already exists."""
        raise NotImplementedError


class JobStore(ABC):
    """Async job state machine: queued -> processing -> completed | failed, failed -> processing."""

    @abstractmethod
    async def create_job(self) -> JobRecord:
        raise NotImplementedError

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        raise NotImplementedError

    @abstractmethod
    async def mark_processing(self, job_id: str) -> Optional[JobRecord]:
        """Start an attempt. Completed jobs are returned unchanged."""
        raise NotImplementedError

    @abstractmethod
    async def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional[JobRecord]:
        """Complete the job. The first completion wins; later calls return it unchanged."""
        raise NotImplementedError

    @abstractmethod
    async def fail_job(self, job_id: str, message: Optional[str]) -> Optional[JobRecord]:
        raise NotImplementedError

    @abstractmethod
    async def fail_stalled_jobs(self, older_than: datetime, message: str) -> int:
        """Fail queued/processing jobs not updated since ``older_than``."""
        raise NotImplementedError


class QuotaCounter(ABC):
    """Global per-day creation counter bounded by a limit."""

    async def acquire(self, date_key: str, limit: int) -> QuotaResult:
        if not date_key or limit is None or int(limit) <= 0:
            return QuotaResult(acquired=True, current=0, remaining=0)
        return await self._acquire(date_key, int(limit))

    async def release(self, date_key: str) -> None:
        if not date_key:
            return
        await self._release(date_key)

    @abstractmethod
    async def _acquire(self, date_key: str, limit: int) -> QuotaResult:
        raise NotImplementedError

    @abstractmethod
    async def _release(self, date_key: str) -> None:
        raise NotImplementedError


class GenerationMetadataTable(ABC):
    """Generation metadata rows, scannable by owner."""

    @abstractmethod
    async def insert(self, record: GenerationRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, generation_id: str) -> Optional[GenerationRecord]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, generation_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def count_for_owner(self, owner_type: str, owner_id: str, *, cap: int) -> int:
        """Count rows for an owner, stopping once ``cap`` rows have been seen."""
        raise NotImplementedError

    @abstractmethod
    async def list_for_owner(self, owner_type: str, owner_id: str, *, limit: int) -> List[GenerationRecord]:
        """Newest first."""
        raise NotImplementedError

    @abstractmethod
    async def update_thumbnail(
        self,
        generation_id: str,
        *,
        owner_type: str,
        owner_id: str,
        thumbnail_data_url: str,
    ) -> Optional[GenerationRecord]:
        """Set the thumbnail only when the stored owner matches; None otherwise."""
        raise NotImplementedError
