"""Networked transactional driver: async SQLAlchemy metadata tables.

create-if-absent is a primary-key INSERT that fails with IntegrityError;
read-modify-write is a single conditional UPDATE ... RETURNING.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.generation import Generation
from models.generation_quota import GenerationDailyQuota
from models.share import Share
from models.share_idempotency import ShareIdempotency
from models.share_job import ShareJob
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
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

SessionMaker = async_sessionmaker[AsyncSession]

shares_table = Share.__table__
jobs_table = ShareJob.__table__
quota_table = GenerationDailyQuota.__table__
generations_table = Generation.__table__
quota_count = quota_table.c["count"]


def _share_from_row(row: Any) -> ShareRecord:
    return ShareRecord(
        share_id=row.share_id,
        created_at=as_utc(row.created_at),
        content_hash=row.content_hash or "",
        payload_path=row.payload_path,
        owner_type=row.owner_type,
        owner_id=row.owner_id,
        owner_email=row.owner_email,
        idempotency_hash=row.idempotency_hash,
        view_count=int(row.view_count or 0),
        last_viewed_at=as_utc(row.last_viewed_at),
    )


def _job_from_row(row: Any) -> JobRecord:
    return JobRecord(
        job_id=row.job_id,
        status=row.status or "queued",
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at) or as_utc(row.created_at),
        attempt_count=int(row.attempt_count or 0),
        last_attempt_at=as_utc(row.last_attempt_at),
        error=row.error,
        result=row.result,
    )


def _generation_from_row(row: Any) -> GenerationRecord:
    return GenerationRecord(
        generation_id=row.generation_id,
        created_at=as_utc(row.created_at),
        owner_type=row.owner_type,
        owner_id=row.owner_id,
        owner_email=row.owner_email or "",
        payload_path=row.payload_path,
        intention=row.intention or "",
        duration_seconds=int(row.duration_seconds or 60),
        background_theme=row.background_theme or "spring",
        scene_time=row.scene_time or "morning",
        thumbnail_data_url=row.thumbnail_data_url or "",
        scene_model=row.scene_model or "",
        music_model=row.music_model or "",
    )


class SqlShareMetadata(ShareMetadataTable):
    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def insert(self, record: ShareRecord) -> None:
        async with self._session_maker() as db:
            db.add(
                Share(
                    share_id=record.share_id,
                    schema_version=SCHEMA_VERSION,
                    created_at=record.created_at,
                    content_hash=record.content_hash,
                    payload_path=record.payload_path,
                    owner_type=record.owner_type,
                    owner_id=record.owner_id,
                    owner_email=record.owner_email,
                    idempotency_hash=record.idempotency_hash,
                    view_count=0,
                    last_viewed_at=None,
                )
            )
            await db.commit()

    async def get(self, share_id: str) -> Optional[ShareRecord]:
        async with self._session_maker() as db:
            result = await db.execute(select(Share).where(Share.share_id == share_id))
            row = result.scalar_one_or_none()
            return _share_from_row(row) if row else None

    async def increment_views(self, share_id: str, viewed_at: datetime) -> Optional[ShareRecord]:
        statement = (
            update(shares_table)
            .where(shares_table.c.share_id == share_id)
            .values(view_count=shares_table.c.view_count + 1, last_viewed_at=viewed_at)
            .returning(*shares_table.c)
        )
        async with self._session_maker() as db:
            row = (await db.execute(statement)).first()
            await db.commit()
            return _share_from_row(row) if row else None

    async def delete(self, share_id: str) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(shares_table).where(shares_table.c.share_id == share_id))
            await db.commit()


class SqlIdempotencyIndex(IdempotencyIndex):
    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def get(self, idempotency_hash: str) -> Optional[IdempotencyMapping]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(ShareIdempotency).where(ShareIdempotency.idempotency_hash == idempotency_hash)
            )
            row = result.scalar_one_or_none()
            if not row:
                return None
            return IdempotencyMapping(
                idempotency_hash=row.idempotency_hash,
                target_id=row.target_id,
                created_at=as_utc(row.created_at),
                content_hash=row.content_hash,
            )

    async def create(self, mapping: IdempotencyMapping) -> bool:
        async with self._session_maker() as db:
            db.add(
                ShareIdempotency(
                    idempotency_hash=mapping.idempotency_hash,
                    schema_version=SCHEMA_VERSION,
                    target_id=mapping.target_id,
                    content_hash=mapping.content_hash,
                    created_at=mapping.created_at,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
            return True


class SqlJobStore(JobStore):
    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def create_job(self) -> JobRecord:
        now = utcnow()
        job = JobRecord(job_id=create_job_id(), status="queued", created_at=now, updated_at=now)
        async with self._session_maker() as db:
            db.add(
                ShareJob(
                    job_id=job.job_id,
                    schema_version=SCHEMA_VERSION,
                    status=job.status,
                    created_at=now,
                    updated_at=now,
                    attempt_count=0,
                )
            )
            await db.commit()
        logger.info("Share job %s queued", job.job_id)
        return job

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        async with self._session_maker() as db:
            result = await db.execute(select(ShareJob).where(ShareJob.job_id == job_id))
            row = result.scalar_one_or_none()
            return _job_from_row(row) if row else None

    async def _transition(self, job_id: str, values: Dict[str, Any]) -> Optional[JobRecord]:
        """Apply ``values`` unless the job is completed; returns the resulting record."""
        statement = (
            update(jobs_table)
            .where(jobs_table.c.job_id == job_id, jobs_table.c.status != "completed")
            .values(**values)
            .returning(*jobs_table.c)
        )
        async with self._session_maker() as db:
            row = (await db.execute(statement)).first()
            await db.commit()
        if row is not None:
            return _job_from_row(row)
        return await self.get_job(job_id)

    async def mark_processing(self, job_id: str) -> Optional[JobRecord]:
        now = utcnow()
        job = await self._transition(
            job_id,
            {
                "status": "processing",
                "attempt_count": jobs_table.c.attempt_count + 1,
                "last_attempt_at": now,
                "updated_at": now,
                "error": None,
            },
        )
        if job is not None:
            logger.info("Share job %s status=%s attempts=%s", job_id, job.status, job.attempt_count)
        return job

    async def complete_job(self, job_id: str, result: Dict[str, Any]) -> Optional[JobRecord]:
        return await self._transition(
            job_id,
            {"status": "completed", "result": dict(result), "error": None, "updated_at": utcnow()},
        )

    async def fail_job(self, job_id: str, message: Optional[str]) -> Optional[JobRecord]:
        error = (message or "").strip() or DEFAULT_JOB_ERROR
        return await self._transition(
            job_id,
            {"status": "failed", "error": error[:1000], "updated_at": utcnow()},
        )

    async def fail_stalled_jobs(self, older_than: datetime, message: str) -> int:
        statement = (
            update(jobs_table)
            .where(
                jobs_table.c.status.in_(("queued", "processing")),
                jobs_table.c.updated_at < older_than,
            )
            .values(status="failed", error=message, updated_at=utcnow())
        )
        async with self._session_maker() as db:
            result = await db.execute(statement)
            await db.commit()
            return int(result.rowcount or 0)


class SqlQuotaCounter(QuotaCounter):
    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def _acquire(self, date_key: str, limit: int) -> QuotaResult:
        # Two passes: the first may lose the race to create the day's row.
        for _ in range(2):
            now = utcnow()
            increment = (
                update(quota_table)
                .where(quota_table.c.date_key == date_key, quota_count < limit)
                .values(count=quota_count + 1, daily_limit=limit, updated_at=now)
                .returning(quota_count)
            )
            async with self._session_maker() as db:
                row = (await db.execute(increment)).first()
                if row is not None:
                    await db.commit()
                    current = int(row[0])
                    return QuotaResult(acquired=True, current=current, remaining=max(0, limit - current))

                existing = await db.execute(
                    select(quota_count).where(quota_table.c.date_key == date_key)
                )
                current = existing.scalar_one_or_none()
                if current is not None:
                    await db.rollback()
                    return QuotaResult(acquired=False, current=int(current), remaining=0)

                db.add(
                    GenerationDailyQuota(
                        date_key=date_key,
                        schema_version=SCHEMA_VERSION,
                        count=1,
                        daily_limit=limit,
                        created_at=now,
                        updated_at=now,
                    )
                )
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    continue
                return QuotaResult(acquired=True, current=1, remaining=max(0, limit - 1))
        raise StorageError(f"Could not reserve quota slot for {date_key}")

    async def _release(self, date_key: str) -> None:
        statement = (
            update(quota_table)
            .where(quota_table.c.date_key == date_key, quota_count > 0)
            .values(count=quota_count - 1, updated_at=utcnow())
        )
        async with self._session_maker() as db:
            await db.execute(statement)
            await db.commit()


class SqlGenerationMetadata(GenerationMetadataTable):
    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def insert(self, record: GenerationRecord) -> None:
        async with self._session_maker() as db:
            db.add(
                Generation(
                    generation_id=record.generation_id,
                    schema_version=SCHEMA_VERSION,
                    created_at=record.created_at,
                    owner_type=record.owner_type,
                    owner_id=record.owner_id,
                    owner_email=record.owner_email,
                    intention=record.intention,
                    duration_seconds=record.duration_seconds,
                    background_theme=record.background_theme,
                    scene_time=record.scene_time,
                    thumbnail_data_url=record.thumbnail_data_url,
                    scene_model=record.scene_model,
                    music_model=record.music_model,
                    payload_path=record.payload_path,
                )
            )
            await db.commit()

    async def get(self, generation_id: str) -> Optional[GenerationRecord]:
        async with self._session_maker() as db:
            result = await db.execute(select(Generation).where(Generation.generation_id == generation_id))
            row = result.scalar_one_or_none()
            return _generation_from_row(row) if row else None

    async def delete(self, generation_id: str) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(generations_table).where(generations_table.c.generation_id == generation_id))
            await db.commit()

    async def count_for_owner(self, owner_type: str, owner_id: str, *, cap: int) -> int:
        capped = (
            select(Generation.generation_id)
            .where(Generation.owner_type == owner_type, Generation.owner_id == owner_id)
            .limit(cap)
            .subquery()
        )
        async with self._session_maker() as db:
            result = await db.execute(select(func.count()).select_from(capped))
            return int(result.scalar() or 0)

    async def list_for_owner(self, owner_type: str, owner_id: str, *, limit: int) -> List[GenerationRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(Generation)
                .where(Generation.owner_type == owner_type, Generation.owner_id == owner_id)
                .order_by(Generation.created_at.desc())
                .limit(limit)
            )
            return [_generation_from_row(row) for row in result.scalars().all()]

    async def update_thumbnail(
        self,
        generation_id: str,
        *,
        owner_type: str,
        owner_id: str,
        thumbnail_data_url: str,
    ) -> Optional[GenerationRecord]:
        statement = (
            update(generations_table)
            .where(
                generations_table.c.generation_id == generation_id,
                generations_table.c.owner_type == owner_type,
                generations_table.c.owner_id == owner_id,
            )
            .values(thumbnail_data_url=thumbnail_data_url)
            .returning(*generations_table.c)
        )
        async with self._session_maker() as db:
            row = (await db.execute(statement)).first()
            await db.commit()
            return _generation_from_row(row) if row else None
