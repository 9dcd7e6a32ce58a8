"""Driver selection: builds the storage handle once at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.storage.base import BlobStore, JobStore, QuotaCounter
from services.storage.blobs import FilesystemBlobStore, S3BlobStore
from services.storage.generations import GenerationStore
from services.storage.local_driver import (
    LocalGenerationMetadata,
    LocalIdempotencyIndex,
    LocalJobStore,
    LocalQuotaCounter,
    LocalShareMetadata,
)
from services.storage.shares import ShareStore
from services.storage.sql_driver import (
    SqlGenerationMetadata,
    SqlIdempotencyIndex,
    SqlJobStore,
    SqlQuotaCounter,
    SqlShareMetadata,
)
from services.storage.types import StorageError

logger = logging.getLogger(__name__)


@dataclass
class Storage:
    """Everything an operation needs from the storage layer."""

    kind: str
    shares: ShareStore
    jobs: JobStore
    quota: QuotaCounter
    generations: GenerationStore
    blobs: BlobStore
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _sql_blob_store(app_settings: Any) -> BlobStore:
    blob_store = (app_settings.BLOB_STORE or "s3").strip().lower()
    if blob_store == "filesystem":
        return FilesystemBlobStore(app_settings.BLOB_DIR)
    if blob_store == "s3":
        return S3BlobStore.from_settings(app_settings)
    raise StorageError(f"Unsupported BLOB_STORE: {app_settings.BLOB_STORE!r}")


def build_sql_storage(
    app_settings: Any,
    session_maker: async_sessionmaker[AsyncSession],
    blobs: Optional[BlobStore] = None,
) -> Storage:
    blobs = blobs or _sql_blob_store(app_settings)
    return Storage(
        kind="sql",
        shares=ShareStore(
            blobs=blobs,
            metadata=SqlShareMetadata(session_maker),
            idempotency=SqlIdempotencyIndex(session_maker),
            object_prefix=app_settings.SHARE_OBJECT_PREFIX,
        ),
        jobs=SqlJobStore(session_maker),
        quota=SqlQuotaCounter(session_maker),
        generations=GenerationStore(
            blobs=blobs,
            metadata=SqlGenerationMetadata(session_maker),
            object_prefix=app_settings.GENERATION_OBJECT_PREFIX,
        ),
        blobs=blobs,
        session_maker=session_maker,
    )


def build_local_storage(app_settings: Any, data_dir: Optional[str | Path] = None) -> Storage:
    root = Path(data_dir or app_settings.LOCAL_DATA_DIR)
    blobs = FilesystemBlobStore(root / "blobs")
    return Storage(
        kind="local",
        shares=ShareStore(
            blobs=blobs,
            metadata=LocalShareMetadata(root),
            idempotency=LocalIdempotencyIndex(root),
            object_prefix=app_settings.SHARE_OBJECT_PREFIX,
        ),
        jobs=LocalJobStore(root),
        quota=LocalQuotaCounter(root),
        generations=GenerationStore(
            blobs=blobs,
            metadata=LocalGenerationMetadata(root),
            object_prefix=app_settings.GENERATION_OBJECT_PREFIX,
        ),
        blobs=blobs,
    )


def build_storage(
    app_settings: Any,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Storage:
    """Select the driver named by ``STORE_DRIVER``."""
    driver = (app_settings.STORE_DRIVER or "local").strip().lower()
    if driver == "sql":
        if session_maker is None:
            from database import async_session_maker

            session_maker = async_session_maker
        storage = build_sql_storage(app_settings, session_maker)
    elif driver == "local":
        storage = build_local_storage(app_settings)
    else:
        raise StorageError(f"Unsupported STORE_DRIVER: {app_settings.STORE_DRIVER!r}")
    logger.info("Storage driver %s ready (blobs=%s)", storage.kind, storage.blobs.kind)
    return storage


def get_storage(request: Request) -> Storage:
    """FastAPI dependency returning the storage handle built at startup."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "STORAGE_UNAVAILABLE", "message": "Storage is not initialised."},
        )
    return storage
