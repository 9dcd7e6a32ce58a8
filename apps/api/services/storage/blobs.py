"""Blob store implementations: local filesystem and S3 object storage."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os
from botocore.exceptions import ClientError

from services.storage.base import BlobStore
from services.storage.types import StorageError


IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def normalize_prefix(value: str) -> str:
    return (value or "").strip().strip("/")


class FilesystemBlobStore(BlobStore):
    """Plain files under a root directory."""

    kind = "filesystem"

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self._root / path.lstrip("/")).resolve()
        if self._root not in target.parents:
            raise StorageError(f"Blob path escapes the blob root: {path}")
        return target

    async def put(self, path: str, data: bytes, *, content_type: str = "application/json") -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        async with aiofiles.open(temp_path, "wb") as handle:
            await handle.write(data)
        await aiofiles.os.replace(temp_path, target)

    async def get(self, path: str) -> Optional[bytes]:
        try:
            async with aiofiles.open(self._resolve(path), "rb") as handle:
                return await handle.read()
        except FileNotFoundError:
            return None

    async def delete(self, path: str) -> None:
        try:
            await aiofiles.os.remove(self._resolve(path))
        except FileNotFoundError:
            return

    def describe(self, path: str) -> str:
        return f"file://{self._resolve(path)}"


class S3BlobStore(BlobStore):
    """S3 (or S3-compatible) object storage. boto3 calls run in a worker thread."""

    kind = "s3"

    def __init__(self, client: Any, bucket_name: str):
        if not bucket_name:
            raise StorageError("S3_BUCKET_NAME is required for the s3 blob store")
        self._client = client
        self._bucket_name = bucket_name

    @classmethod
    def from_settings(cls, settings: Any) -> "S3BlobStore":
        import boto3

        client_kwargs = {"region_name": settings.AWS_REGION}
        if settings.S3_ENDPOINT_URL:
            client_kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
        return cls(boto3.client("s3", **client_kwargs), settings.S3_BUCKET_NAME)

    async def put(self, path: str, data: bytes, *, content_type: str = "application/json") -> None:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket_name,
            Key=path,
            Body=data,
            ContentType=f"{content_type}; charset=utf-8",
            CacheControl=IMMUTABLE_CACHE_CONTROL,
        )

    def _get_sync(self, path: str) -> Optional[bytes]:
        try:
            response = self._client.get_object(Bucket=self._bucket_name, Key=path)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"NoSuchKey", "404", "NotFound"}:
                return None
            raise
        return response["Body"].read()

    async def get(self, path: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._get_sync, path)

    async def delete(self, path: str) -> None:
        # S3 DeleteObject succeeds for missing keys.
        await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket_name, Key=path)

    def describe(self, path: str) -> str:
        return f"s3://{self._bucket_name}/{path}"
