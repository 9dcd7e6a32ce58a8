"""Owner-scoped generation store."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from services.ids import create_generation_id, is_valid_generation_id
from services.storage.base import BlobStore, GenerationMetadataTable
from services.storage.blobs import normalize_prefix
from services.storage.types import SCHEMA_VERSION, GenerationDraft, GenerationRecord, utcnow

logger = logging.getLogger(__name__)


class GenerationStore:
    """Generated bundles: code payload in the blob store, listable metadata in the table."""

    def __init__(self, *, blobs: BlobStore, metadata: GenerationMetadataTable, object_prefix: str = "generations"):
        self._blobs = blobs
        self._metadata = metadata
        self._prefix = normalize_prefix(object_prefix) or "generations"

    async def create_generation(self, draft: GenerationDraft) -> GenerationRecord:
        generation_id = create_generation_id()
        created_at = utcnow()
        owner = draft.owner
        payload_path = f"{self._prefix}/{owner.owner_type}/{owner.owner_id}/{generation_id}.json"
        payload = {
            "schemaVersion": SCHEMA_VERSION,
            "generationId": generation_id,
            "createdAt": created_at.isoformat(),
            "sceneCode": draft.scene_code,
            "musicCode": draft.music_code,
            "prompts": draft.prompts,
            "simulation": False,
        }
        record = GenerationRecord(
            generation_id=generation_id,
            created_at=created_at,
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            owner_email=owner.owner_email,
            payload_path=payload_path,
            intention=draft.intention,
            duration_seconds=draft.duration_seconds,
            background_theme=draft.background_theme,
            scene_time=draft.scene_time,
            thumbnail_data_url=draft.thumbnail_data_url,
            scene_model=draft.scene_model,
            music_model=draft.music_model,
        )

        await self._blobs.put(payload_path, json.dumps(payload, ensure_ascii=False).encode("utf-8"))
        try:
            await self._metadata.insert(record)
        except Exception:
            try:
                await self._blobs.delete(payload_path)
            except Exception as exc:
                logger.warning("Could not discard generation blob %s: %s", payload_path, exc)
            raise

        record.scene_code = draft.scene_code
        record.music_code = draft.music_code
        record.prompts = draft.prompts
        logger.info("Generation %s created for %s", generation_id, owner.owner_type)
        return record

    async def count_visitor_generations(self, visitor_id: str, *, cap: int = 10) -> int:
        return await self._metadata.count_for_owner("visitor", visitor_id, cap=max(int(cap), 1))

    async def list_user_generations(self, user_id: str, *, limit: int = 30) -> List[GenerationRecord]:
        return await self._metadata.list_for_owner("user", user_id, limit=max(1, int(limit)))

    async def _read_payload(self, record: GenerationRecord) -> Optional[Dict[str, Any]]:
        raw = await self._blobs.get(record.payload_path)
        if raw is None:
            logger.warning("Generation %s has metadata but no payload", record.generation_id)
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Generation %s payload is not valid JSON", record.generation_id)
            return None
        return payload if isinstance(payload, dict) else None

    async def get_generation_for_owner(
        self, generation_id: str, *, owner_type: str, owner_id: str
    ) -> Optional[GenerationRecord]:
        if not is_valid_generation_id(generation_id):
            return None
        record = await self._metadata.get(generation_id)
        if record is None or not record.is_owned_by(owner_type, owner_id):
            return None
        payload = await self._read_payload(record)
        if payload is None:
            return None
        record.scene_code = payload.get("sceneCode")
        record.music_code = payload.get("musicCode")
        record.prompts = payload.get("prompts")
        return record

    async def update_thumbnail_for_owner(
        self,
        generation_id: str,
        *,
        owner_type: str,
        owner_id: str,
        thumbnail_data_url: str,
    ) -> Optional[GenerationRecord]:
        if not is_valid_generation_id(generation_id):
            return None
        return await self._metadata.update_thumbnail(
            generation_id,
            owner_type=owner_type,
            owner_id=owner_id,
            thumbnail_data_url=thumbnail_data_url,
        )
