"""Generation orchestration: ownership caps, global daily quota, persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from services.content_generator import ContentGenerator, GeneratorUnavailableError
from services.errors import api_error
from services.payloads import GenerationInput
from services.storage.factory import Storage
from services.storage.types import GenerationDraft, GenerationRecord, Owner, utcnow

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    record: GenerationRecord
    remaining_free_generations: Optional[int] = None
    remaining_daily_generations_overall: Optional[int] = None


def daily_quota_date_key(now: Optional[datetime] = None) -> str:
    """UTC calendar day, ``YYYY-MM-DD``."""
    return (now or utcnow()).strftime("%Y-%m-%d")


async def _release_quota_slot(storage: Storage, date_key: str) -> None:
    try:
        await storage.quota.release(date_key)
    except Exception:
        logger.exception("Failed to release generation quota slot for %s", date_key)


async def create_generation_for_owner(
    storage: Storage,
    generator: ContentGenerator,
    payload: GenerationInput,
    owner: Owner,
    *,
    anon_limit: int,
    global_daily_limit: int,
    date_key: Optional[str] = None,
) -> GenerationOutcome:
    """
    Generate and persist a bundle for ``owner``.

    Visitors are capped by a best-effort count. A global daily slot is reserved
    before generation and handed back if generation or persistence fails.
    """
    remaining_free: Optional[int] = None
    if owner.owner_type == "visitor":
        current = await storage.generations.count_visitor_generations(owner.owner_id, cap=max(anon_limit, 1))
        if current >= anon_limit:
            raise api_error(
                403,
                "AUTH_REQUIRED_FOR_MORE_GENERATIONS",
                f"You reached the free generation limit ({anon_limit}). Please sign in to continue.",
            )
        remaining_free = max(0, anon_limit - (current + 1))

    quota_key = ""
    remaining_daily: Optional[int] = None
    if global_daily_limit > 0:
        quota_key = date_key or daily_quota_date_key()
        quota = await storage.quota.acquire(quota_key, global_daily_limit)
        if not quota.acquired:
            logger.warning("Global daily generation limit reached for %s (count=%s)", quota_key, quota.current)
            raise api_error(
                429,
                "GLOBAL_DAILY_LIMIT_REACHED",
                f"Daily generation limit reached ({global_daily_limit}). Please try again tomorrow.",
            )
        remaining_daily = quota.remaining

    try:
        bundle = await generator.generate(intention=payload.intention, duration_seconds=payload.duration_seconds)
        record = await storage.generations.create_generation(
            GenerationDraft(
                owner=owner,
                intention=payload.intention,
                duration_seconds=payload.duration_seconds,
                background_theme=payload.background_theme,
                scene_time=payload.scene_time,
                scene_code=bundle.scene_code,
                music_code=bundle.music_code,
                prompts=bundle.prompts,
                scene_model=bundle.scene_model,
                music_model=bundle.music_model,
            )
        )
    except Exception as exc:
        if quota_key:
            await _release_quota_slot(storage, quota_key)
        if isinstance(exc, GeneratorUnavailableError):
            raise api_error(503, "GENERATOR_UNAVAILABLE", str(exc)) from exc
        raise

    return GenerationOutcome(
        record=record,
        remaining_free_generations=remaining_free,
        remaining_daily_generations_overall=remaining_daily,
    )
