"""
Router for generated bundles owned by users or anonymous visitors.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from config import settings
from routers.auth_scope import AuthContext, get_auth_context, get_optional_auth_context
from routers.schemas import (
    GenerationCreatedResponse,
    GenerationDetail,
    GenerationListResponse,
    GenerationSummary,
    ThumbnailResponse,
)
from services.content_generator import ContentGenerator, get_content_generator
from services.errors import api_error
from services.generations import create_generation_for_owner
from services.ids import is_valid_generation_id
from services.payloads import PayloadError, parse_thumbnail_data_url, validate_generation_input
from services.storage.factory import Storage, get_storage
from services.storage.types import GenerationRecord, Owner
from services.visitor_identity import resolve_visitor_id

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_generation_id(generation_id: str) -> str:
    if not is_valid_generation_id(generation_id):
        raise api_error(400, "INVALID_GENERATION_ID", "Invalid generationId format")
    return generation_id


def _summary(record: GenerationRecord) -> GenerationSummary:
    return GenerationSummary(
        generation_id=record.generation_id,
        created_at=record.created_at,
        intention=record.intention,
        duration_seconds=record.duration_seconds,
        background_theme=record.background_theme,
        scene_time=record.scene_time,
        thumbnail_data_url=record.thumbnail_data_url or "",
        scene_model=record.scene_model,
        music_model=record.music_model,
    )


def _detail_fields(record: GenerationRecord) -> dict:
    return {
        **_summary(record).model_dump(),
        "scene_code": record.scene_code,
        "music_code": record.music_code,
        "prompts": record.prompts,
        "simulation": False,
    }


@router.post("", status_code=201, response_model=GenerationCreatedResponse)
async def create_generation(
    request: Request,
    response: Response,
    body: Any = Body(default=None),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    storage: Storage = Depends(get_storage),
    generator: ContentGenerator = Depends(get_content_generator),
):
    """Generate a bundle for the signed-in user, or for the visitor identified by cookie."""
    try:
        payload = validate_generation_input(body)
    except PayloadError as exc:
        raise api_error(400, exc.code, str(exc)) from exc

    if auth is not None:
        owner = Owner(owner_type="user", owner_id=auth.user_id, owner_email=auth.email or "")
    else:
        owner = Owner(owner_type="visitor", owner_id=resolve_visitor_id(request, response))

    outcome = await create_generation_for_owner(
        storage,
        generator,
        payload,
        owner,
        anon_limit=settings.GENERATION_ANON_LIMIT,
        global_daily_limit=settings.GENERATION_GLOBAL_DAILY_LIMIT,
    )
    return GenerationCreatedResponse(
        **_detail_fields(outcome.record),
        remaining_free_generations=outcome.remaining_free_generations,
        remaining_daily_generations_overall=outcome.remaining_daily_generations_overall,
    )


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    response: Response,
    limit: int = Query(default=30),
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    records = await storage.generations.list_user_generations(auth.user_id, limit=min(1000, max(1, limit)))
    response.headers["Cache-Control"] = "no-store"
    return GenerationListResponse(items=[_summary(record) for record in records])


@router.get("/{generation_id}", response_model=GenerationDetail)
async def get_generation(
    generation_id: str,
    response: Response,
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    record = await storage.generations.get_generation_for_owner(
        _require_generation_id(generation_id), owner_type="user", owner_id=auth.user_id
    )
    if record is None:
        raise api_error(404, "GENERATION_NOT_FOUND", "Generation not found")
    response.headers["Cache-Control"] = "no-store"
    return GenerationDetail(**_detail_fields(record))


@router.post("/{generation_id}/thumbnail", response_model=ThumbnailResponse)
async def update_generation_thumbnail(
    generation_id: str,
    response: Response,
    body: Any = Body(default=None),
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    """Owner-only; anyone else sees not-found."""
    _require_generation_id(generation_id)
    try:
        thumbnail = parse_thumbnail_data_url(body.get("thumbnailDataUrl") if isinstance(body, dict) else None)
    except PayloadError as exc:
        raise api_error(400, exc.code, str(exc)) from exc

    record = await storage.generations.update_thumbnail_for_owner(
        generation_id,
        owner_type="user",
        owner_id=auth.user_id,
        thumbnail_data_url=thumbnail,
    )
    if record is None:
        raise api_error(404, "GENERATION_NOT_FOUND", "Generation not found")
    response.headers["Cache-Control"] = "no-store"
    return ThumbnailResponse(generation_id=record.generation_id, thumbnail_data_url=record.thumbnail_data_url)
