"""
Router for creating and reading shared snapshots.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from routers.schemas import ShareCreatedResponse, ShareResponse, ShareStatsResponse
from services.errors import api_error
from services.ids import is_valid_share_id
from services.payloads import PayloadError, read_idempotency_key, validate_share_payload
from services.storage.factory import Storage, get_storage
from services.storage.types import Owner

router = APIRouter()
logger = logging.getLogger(__name__)


def build_share_url(request: Request, share_id: str) -> str:
    base_url = settings.PUBLIC_BASE_URL or str(request.base_url)
    return f"{base_url.rstrip('/')}/s/{share_id}"


def _require_share_id(share_id: str) -> str:
    if not is_valid_share_id(share_id):
        raise api_error(400, "INVALID_SHARE_ID", "Invalid shareId format")
    return share_id


@router.post("", status_code=201, response_model=ShareCreatedResponse)
async def create_share(
    request: Request,
    response: Response,
    body: Any = Body(default=None),
    auth: AuthContext = Depends(get_auth_context),
    storage: Storage = Depends(get_storage),
):
    """Store a snapshot; a repeated idempotency key returns the original share with 200."""
    try:
        snapshot = validate_share_payload(body)
        idempotency_key = read_idempotency_key(request.headers)
    except PayloadError as exc:
        raise api_error(400, exc.code, str(exc)) from exc

    record = await storage.shares.create_share(
        snapshot,
        idempotency_key=idempotency_key or None,
        owner=Owner(owner_type="user", owner_id=auth.user_id, owner_email=auth.email or ""),
    )
    if record.reused:
        response.status_code = 200
    return ShareCreatedResponse(
        id=record.share_id,
        created_at=record.created_at,
        share_url=build_share_url(request, record.share_id),
        content_hash=record.content_hash,
        reused=record.reused,
    )


@router.get("/{share_id}/stats", response_model=ShareStatsResponse)
async def get_share_stats(
    share_id: str,
    response: Response,
    storage: Storage = Depends(get_storage),
):
    stats = await storage.shares.get_share_stats(_require_share_id(share_id))
    if stats is None:
        raise api_error(404, "SHARE_NOT_FOUND", "Share not found")
    response.headers["Cache-Control"] = "public, max-age=20"
    return ShareStatsResponse(
        id=stats.share_id,
        created_at=stats.created_at,
        content_hash=stats.content_hash,
        view_count=stats.view_count,
        last_viewed_at=stats.last_viewed_at,
    )


@router.get("/{share_id}", response_model=ShareResponse)
async def get_share(
    share_id: str,
    response: Response,
    storage: Storage = Depends(get_storage),
):
    """Public read; counts a view."""
    record = await storage.shares.get_share(_require_share_id(share_id), increment_view=True)
    if record is None:
        raise api_error(404, "SHARE_NOT_FOUND", "Share not found")
    response.headers["Cache-Control"] = "public, max-age=30"
    return ShareResponse(
        id=record.share_id,
        created_at=record.created_at,
        content_hash=record.content_hash,
        view_count=record.view_count,
        last_viewed_at=record.last_viewed_at,
        snapshot=record.snapshot or {},
    )
