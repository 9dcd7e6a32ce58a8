"""Response models. Wire field names are camelCase."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShareCreatedResponse(ApiModel):
    id: str
    created_at: datetime
    share_url: str
    content_hash: str
    reused: bool = False


class ShareStatsResponse(ApiModel):
    id: str
    created_at: datetime
    content_hash: str
    view_count: int
    last_viewed_at: Optional[datetime] = None


class ShareResponse(ShareStatsResponse):
    snapshot: Dict[str, Any]


class JobCreatedResponse(ApiModel):
    job_id: str
    status: str
    queued: bool
    poll_url: str


class JobResponse(ApiModel):
    job_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    attempt_count: int
    last_attempt_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class ProcessJobResponse(ApiModel):
    ok: bool = True
    job_id: str
    status: str
    result: Optional[Dict[str, Any]] = None


class GenerationSummary(ApiModel):
    generation_id: str
    created_at: datetime
    intention: str
    duration_seconds: int
    background_theme: str
    scene_time: str
    thumbnail_data_url: str = ""
    scene_model: str = ""
    music_model: str = ""


class GenerationDetail(GenerationSummary):
    scene_code: Optional[str] = None
    music_code: Optional[str] = None
    prompts: Optional[Dict[str, Any]] = None
    simulation: bool = False


class GenerationCreatedResponse(GenerationDetail):
    remaining_free_generations: Optional[int] = None
    remaining_daily_generations_overall: Optional[int] = None


class GenerationListResponse(ApiModel):
    items: List[GenerationSummary]


class ThumbnailResponse(ApiModel):
    generation_id: str
    thumbnail_data_url: str
