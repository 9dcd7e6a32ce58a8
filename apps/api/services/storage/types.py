"""Storage record contracts shared by both drivers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional


SCHEMA_VERSION = 1

JobStatus = Literal["queued", "processing", "completed", "failed"]
OwnerType = Literal["visitor", "user"]

DEFAULT_JOB_ERROR = "Share job failed"


class StorageError(RuntimeError):
    """Raised when the storage substrate fails in a way callers cannot resolve."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes coming back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Owner:
    owner_type: str
    owner_id: str
    owner_email: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Owner"]:
        if not isinstance(payload, dict):
            return None
        owner_type = str(payload.get("ownerType") or payload.get("owner_type") or "").strip()
        owner_id = str(payload.get("ownerId") or payload.get("owner_id") or "").strip()
        if not owner_type or not owner_id:
            return None
        owner_email = str(payload.get("ownerEmail") or payload.get("owner_email") or "").strip()
        return cls(owner_type=owner_type, owner_id=owner_id, owner_email=owner_email)

    def to_payload(self) -> Dict[str, str]:
        return {"ownerType": self.owner_type, "ownerId": self.owner_id, "ownerEmail": self.owner_email}


@dataclass
class ShareRecord:
    share_id: str
    created_at: datetime
    content_hash: str
    payload_path: str
    owner_type: Optional[str] = None
    owner_id: Optional[str] = None
    owner_email: Optional[str] = None
    idempotency_hash: Optional[str] = None
    view_count: int = 0
    last_viewed_at: Optional[datetime] = None
    snapshot: Optional[Dict[str, Any]] = None
    reused: bool = False

    def with_snapshot(self, snapshot: Dict[str, Any], *, reused: bool = False) -> "ShareRecord":
        return replace(self, snapshot=snapshot, reused=reused)


@dataclass(frozen=True)
class ShareStats:
    share_id: str
    created_at: datetime
    content_hash: str
    view_count: int
    last_viewed_at: Optional[datetime]


@dataclass(frozen=True)
class IdempotencyMapping:
    idempotency_hash: str
    target_id: str
    created_at: datetime
    content_hash: Optional[str] = None


@dataclass
class JobRecord:
    job_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class QuotaResult:
    acquired: bool
    current: int
    remaining: int


@dataclass
class GenerationRecord:
    generation_id: str
    created_at: datetime
    owner_type: str
    owner_id: str
    payload_path: str
    intention: str = ""
    duration_seconds: int = 60
    background_theme: str = "spring"
    scene_time: str = "morning"
    owner_email: str = ""
    thumbnail_data_url: str = ""
    scene_model: str = ""
    music_model: str = ""
    # Populated only when the blob has been loaded.
    scene_code: Optional[str] = None
    music_code: Optional[str] = None
    prompts: Optional[Dict[str, Any]] = None
    simulation: bool = False

    def is_owned_by(self, owner_type: str, owner_id: str) -> bool:
        return self.owner_type == owner_type and self.owner_id == owner_id


@dataclass
class GenerationDraft:
    """Input to GenerationStore.create_generation."""

    owner: Owner
    intention: str
    duration_seconds: int
    background_theme: str
    scene_time: str
    scene_code: str
    music_code: str
    prompts: Optional[Dict[str, Any]] = None
    scene_model: str = ""
    music_model: str = ""
    thumbnail_data_url: str = ""
