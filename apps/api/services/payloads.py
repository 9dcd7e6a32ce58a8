"""Request payload validation for shares, generations and thumbnails."""

from __future__ import annotations

import math
import re
import time
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from services.storage.types import SCHEMA_VERSION, utcnow


MAX_INTENTION_LENGTH = 1200
MAX_PROMPT_LENGTH = 20000
MAX_CODE_LENGTH = 300000
MIN_DURATION_SECONDS = 10
MAX_DURATION_SECONDS = 7200
MAX_THUMBNAIL_DATA_URL_LENGTH = 300000

ALLOWED_THEMES = ("spring", "summer", "autumn", "winter")
ALLOWED_TIMES = ("morning", "night")

IDEMPOTENCY_KEY_RE = re.compile(r"^[A-Za-z0-9:_-]{8,200}$")


class PayloadError(ValueError):
    """Malformed client input, rejected before any storage access."""

    def __init__(self, message: str, code: str = "INVALID_PAYLOAD"):
        super().__init__(message)
        self.code = code


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _duration(value: Any) -> int:
    try:
        raw = float(value)
    except (TypeError, ValueError):
        raise ValueError("durationSeconds must be a number")
    if not math.isfinite(raw):
        raise ValueError("durationSeconds must be a number")
    seconds = math.floor(raw)
    if seconds < MIN_DURATION_SECONDS or seconds > MAX_DURATION_SECONDS:
        raise ValueError(
            f"durationSeconds must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS}"
        )
    return seconds


class _CamelInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GenerationInput(_CamelInput):
    intention: str
    duration_seconds: int
    background_theme: str = "spring"
    scene_time: str = "morning"

    @field_validator("intention", mode="before")
    @classmethod
    def _check_intention(cls, value: Any) -> str:
        intention = _trimmed(value)
        if not intention:
            raise ValueError("intention is required")
        if len(intention) > MAX_INTENTION_LENGTH:
            raise ValueError(f"intention must be <= {MAX_INTENTION_LENGTH} characters")
        return intention

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _check_duration(cls, value: Any) -> int:
        return _duration(value)

    @field_validator("background_theme", mode="before")
    @classmethod
    def _default_theme(cls, value: Any) -> str:
        return value if value in ALLOWED_THEMES else "spring"

    @field_validator("scene_time", mode="before")
    @classmethod
    def _default_time(cls, value: Any) -> str:
        return value if value in ALLOWED_TIMES else "morning"


class SharePayload(GenerationInput):
    scene_code: str
    music_code: str
    prompts: Optional[Dict[str, str]] = None
    simulation: bool = False
    generated_at: Optional[float] = None

    @field_validator("scene_code", "music_code", mode="before")
    @classmethod
    def _check_code(cls, value: Any, info: ValidationInfo) -> str:
        name = to_camel(info.field_name)
        if not isinstance(value, str):
            raise ValueError(f"{name} must be a string")
        code = value.strip()
        if not code:
            raise ValueError(f"{name} is required")
        if len(code) > MAX_CODE_LENGTH:
            raise ValueError(f"{name} is too large")
        return code

    @field_validator("prompts", mode="before")
    @classmethod
    def _check_prompts(cls, value: Any) -> Optional[Dict[str, str]]:
        if not isinstance(value, dict):
            return None
        prompts = {
            "scenePrompt": _trimmed(value.get("scenePrompt")),
            "musicPrompt": _trimmed(value.get("musicPrompt")),
        }
        if any(len(prompt) > MAX_PROMPT_LENGTH for prompt in prompts.values()):
            raise ValueError(f"prompts must be <= {MAX_PROMPT_LENGTH} characters")
        return prompts

    @field_validator("simulation", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("generated_at", mode="before")
    @classmethod
    def _check_generated_at(cls, value: Any) -> Optional[float]:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if math.isfinite(number) else None

    def to_snapshot(self) -> Dict[str, Any]:
        """Normalised snapshot document as stored in the share blob."""
        generated_at = self.generated_at if self.generated_at is not None else int(time.time() * 1000)
        return {
            "schemaVersion": SCHEMA_VERSION,
            "createdAt": utcnow().isoformat(),
            "intention": self.intention,
            "durationSeconds": self.duration_seconds,
            "backgroundTheme": self.background_theme,
            "sceneTime": self.scene_time,
            "sceneCode": self.scene_code,
            "musicCode": self.music_code,
            "prompts": self.prompts,
            "simulation": self.simulation,
            "generatedAt": generated_at,
        }


def _first_error_message(exc: ValidationError) -> str:
    error = exc.errors()[0]
    message = str(error.get("msg", "Invalid payload"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "missing":
        return f"{location} is required"
    return f"{location}: {message}" if location else message


def _validate(model: type[BaseModel], value: Any) -> Any:
    if not isinstance(value, dict):
        raise PayloadError("Request body must be an object")
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise PayloadError(_first_error_message(exc)) from exc


def validate_share_payload(value: Any) -> Dict[str, Any]:
    payload: SharePayload = _validate(SharePayload, value)
    return payload.to_snapshot()


def validate_generation_input(value: Any) -> GenerationInput:
    return _validate(GenerationInput, value)


def parse_thumbnail_data_url(value: Any) -> str:
    thumbnail = _trimmed(value)
    if not thumbnail:
        raise PayloadError("thumbnailDataUrl is required", "THUMBNAIL_INVALID")
    if not thumbnail.startswith("data:image/"):
        raise PayloadError("thumbnailDataUrl must be an image data URL", "THUMBNAIL_INVALID")
    if len(thumbnail) > MAX_THUMBNAIL_DATA_URL_LENGTH:
        raise PayloadError("thumbnailDataUrl is too large", "THUMBNAIL_TOO_LARGE")
    return thumbnail


def read_idempotency_key(headers: Mapping[str, str]) -> str:
    """``X-Idempotency-Key`` (or ``Idempotency-Key``); empty string when absent."""
    key = (headers.get("x-idempotency-key") or headers.get("idempotency-key") or "").strip()
    if not key:
        return ""
    if not IDEMPOTENCY_KEY_RE.match(key):
        raise PayloadError("x-idempotency-key is invalid", "INVALID_IDEMPOTENCY_KEY")
    return key
