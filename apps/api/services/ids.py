"""Opaque identifier and digest helpers."""

from __future__ import annotations

import hashlib
import math
import re
import secrets
from typing import Any

SHARE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,72}$")
GENERATION_ID_RE = JOB_ID_RE


def create_share_id(size: int = 12) -> str:
    """Random URL-safe identifier of exactly ``size`` characters."""
    nbytes = math.ceil(size * 3 / 4)
    return secrets.token_urlsafe(nbytes)[:size]


def create_job_id(size: int = 14) -> str:
    return create_share_id(size)


def create_generation_id(size: int = 14) -> str:
    return create_share_id(size)


def is_valid_share_id(value: Any) -> bool:
    return isinstance(value, str) and bool(SHARE_ID_RE.match(value))


def is_valid_job_id(value: Any) -> bool:
    return isinstance(value, str) and bool(JOB_ID_RE.match(value))


def is_valid_generation_id(value: Any) -> bool:
    return isinstance(value, str) and bool(GENERATION_ID_RE.match(value))


def sha256_hex(value: str | bytes) -> str:
    data = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.sha256(data).hexdigest()


def idempotency_hash(key: str, scope: str = "share") -> str:
    """Digest under which an idempotency key is stored; the raw key is never persisted."""
    return sha256_hex(f"{scope}:{key}")
