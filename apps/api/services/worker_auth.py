"""Authentication of job-processing requests coming from the dispatch path.

A request is trusted when it carries the pre-shared ``x-worker-token`` or a
signed identity token for the allow-listed service account. With neither
mechanism configured every request is rejected.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from jose import JWTError, jwt

from config import (
    settings,
    worker_identity_audiences,
    worker_identity_configured,
    worker_identity_signing_key,
    worker_identity_verification_key,
)

logger = logging.getLogger(__name__)


WORKER_TOKEN_HEADER = "x-worker-token"


class WorkerAuthError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def create_worker_identity_token(audience: Optional[str] = None) -> str:
    """Sign a short-lived identity token for the configured service account."""
    audiences = worker_identity_audiences()
    target_audience = audience or (audiences[0] if audiences else "")
    signing_key = worker_identity_signing_key()
    if not target_audience or not signing_key:
        raise RuntimeError("Worker identity is not configured.")
    now = datetime.now(timezone.utc)
    account = settings.WORKER_IDENTITY_SERVICE_ACCOUNT.strip().lower()
    claims: Dict[str, Any] = {
        "iss": settings.WORKER_IDENTITY_ISSUER,
        "aud": target_audience,
        "sub": account,
        "email": account,
        "email_verified": True,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=max(settings.WORKER_IDENTITY_TTL_SECONDS, 30))).timestamp()),
    }
    return jwt.encode(claims, signing_key, algorithm=settings.WORKER_IDENTITY_ALGORITHM)


def _bearer_token(headers: Mapping[str, str]) -> str:
    value = (headers.get("authorization") or "").strip()
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def _audience_accepted(claim: Any) -> bool:
    accepted = set(worker_identity_audiences())
    if isinstance(claim, str):
        return claim in accepted
    if isinstance(claim, (list, tuple)):
        return any(isinstance(item, str) and item in accepted for item in claim)
    return False


def has_valid_worker_identity(headers: Mapping[str, str]) -> bool:
    token = _bearer_token(headers)
    if not token:
        return False
    try:
        payload = jwt.decode(
            token,
            worker_identity_verification_key(),
            algorithms=[settings.WORKER_IDENTITY_ALGORITHM],
            issuer=settings.WORKER_IDENTITY_ISSUER,
            options={"verify_aud": False},
        )
    except JWTError as exc:
        logger.warning("Worker identity token rejected: %s", exc)
        return False

    email = str(payload.get("email") or "").strip().lower()
    email_verified = payload.get("email_verified") in (True, "true")
    expected = settings.WORKER_IDENTITY_SERVICE_ACCOUNT.strip().lower()
    return bool(email and email_verified and email == expected and _audience_accepted(payload.get("aud")))


def has_valid_worker_token(headers: Mapping[str, str]) -> bool:
    supplied = (headers.get(WORKER_TOKEN_HEADER) or "").strip()
    expected = (settings.WORKER_TOKEN or "").strip()
    if not supplied or not expected:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def require_worker_request(headers: Mapping[str, str]) -> None:
    """Raise WorkerAuthError unless the request is from the trusted dispatch path."""
    token_configured = bool((settings.WORKER_TOKEN or "").strip())
    identity_configured = worker_identity_configured()
    if not token_configured and not identity_configured:
        logger.error("Worker request rejected: no worker authentication is configured")
        raise WorkerAuthError(503, "WORKER_AUTH_NOT_CONFIGURED", "Internal worker auth is not configured correctly.")

    if token_configured and has_valid_worker_token(headers):
        return
    if identity_configured and has_valid_worker_identity(headers):
        return

    logger.warning("Worker request rejected: missing or invalid credentials")
    raise WorkerAuthError(401, "WORKER_UNAUTHORIZED", "Unauthorized worker request.")
