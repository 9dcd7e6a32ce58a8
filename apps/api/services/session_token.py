"""
Bearer session tokens for signed-in snapshot owners.

Tokens are HMAC-signed with JWT_SECRET, issued by JWT_ISSUER and scoped to the
share API audience. Decoding yields the owner identity recorded on shares and
generations.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "share_session"
SESSION_AUDIENCE = "snapshot-share"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    email: Optional[str]
    expires_at: int


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Sign a session token for ``user_id``; issued by the login flow and by tests."""
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "iss": settings.JWT_ISSUER,
        "aud": SESSION_AUDIENCE,
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email.strip().lower()

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> SessionClaims:
    """Verify ``token`` and return its owner claims; raises ValueError when unusable."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=SESSION_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if str(payload.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise ValueError("Session token missing subject.")
    return SessionClaims(
        user_id=user_id,
        email=str(payload.get("email") or "").strip() or None,
        expires_at=int(payload["exp"]),
    )
