"""Authentication dependencies: signed-in users and anonymous visitors."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def _auth_error(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": "AUTH_REQUIRED", "message": message})


def _decode(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthContext:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise _auth_error("Please sign in first.")
    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise _auth_error(str(exc)) from exc
    return AuthContext(user_id=claims.user_id, email=claims.email)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the signed-in user from the Bearer session token."""
    return _decode(credentials)


async def get_optional_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Like get_auth_context, but anonymous requests resolve to None."""
    if not credentials:
        return None
    try:
        return _decode(credentials)
    except HTTPException:
        return None
