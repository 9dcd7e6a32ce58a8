"""Long-lived anonymous visitor identity carried in a cookie."""

import re
import secrets

from fastapi import Request, Response

from config import settings


VISITOR_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,80}$")
VISITOR_TTL_SECONDS = 60 * 60 * 24 * 180


def create_visitor_id() -> str:
    return secrets.token_urlsafe(12)


def is_valid_visitor_id(value) -> bool:
    return isinstance(value, str) and bool(VISITOR_ID_RE.match(value))


def resolve_visitor_id(request: Request, response: Response) -> str:
    """Return the visitor id from the cookie, issuing a new cookie when absent or malformed."""
    existing = request.cookies.get(settings.VISITOR_COOKIE_NAME)
    if is_valid_visitor_id(existing):
        return existing

    visitor_id = create_visitor_id()
    response.set_cookie(
        key=settings.VISITOR_COOKIE_NAME,
        value=visitor_id,
        max_age=VISITOR_TTL_SECONDS,
        path="/",
        domain=settings.COOKIE_DOMAIN or None,
        secure=settings.SECURE_COOKIES,
        httponly=True,
        samesite="lax",
    )
    return visitor_id
