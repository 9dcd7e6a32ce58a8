import time

import pytest
from jose import jwt

from config import settings
from services.session_token import (
    SESSION_AUDIENCE,
    SESSION_TOKEN_TYPE,
    SessionClaims,
    create_session_token,
    decode_session_token,
)


def _raw_token(**overrides):
    now = int(time.time())
    claims = {
        "iss": settings.JWT_ISSUER,
        "aud": SESSION_AUDIENCE,
        "sub": "user-123",
        "type": SESSION_TOKEN_TYPE,
        "iat": now,
        "exp": now + 300,
    }
    claims.update(overrides)
    claims = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def test_issued_token_decodes_to_owner_claims():
    issued = create_session_token("user-123", " Owner@Example.com ", expires_hours=2)

    claims = decode_session_token(issued["token"])

    assert claims == SessionClaims(user_id="user-123", email="owner@example.com", expires_at=issued["expires_at"])
    assert issued["expires_at"] - int(time.time()) > 3600


def test_token_without_email_decodes_to_none():
    assert decode_session_token(create_session_token("user-123")["token"]).email is None


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"exp": int(time.time()) - 60}, "Invalid or expired session token."),
        ({"iss": "some-other-service"}, "Invalid or expired session token."),
        ({"aud": "some-other-audience"}, "Invalid or expired session token."),
        ({"aud": None}, "Invalid or expired session token."),
        ({"type": "refresh"}, "Invalid session token type."),
        ({"sub": None}, "Session token missing subject."),
        ({"sub": "   "}, "Session token missing subject."),
    ],
)
def test_unusable_tokens_are_rejected(overrides, message):
    with pytest.raises(ValueError) as exc_info:
        decode_session_token(_raw_token(**overrides))
    assert str(exc_info.value) == message


def test_token_signed_with_another_secret_is_rejected():
    now = int(time.time())
    forged = jwt.encode(
        {"iss": settings.JWT_ISSUER, "aud": SESSION_AUDIENCE, "sub": "user-123", "type": SESSION_TOKEN_TYPE, "exp": now + 300},
        "not-the-session-secret-at-all",
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(ValueError):
        decode_session_token(forged)


@pytest.mark.asyncio
async def test_api_rejects_token_from_another_issuer(api_client):
    response = await api_client.get(
        "/generations", headers={"Authorization": f"Bearer {_raw_token(iss='some-other-service')}"}
    )
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "AUTH_REQUIRED"

    accepted = await api_client.get("/generations", headers={"Authorization": f"Bearer {_raw_token()}"})
    assert accepted.status_code == 200
