import pytest

from services.session_token import create_session_token


SHARE_USER_ID = "share-api-user"
SHARE_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(SHARE_USER_ID, 'share@example.com')['token']}"}

SNAPSHOT_BODY = {
    "intention": "slow breathing by the sea",
    "durationSeconds": 120,
    "backgroundTheme": "summer",
    "sceneTime": "morning",
    "sceneCode": "export default function scene() {}",
    "musicCode": "export default function music() {}",
    "prompts": {"scenePrompt": "sea", "musicPrompt": "waves"},
}


@pytest.mark.asyncio
async def test_create_share_requires_session(api_client):
    response = await api_client.post("/shares", json=SNAPSHOT_BODY)

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "AUTH_REQUIRED"


@pytest.mark.asyncio
async def test_create_and_fetch_share(api_client):
    created = await api_client.post("/shares", json=SNAPSHOT_BODY, headers=SHARE_AUTH_HEADER)

    assert created.status_code == 201
    body = created.json()
    assert body["reused"] is False
    assert body["shareUrl"].endswith(f"/s/{body['id']}")
    assert len(body["contentHash"]) == 64

    fetched = await api_client.get(f"/shares/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.headers["cache-control"] == "public, max-age=30"
    share = fetched.json()
    assert share["id"] == body["id"]
    assert share["viewCount"] == 1
    assert share["snapshot"]["intention"] == SNAPSHOT_BODY["intention"]
    assert share["snapshot"]["sceneCode"] == SNAPSHOT_BODY["sceneCode"]

    again = await api_client.get(f"/shares/{body['id']}")
    assert again.json()["viewCount"] == 2


@pytest.mark.asyncio
async def test_idempotency_key_returns_existing_share_with_200(api_client):
    headers = {**SHARE_AUTH_HEADER, "X-Idempotency-Key": "share-api-key-0001"}

    first = await api_client.post("/shares", json=SNAPSHOT_BODY, headers=headers)
    second = await api_client.post("/shares", json=SNAPSHOT_BODY, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["reused"] is True


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_storage(api_client):
    bad_key = await api_client.post(
        "/shares", json=SNAPSHOT_BODY, headers={**SHARE_AUTH_HEADER, "X-Idempotency-Key": "bad key"}
    )
    assert bad_key.status_code == 400
    assert bad_key.json()["detail"]["code"] == "INVALID_IDEMPOTENCY_KEY"

    bad_body = await api_client.post(
        "/shares", json={**SNAPSHOT_BODY, "durationSeconds": 3}, headers=SHARE_AUTH_HEADER
    )
    assert bad_body.status_code == 400
    assert bad_body.json()["detail"] == {
        "code": "INVALID_PAYLOAD",
        "message": "durationSeconds must be between 10 and 7200",
    }


@pytest.mark.asyncio
async def test_stats_do_not_increment_views(api_client):
    created = await api_client.post("/shares", json=SNAPSHOT_BODY, headers=SHARE_AUTH_HEADER)
    share_id = created.json()["id"]

    stats = await api_client.get(f"/shares/{share_id}/stats")
    assert stats.status_code == 200
    assert stats.headers["cache-control"] == "public, max-age=20"
    assert stats.json()["viewCount"] == 0
    assert stats.json()["lastViewedAt"] is None
    assert "snapshot" not in stats.json()


@pytest.mark.asyncio
async def test_unknown_and_malformed_share_ids(api_client):
    missing = await api_client.get("/shares/doesNotExist1")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "SHARE_NOT_FOUND"

    missing_stats = await api_client.get("/shares/doesNotExist1/stats")
    assert missing_stats.status_code == 404

    malformed = await api_client.get("/shares/bad!id")
    assert malformed.status_code == 400
    assert malformed.json()["detail"]["code"] == "INVALID_SHARE_ID"


@pytest.mark.asyncio
async def test_responses_carry_request_id(api_client):
    response = await api_client.get("/shares/doesNotExist1", headers={"x-request-id": "req-share-1"})

    assert response.headers["x-request-id"] == "req-share-1"
