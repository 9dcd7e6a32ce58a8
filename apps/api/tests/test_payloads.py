import pytest

from services.payloads import (
    MAX_CODE_LENGTH,
    PayloadError,
    parse_thumbnail_data_url,
    read_idempotency_key,
    validate_generation_input,
    validate_share_payload,
)


def _body(**overrides):
    body = {
        "intention": "  find some calm  ",
        "durationSeconds": 90.7,
        "backgroundTheme": "winter",
        "sceneTime": "night",
        "sceneCode": " scene() ",
        "musicCode": "music()",
        "prompts": {"scenePrompt": " s ", "musicPrompt": "m", "extra": "ignored"},
        "simulation": 1,
        "generatedAt": 1700000000000,
    }
    body.update(overrides)
    return body


def test_share_payload_is_normalised():
    snapshot = validate_share_payload(_body())

    assert snapshot["schemaVersion"] == 1
    assert snapshot["intention"] == "find some calm"
    assert snapshot["durationSeconds"] == 90
    assert snapshot["backgroundTheme"] == "winter"
    assert snapshot["sceneTime"] == "night"
    assert snapshot["sceneCode"] == "scene()"
    assert snapshot["prompts"] == {"scenePrompt": "s", "musicPrompt": "m"}
    assert snapshot["simulation"] is True
    assert snapshot["generatedAt"] == 1700000000000
    assert snapshot["createdAt"]


def test_unknown_theme_and_time_fall_back_to_defaults():
    snapshot = validate_share_payload(_body(backgroundTheme="neon", sceneTime="noon", prompts="nope"))

    assert snapshot["backgroundTheme"] == "spring"
    assert snapshot["sceneTime"] == "morning"
    assert snapshot["prompts"] is None


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"intention": "   "}, "intention is required"),
        ({"intention": "x" * 1201}, "intention must be <= 1200 characters"),
        ({"sceneCode": 42}, "sceneCode must be a string"),
        ({"musicCode": "  "}, "musicCode is required"),
        ({"sceneCode": "x" * (MAX_CODE_LENGTH + 1)}, "sceneCode is too large"),
        ({"durationSeconds": "abc"}, "durationSeconds must be a number"),
        ({"durationSeconds": 9.99}, "durationSeconds must be between 10 and 7200"),
        ({"durationSeconds": 7201}, "durationSeconds must be between 10 and 7200"),
        ({"prompts": {"scenePrompt": "x" * 20001}}, "prompts must be <= 20000 characters"),
    ],
)
def test_invalid_share_payloads_are_rejected(overrides, message):
    with pytest.raises(PayloadError) as exc_info:
        validate_share_payload(_body(**overrides))
    assert str(exc_info.value) == message


def test_missing_fields_and_non_objects_are_rejected():
    body = _body()
    body.pop("musicCode")
    with pytest.raises(PayloadError, match="musicCode is required"):
        validate_share_payload(body)

    with pytest.raises(PayloadError, match="Request body must be an object"):
        validate_share_payload(["not", "an", "object"])


def test_generation_input_keeps_only_generation_fields():
    payload = validate_generation_input({"intention": "rest", "durationSeconds": "45", "sceneTime": "night"})

    assert payload.intention == "rest"
    assert payload.duration_seconds == 45
    assert payload.background_theme == "spring"
    assert payload.scene_time == "night"


def test_thumbnail_data_url_rules():
    assert parse_thumbnail_data_url(" data:image/png;base64,AAAA ") == "data:image/png;base64,AAAA"

    with pytest.raises(PayloadError) as missing:
        parse_thumbnail_data_url(None)
    assert missing.value.code == "THUMBNAIL_INVALID"

    with pytest.raises(PayloadError) as wrong_type:
        parse_thumbnail_data_url("https://example.com/a.png")
    assert wrong_type.value.code == "THUMBNAIL_INVALID"

    with pytest.raises(PayloadError) as too_large:
        parse_thumbnail_data_url("data:image/png;base64," + "A" * 300000)
    assert too_large.value.code == "THUMBNAIL_TOO_LARGE"


def test_idempotency_key_headers():
    assert read_idempotency_key({}) == ""
    assert read_idempotency_key({"x-idempotency-key": "abc:def_123"}) == "abc:def_123"
    assert read_idempotency_key({"idempotency-key": "fallback-key-1"}) == "fallback-key-1"

    for invalid in ("short", "has spaces in it", "x" * 201):
        with pytest.raises(PayloadError) as exc_info:
            read_idempotency_key({"x-idempotency-key": invalid})
        assert exc_info.value.code == "INVALID_IDEMPOTENCY_KEY"
