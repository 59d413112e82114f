import json

import pytest

from copilot_proxy.catalog import ModelRegistry
from copilot_proxy.chat_proxy.errors import ErrorKind, ValidationError, to_proxy_error
from copilot_proxy.chat_proxy.normalization import normalize

REGISTRY = ModelRegistry()


def _body(**payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


def _reject(raw) -> ValidationError:
    with pytest.raises(ValidationError) as excinfo:
        normalize(raw, REGISTRY)
    return excinfo.value


def test_accepts_minimal_request():
    normalized = normalize(
        _body(model="GLM-4.6", messages=[{"role": "user", "content": "hi"}]),
        REGISTRY,
    )
    assert normalized.requested_model == "GLM-4.6"
    assert normalized.descriptor.wire_name == "glm-4.6"
    assert normalized.stream is True


@pytest.mark.parametrize(
    "stream,expected", [(True, True), (False, False), (None, True)]
)
def test_stream_flag(stream, expected):
    normalized = normalize(
        _body(model="GLM-4.6", messages=[{"role": "user"}], stream=stream),
        REGISTRY,
    )
    assert normalized.stream is expected


@pytest.mark.parametrize(
    "raw,kind,message",
    [
        (b"{not json", ErrorKind.MALFORMED_JSON, "Invalid JSON: "),
        (b"[1, 2]", ErrorKind.MALFORMED_JSON, "Invalid JSON: "),
        (b"\xff\xfe", ErrorKind.MALFORMED_JSON, "Invalid JSON: "),
        (
            b'{"model":"GLM-4.6","messages":[{"role":"user"}],"temperature":NaN}',
            ErrorKind.MALFORMED_JSON,
            "Invalid JSON: invalid literal NaN",
        ),
        (
            b'{"model":"GLM-4.6","messages":[{"role":"user"}],"top_p":Infinity}',
            ErrorKind.MALFORMED_JSON,
            "Invalid JSON: invalid literal Infinity",
        ),
        (
            b'{"model":"GLM-4.6","messages":[{"role":"user"}],"top_p":-Infinity}',
            ErrorKind.MALFORMED_JSON,
            "Invalid JSON: invalid literal -Infinity",
        ),
        (_body(messages=[{"role": "user"}]), ErrorKind.MISSING_FIELD, "model is required"),
        (
            _body(model="", messages=[{"role": "user"}]),
            ErrorKind.MISSING_FIELD,
            "model is required",
        ),
        (
            _body(model="GLM-4.6"),
            ErrorKind.MISSING_FIELD,
            "messages is required and must be non-empty",
        ),
        (
            _body(model="GLM-4.6", messages=[]),
            ErrorKind.MISSING_FIELD,
            "messages is required and must be non-empty",
        ),
        (
            _body(model="GLM-4.6", messages="hello"),
            ErrorKind.MISSING_FIELD,
            "messages is required and must be non-empty",
        ),
        (
            _body(model="GLM-4.6", messages=["hello"]),
            ErrorKind.MISSING_FIELD,
            "message 0 must be an object",
        ),
        (
            _body(model="GLM-4.6", messages=[{"content": "x"}]),
            ErrorKind.MISSING_FIELD,
            "message 0 requires a role",
        ),
        (
            _body(model="GLM-4.6", messages=[{"role": "user"}, {"role": "invalid"}]),
            ErrorKind.INVALID_ROLE,
            "message 1 has invalid role: invalid",
        ),
        (
            _body(model="unknown-model", messages=[{"role": "user"}]),
            ErrorKind.UNKNOWN_MODEL,
            "model 'unknown-model' not found",
        ),
    ],
)
def test_rejections(raw, kind, message):
    error = _reject(raw)
    assert error.kind is kind
    assert error.message.startswith(message)


def test_checks_model_before_messages():
    error = _reject(_body(messages=[]))
    assert error.message == "model is required"


def test_role_checked_before_registry_lookup():
    error = _reject(_body(model="unknown-model", messages=[{"role": "robot"}]))
    assert error.kind is ErrorKind.INVALID_ROLE


def test_first_bad_message_wins():
    error = _reject(
        _body(
            model="GLM-4.6",
            messages=[{"role": "user"}, {"role": "bogus"}, {"content": "x"}],
        )
    )
    assert error.index == 1


@pytest.mark.parametrize(
    "kind,status",
    [
        (ErrorKind.MALFORMED_JSON, 400),
        (ErrorKind.MISSING_FIELD, 400),
        (ErrorKind.INVALID_ROLE, 400),
        (ErrorKind.UNKNOWN_MODEL, 404),
    ],
)
def test_validation_errors_classify(kind, status):
    err = to_proxy_error(ValidationError(kind, "boom"))
    assert err.status_code == status
    assert err.detail == {"error": "boom"}


def test_all_roles_accepted():
    normalized = normalize(
        _body(
            model="glm-4.5",
            messages=[
                {"role": "system", "content": "s"},
                {"role": "user", "content": "u"},
                {"role": "assistant", "content": "a"},
                {"role": "tool", "content": "t", "tool_call_id": "1"},
            ],
        ),
        REGISTRY,
    )
    assert normalized.descriptor.display_name == "GLM-4.5"


def test_document_is_a_private_copy():
    messages = [{"role": "user", "content": "hi", "extra": {"nested": [1]}}]
    raw = json.dumps({"model": "GLM-4.6", "messages": messages})
    normalized = normalize(raw, REGISTRY)
    normalized.document["messages"][0]["extra"]["nested"].append(2)
    again = normalize(raw, REGISTRY)
    assert again.document["messages"][0]["extra"]["nested"] == [1]


def test_unknown_fields_preserved():
    normalized = normalize(
        _body(
            model="GLM-4.6",
            messages=[{"role": "user", "content": "hi", "name": "bob"}],
            temperature=0.2,
            response_format={"type": "json_object"},
        ),
        REGISTRY,
    )
    assert normalized.document["temperature"] == 0.2
    assert normalized.document["response_format"] == {"type": "json_object"}
    assert normalized.document["messages"][0]["name"] == "bob"
