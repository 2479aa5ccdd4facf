from typing import List

import pytest

from chatrelay.models import Message
from chatrelay.providers import CompletionFailure, EmptyCompletion, TransportError

from conftest import RaisingProvider, RecordingProvider, env_vars, override_provider


def _preamble_messages() -> List[Message]:
    from chatrelay.preset_loader import get_active_preamble

    return list(get_active_preamble().messages)


### 1) Success path ############################################################


def test_prompt_returns_prompt_and_bot_response(app, client, store):
    provider = RecordingProvider(["Hi! How can I help?"])
    override_provider(app, provider)

    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 200
    assert resp.json() == {"prompt": "hello", "botResponse": "Hi! How can I help?"}
    assert provider.calls == 1


def test_successful_turn_appends_user_then_assistant(app, client, store):
    provider = RecordingProvider(["first answer", "second answer"])
    override_provider(app, provider)

    client.post("/api/prompt", json={"userId": "u1", "prompt": "one"})
    assert len(store.history("u1")) == 2

    client.post("/api/prompt", json={"userId": "u1", "prompt": "two"})
    history = store.history("u1")

    assert len(history) == 4
    assert history[-2] == Message(role="user", content="two")
    assert history[-1] == Message(role="assistant", content="second answer")


def test_completion_request_is_preamble_plus_prior_history_plus_prompt(app, client, store):
    provider = RecordingProvider(["a1", "a2"])
    override_provider(app, provider)
    preamble = _preamble_messages()

    client.post("/api/prompt", json={"userId": "u1", "prompt": "q1"})
    client.post("/api/prompt", json={"userId": "u1", "prompt": "q2"})

    first, second = provider.requests
    assert first == preamble + [Message(role="user", content="q1")]
    assert second == preamble + [
        Message(role="user", content="q1"),
        Message(role="assistant", content="a1"),
        Message(role="user", content="q2"),
    ]
    # Each request extends the previous one.
    assert second[: len(first)] == first


def test_two_new_users_get_independent_histories_with_same_preamble(app, client, store):
    provider = RecordingProvider(["same", "same"])
    override_provider(app, provider)
    preamble = _preamble_messages()

    client.post("/api/prompt", json={"userId": "alice", "prompt": "hello"})
    client.post("/api/prompt", json={"userId": "bob", "prompt": "hello"})

    assert provider.requests[0] == provider.requests[1]
    assert provider.requests[0][: len(preamble)] == preamble
    assert store.history("alice") == store.history("bob")
    assert store.get("alice") is not store.get("bob")
    assert store.get("alice").history is not store.get("bob").history


def test_missing_prompt_is_passed_through_as_empty(app, client, store):
    provider = RecordingProvider(["ok"])
    override_provider(app, provider)

    resp = client.post("/api/prompt", json={"userId": "u1"})

    assert resp.status_code == 200
    assert resp.json() == {"prompt": "", "botResponse": "ok"}
    assert store.history("u1")[0] == Message(role="user", content="")


def test_numeric_user_id_is_used_as_text_key(app, client, store):
    override_provider(app, RecordingProvider())

    resp = client.post("/api/prompt", json={"userId": 42, "prompt": "hi"})

    assert resp.status_code == 200
    assert "42" in store


### 2) Validation ##############################################################


@pytest.mark.parametrize("body", [
    {"prompt": "hello"},
    {"prompt": "hello", "userId": ""},
    {"prompt": "hello", "userId": None},
])
def test_missing_user_id_returns_400_without_side_effects(app, client, store, body):
    provider = RecordingProvider()
    override_provider(app, provider)

    resp = client.post("/api/prompt", json=body)

    assert resp.status_code == 400
    assert resp.json() == {"error": "userId is required to track conversations."}
    assert len(store) == 0
    assert provider.calls == 0


def test_malformed_json_returns_400(app, client, store):
    provider = RecordingProvider()
    override_provider(app, provider)

    resp = client.post(
        "/api/prompt",
        content="{ this is not valid json }",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    assert "error" in resp.json()
    assert provider.calls == 0


def test_non_object_body_returns_400(app, client, store):
    override_provider(app, RecordingProvider())

    resp = client.post("/api/prompt", json=["userId", "u1"])

    assert resp.status_code == 400


### 3) Completion failures #####################################################


def test_completion_failure_returns_500_and_keeps_user_turn(app, client, store):
    provider = RaisingProvider(CompletionFailure("upstream exploded: secret detail"))
    override_provider(app, provider)

    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "An internal error occurred."}
    assert "secret" not in resp.text
    assert store.history("u1") == [Message(role="user", content="hello")]


def test_transport_error_returns_generic_500(app, client, store):
    override_provider(app, RaisingProvider(TransportError("connect timeout")))

    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "An internal error occurred."}


def test_empty_completion_returns_groq_error_message(app, client, store):
    override_provider(app, RaisingProvider(EmptyCompletion("no choices")))

    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to get a response from the GROQ API."}
    assert len(store.history("u1")) == 1


def test_unexpected_provider_exception_is_not_leaked(app, client, store):
    override_provider(app, RaisingProvider(KeyError("choices")))

    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "An internal error occurred."}


def test_turn_after_failure_sees_unanswered_user_message(app, client, store):
    override_provider(app, RaisingProvider(CompletionFailure("down")))
    client.post("/api/prompt", json={"userId": "u1", "prompt": "first"})

    provider = RecordingProvider(["back online"])
    override_provider(app, provider)
    resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "second"})

    assert resp.status_code == 200
    sent = provider.requests[0]
    assert sent[-2:] == [
        Message(role="user", content="first"),
        Message(role="user", content="second"),
    ]
    assert [m.role for m in store.history("u1")] == ["user", "user", "assistant"]


### 4) History window ##########################################################


def test_history_window_keeps_last_messages(app, client, store):
    override_provider(app, RecordingProvider(["a1", "a2", "a3"]))

    with env_vars({"HISTORY_MAX_MESSAGES": "4"}):
        for prompt in ["q1", "q2", "q3"]:
            client.post("/api/prompt", json={"userId": "u1", "prompt": prompt})

    assert [m.content for m in store.history("u1")] == ["q2", "a2", "q3", "a3"]


### 5) Origin allow-list #######################################################


def test_request_without_origin_is_allowed(app, client, store):
    override_provider(app, RecordingProvider())

    with env_vars({"CORS_ORIGINS": "https://wagox-design.netlify.app"}):
        resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hi"})

    assert resp.status_code == 200


def test_request_from_allowed_origin_is_accepted(app, client, store):
    override_provider(app, RecordingProvider())

    with env_vars({"CORS_ORIGINS": "https://wagox-design.netlify.app"}):
        resp = client.post(
            "/api/prompt",
            json={"userId": "u1", "prompt": "hi"},
            headers={"Origin": "https://wagox-design.netlify.app"},
        )

    assert resp.status_code == 200


def test_request_from_unknown_origin_is_rejected(app, client, store):
    provider = RecordingProvider()
    override_provider(app, provider)

    with env_vars({"CORS_ORIGINS": "https://wagox-design.netlify.app"}):
        resp = client.post(
            "/api/prompt",
            json={"userId": "u1", "prompt": "hi"},
            headers={"Origin": "https://evil.example"},
        )

    assert resp.status_code == 403
    assert resp.json() == {"error": "Not allowed by CORS"}
    assert provider.calls == 0
    assert len(store) == 0


### 6) Other endpoints #########################################################


def test_root_endpoint_returns_service_metadata(client):
    resp = client.get("/")

    assert resp.status_code == 200
    data = resp.json()
    for key in ["service", "preamble", "version", "model", "health"]:
        assert key in data
    assert data["service"] == "chat-relay"
    assert data["preamble"] == "agency"


def test_health_endpoint_reports_session_count(app, client, store):
    override_provider(app, RecordingProvider())
    client.post("/api/prompt", json={"userId": "u1", "prompt": "hi"})
    client.post("/api/prompt", json={"userId": "u2", "prompt": "hi"})

    with env_vars({"PROVIDER": "stub"}):
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "sessions": 2, "provider": "stub"}


def test_stub_provider_end_to_end(client, store):
    with env_vars({"PROVIDER": "stub"}):
        resp = client.post("/api/prompt", json={"userId": "u1", "prompt": "hello"})

    assert resp.status_code == 200
    assert resp.json()["botResponse"] == "stub reply: hello"
