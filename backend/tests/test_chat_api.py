import json

import httpx

from backend.app.db.repo.configs_repo import create_config
from backend.app.db.repo.users_repo import create_user
from backend.app.providers.types import ProviderKind
from backend.app.services.demo_responder import DemoResponder

from conftest import sse_body

COMPLETION = {
    "choices": [{"message": {"role": "assistant", "content": "Hello there"}}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
}


def _openai(request: httpx.Request) -> httpx.Response:
    if json.loads(request.content)["stream"]:
        body = sse_body({"choices": [{"delta": {"content": "Hello"}}]}, {"choices": [{"delta": {"content": " there"}}]})
        return httpx.Response(200, content=body)
    return httpx.Response(200, json=COMPLETION)


def _seed_openai(db_session, **fields):
    fields.setdefault("name", "OpenAI")
    fields.setdefault("is_default", True)
    config = create_config(
        db_session,
        kind=ProviderKind.OPENAI_COMPATIBLE.value,
        endpoint="https://llm.example.com/v1",
        credential="sk-test",
        model="gpt-4o-mini",
        **fields,
    )
    db_session.commit()
    return config


def _events(response) -> list[dict]:
    assert response.headers["content-type"].startswith("text/event-stream")
    events = []
    for block in response.text.split("\n\n"):
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events


def test_message_without_configuration_uses_demo(client):
    response = client.post("/chat/message", json={"message": "ping"})
    assert response.status_code == 200
    data = response.json()
    assert data["provider_kind"] == "demo"
    assert data["provider_name"] == "Demo Assistant"
    assert data["content"] == DemoResponder().respond("ping")
    assert data["usage"]["estimated"] is True


def test_stream_without_configuration_uses_demo(client):
    response = client.post("/chat/message/stream", json={"message": "ping"})
    assert response.status_code == 200
    events = _events(response)

    assert all(e["done"] is False for e in events[:-1])
    assert events[-1]["done"] is True
    text = "".join(e["content"] for e in events)
    assert text == DemoResponder().respond("ping")


def test_message_with_default_provider(client, db_session, upstream):
    config = _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post("/chat/message", json={"message": "Hi"})
    assert response.status_code == 200
    data = response.json()
    assert data["content"] == "Hello there"
    assert data["provider_id"] == config.id
    assert data["usage"] == {"input_tokens": 12, "output_tokens": 3, "total_tokens": 15, "estimated": False}

    sent = upstream.last_json()
    assert sent["model"] == "gpt-4o-mini"
    assert sent["messages"][0] == {"role": "system", "content": "You are a helpful AI assistant."}
    assert sent["messages"][-1] == {"role": "user", "content": "Hi"}


def test_stream_relays_provider_deltas(client, db_session, upstream):
    _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post(
        "/chat/message/stream",
        json={"message": "Hi", "history": [{"role": "user", "content": "Earlier"}, {"role": "assistant", "content": "Yes"}]},
    )
    events = _events(response)
    assert [e["content"] for e in events] == ["Hello", " there", ""]
    assert [e["done"] for e in events] == [False, False, True]
    assert events[-1]["usage"]["estimated"] is True
    roles = [m["role"] for m in upstream.last_json()["messages"]]
    assert roles == ["system", "user", "assistant", "user"]


def test_stream_provider_error_is_in_band(client, db_session, upstream):
    _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", httpx.Response(401, json={"error": "bad key"}))

    response = client.post("/chat/message/stream", json={"message": "Hi"})
    assert response.status_code == 200
    events = _events(response)
    assert len(events) == 1
    assert events[0]["done"] is True
    assert events[0]["code"] == "AUTHENTICATION_FAILED"
    assert events[0]["error"]


def test_message_provider_error_is_http_error(client, db_session, upstream):
    _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", httpx.Response(401, json={"error": "bad key"}))

    response = client.post("/chat/message", json={"message": "Hi"})
    assert response.status_code == 401
    data = response.json()
    assert data["code"] == "AUTHENTICATION_FAILED"
    assert "request_id" in data


def test_empty_message_rejected(client):
    response = client.post("/chat/message/stream", json={"message": "   "})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_MESSAGE"


def test_unknown_config_id(client):
    response = client.post("/chat/message", json={"message": "Hi", "config_id": "missing"})
    assert response.status_code == 404
    assert response.json()["code"] == "CONFIG_NOT_FOUND"


def test_azure_without_deployment_rejected_before_streaming(client, db_session, upstream):
    create_config(
        db_session,
        name="Azure",
        kind=ProviderKind.AZURE_DEPLOYMENT.value,
        endpoint="https://contoso.openai.azure.com",
        credential="azure-key",
        is_default=True,
    )
    db_session.commit()

    response = client.post("/chat/message/stream", json={"message": "Hi"})
    assert response.status_code == 400
    assert response.json()["code"] == "CONFIG_INVALID"
    assert upstream.requests == []


def test_user_preference_and_profile_context(client, db_session, upstream):
    _seed_openai(db_session)
    ollama = create_config(
        db_session,
        name="Local",
        kind=ProviderKind.OLLAMA.value,
        endpoint="http://ollama.local:11434",
        model="llama3",
        system_prompt="You are a fitness coach.",
    )
    user = create_user(db_session, "alice", preferred_config_id=ollama.id)
    user.height = 170
    user.lifestyle_habits = "runs daily"
    db_session.commit()
    upstream.add("POST", "/api/chat", httpx.Response(200, json={"message": {"content": "Keep going"}, "done": True}))

    response = client.post("/chat/message", json={"message": "Tips?", "user_id": user.id})
    data = response.json()
    assert data["provider_kind"] == "ollama"
    assert data["content"] == "Keep going"
    system = upstream.last_json()["messages"][0]["content"]
    assert system == "You are a fitness coach.\n\nUser profile: height 170 cm, lifestyle habits: runs daily."


def test_image_url_resolved_for_vision_provider(client, db_session, upstream, gateway_settings):
    _seed_openai(db_session, supports_vision=True)
    image_url = f"{gateway_settings.blob_base_url}/{gateway_settings.blob_bucket}/u1/cat.png"
    upstream.add("GET", httpx.URL(image_url).path, httpx.Response(200, content=b"abc"))
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post("/chat/message", json={"message": "What is this?", "images": [{"url": image_url}]})
    assert response.status_code == 200
    content = upstream.last_json()["messages"][-1]["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,YWJj"}}


def test_images_dropped_without_vision(client, db_session, upstream):
    _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post("/chat/message", json={"message": "Look", "images": [{"data": "aGk=", "mime": "image/png"}]})
    assert response.status_code == 200
    assert upstream.last_json()["messages"][-1] == {"role": "user", "content": "Look"}


def test_image_only_message_rejected_without_vision(client, db_session, upstream):
    _seed_openai(db_session)
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post("/chat/message", json={"message": "", "images": [{"data": "aGk=", "mime": "image/png"}]})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_MESSAGE"
    assert upstream.requests == []


def test_request_id_echoed(client):
    response = client.post("/chat/message", json={"message": "ping"}, headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_inline_profile_overrides_stored_profile(client, db_session, upstream):
    _seed_openai(db_session)
    user = create_user(db_session, "bob")
    user.weight = 90
    db_session.commit()
    upstream.add("POST", "/v1/chat/completions", _openai)

    response = client.post(
        "/chat/message",
        json={"message": "Plan?", "user_id": user.id, "profile": {"body_fat": 21.5}},
    )
    assert response.status_code == 200
    system = upstream.last_json()["messages"][0]["content"]
    assert system.endswith("\n\nUser profile: body fat 21.5%.")
