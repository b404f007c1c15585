"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from branchchat.api import app, get_db, get_pipeline
from branchchat.services.model_catalog import MODEL_OPTIONS
from branchchat.services.usage_gate import usage_day


@pytest.fixture
def client(pipeline, fake_db):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for chunk in body.strip().split("\n\n"):
        event = None
        data = None
        for line in chunk.splitlines():
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        if event is not None:
            events.append((event, data))
    return events


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_models(self, client):
        response = client.get("/models")
        assert response.status_code == 200
        assert len(response.json()) == len(MODEL_OPTIONS)
        assert response.json()[0] == {"provider": "openai", "model": "gpt-5.2", "label": "GPT-5.2"}


class TestChat:
    """POST /chat."""

    def test_json_turn(self, client, fake_db):
        response = client.post(
            "/chat", json={"content": "Hello"}, headers={"X-User-ID": "user-1"}
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["user_message"]["content"] == "Hello"
        assert payload["user_message"]["request_id"]
        assert payload["conversation"]["user_id"] == "user-1"
        assert payload["conversation"]["root_message_id"] == payload["user_message"]["id"]
        assert len(fake_db.messages) == 2

    def test_defaults_to_local_user(self, client):
        response = client.post("/chat", json={"content": "Hello"})

        assert response.status_code == 200
        assert response.json()["conversation"]["user_id"] == "local-dev-user"

    def test_empty_content_is_bad_request(self, client):
        response = client.post("/chat", json={"content": "  "})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"
        assert response.json()["message"] == "Content is required"

    def test_quota_is_429(self, client, fake_db):
        fake_db.usage[("user-1", usage_day())] = 10

        response = client.post(
            "/chat", json={"content": "Hello"}, headers={"X-User-ID": "user-1"}
        )
        assert response.status_code == 429
        assert response.json()["error"] == "quota_exceeded"

    def test_unknown_conversation_is_404(self, client):
        response = client.post("/chat", json={"content": "Hello", "conversation_id": "nope"})
        assert response.status_code == 404

    def test_retry_returns_same_turn(self, client):
        body = {"content": "Hello", "request_id": "req-api"}
        first = client.post("/chat", json=body).json()
        second = client.post("/chat", json=body).json()

        assert first["assistant_message"]["id"] == second["assistant_message"]["id"]


class TestChatStream:
    """POST /chat with stream=true."""

    def test_streams_deltas_then_final(self, client, pipeline):
        response = client.post(
            "/chat",
            json={"content": "Hello", "stream": True, "request_id": "req-sse"},
            headers={"X-User-ID": "user-1"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)

        deltas = [data["text"] for event, data in events if event == "delta"]
        assert "".join(deltas) == "Hello there"
        event, data = events[-1]
        assert event == "final"
        assert data["payload"]["user_message"]["request_id"] == "req-sse"
        assert "req-sse" not in pipeline.registry

    def test_streams_error_event(self, client, fake_db):
        fake_db.usage[("user-1", usage_day())] = 10

        response = client.post(
            "/chat",
            json={"content": "Hello", "stream": True},
            headers={"X-User-ID": "user-1"},
        )

        events = parse_sse(response.text)
        assert events == [
            ("error", {"type": "error", "error": "Daily message limit reached", "status": 429})
        ]


class TestConversations:
    """Conversation listing and detail."""

    def test_list(self, client):
        client.post("/chat", json={"content": "One"}, headers={"X-User-ID": "user-1"})
        client.post("/chat", json={"content": "Two"}, headers={"X-User-ID": "user-2"})

        response = client.get("/conversations", headers={"X-User-ID": "user-1"})
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["conversations"][0]["title"] == "One"

    def test_detail_includes_messages_and_branches(self, client):
        first = client.post("/chat", json={"content": "Root"}).json()
        client.post(
            "/chat",
            json={
                "content": "Fork",
                "conversation_id": first["conversation"]["id"],
                "parent_message_id": first["assistant_message"]["id"],
                "branch_side": "left",
            },
        )

        response = client.get(f"/conversations/{first['conversation']['id']}")
        assert response.status_code == 200
        assert len(response.json()["messages"]) == 4
        assert [b["side"] for b in response.json()["branches"]] == ["left"]

    def test_detail_of_other_user_is_404(self, client):
        first = client.post("/chat", json={"content": "Mine"}, headers={"X-User-ID": "owner"}).json()

        response = client.get(
            f"/conversations/{first['conversation']['id']}", headers={"X-User-ID": "other"}
        )
        assert response.status_code == 404
