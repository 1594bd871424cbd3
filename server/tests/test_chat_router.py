"""
Tests for the chat and logs HTTP routes
"""
import asyncio
import json
import uuid

import pytest
from conftest import FakeBackend, tokens
from fastapi.testclient import TestClient

from config import settings
from models import CompleteEvent


def sse_events(text: str) -> list:
    events = []
    for block in text.split("\n\n"):
        if not block.startswith("data: "):
            continue
        data = block[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(monkeypatch, backend):
    from main import app
    from routers import chat

    monkeypatch.setattr(chat, "create_backend", lambda: backend)
    chat._sessions.clear()
    with TestClient(app) as test_client:
        yield test_client
    chat._sessions.clear()


@pytest.fixture
def character_file():
    card = {
        "spec": "chara_card_v2",
        "data": {
            "name": "Seraphina",
            "description": "A guardian of the forest.",
            "first_mes": "Hello, {{user}}.",
            "alternate_greetings": ["Welcome back, {{user}}."],
        },
    }
    path = settings.data_dir / "characters" / "seraphina.json"
    path.write_text(json.dumps(card), encoding="utf-8")
    return path


@pytest.fixture
def chat_id(client, character_file):
    """A started chat seeded with the greeting."""
    chat_id = uuid.uuid4().hex
    response = client.post(f"/api/chat/sessions/{chat_id}/start", json={"character_id": "seraphina"})
    assert response.status_code == 200
    return chat_id


class TestStartChat:
    """Tests for POST /api/chat/sessions/{id}/start."""

    def test_seeds_greeting(self, client, chat_id):
        data = client.get(f"/api/chat/sessions/{chat_id}").json()
        assert data["character_id"] == "seraphina"
        assert data["state"] == "idle"
        assert data["is_generating"] is False
        assert len(data["messages"]) == 1
        greeting = data["messages"][0]
        assert greeting["content"] == "Hello, User."
        assert greeting["swipes"] == ["Hello, User.", "Welcome back, User."]

    def test_already_started(self, client, chat_id):
        response = client.post(f"/api/chat/sessions/{chat_id}/start", json={"character_id": "seraphina"})
        assert response.status_code == 409

    def test_unknown_character(self, client):
        chat_id = uuid.uuid4().hex
        response = client.post(f"/api/chat/sessions/{chat_id}/start", json={"character_id": "nobody"})
        assert response.status_code == 404
        assert client.get(f"/api/chat/sessions/{chat_id}").status_code == 404

    def test_character_id_cannot_leave_directory(self, client):
        chat_id = uuid.uuid4().hex
        response = client.post(f"/api/chat/sessions/{chat_id}/start", json={"character_id": "../settings"})
        assert response.status_code == 404

    def test_invalid_chat_id(self, client):
        assert client.get("/api/chat/sessions/a..b").status_code == 400

    def test_idle_sessions_are_evicted(self, client, character_file, monkeypatch):
        from routers import chat

        monkeypatch.setattr(chat, "MAX_SESSIONS", 1)
        first, second = uuid.uuid4().hex, uuid.uuid4().hex
        client.post(f"/api/chat/sessions/{first}/start", json={"character_id": "seraphina"})
        client.post(f"/api/chat/sessions/{second}/start", json={"character_id": "seraphina"})

        assert list(chat._sessions) == [second]
        # Reloaded from its file on the next request
        assert client.get(f"/api/chat/sessions/{first}").json()["messages"][0]["content"] == "Hello, User."
        assert list(chat._sessions) == [first]

    def test_listed(self, client, chat_id):
        chats = client.get("/api/chat/sessions").json()
        summary = next(c for c in chats if c["id"] == chat_id)
        assert summary["character_id"] == "seraphina"
        assert summary["message_count"] == 1


class TestGeneration:
    """Tests for the streaming generation routes."""

    def test_send_streams_and_persists(self, client, backend, chat_id):
        backend.scripts.append([*tokens("Hi", " there"), CompleteEvent(text="Hi there")])

        response = client.post(f"/api/chat/sessions/{chat_id}/messages", json={"content": "Hello!"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert [e["type"] for e in events[:-1]] == ["token", "token", "complete", "done"]
        assert events[1]["accumulated"] == "Hi there"
        assert events[-2]["message"]["content"] == "Hi there"
        assert events[-2]["state"] == "idle"
        assert events[-1] == "[DONE]"

        messages = client.get(f"/api/chat/sessions/{chat_id}").json()["messages"]
        assert [m["content"] for m in messages] == ["Hello, User.", "Hello!", "Hi there"]

    def test_regenerate_adds_swipe(self, client, backend, chat_id):
        backend.scripts.append([CompleteEvent(text="First")])
        backend.scripts.append([CompleteEvent(text="Second")])
        client.post(f"/api/chat/sessions/{chat_id}/messages", json={"content": "Hello!"})

        events = sse_events(client.post(f"/api/chat/sessions/{chat_id}/regenerate").text)

        message = events[-2]["message"]
        assert message["swipes"] == ["First", "Second"]
        assert message["swipe_id"] == 1

    def test_continue_appends(self, client, backend, chat_id):
        backend.scripts.append([CompleteEvent(text="Once upon")])
        backend.scripts.append([CompleteEvent(text=" a time")])
        client.post(f"/api/chat/sessions/{chat_id}/messages", json={"content": "Tell me a story"})

        events = sse_events(client.post(f"/api/chat/sessions/{chat_id}/continue").text)

        assert events[-2]["message"]["content"] == "Once upon a time"

    def test_regenerate_without_user_message(self, client, chat_id):
        events = sse_events(client.post(f"/api/chat/sessions/{chat_id}/regenerate").text)
        assert events[0]["type"] == "error"
        assert events[-1] == "[DONE]"

    def test_backend_error_event(self, client, backend, chat_id):
        from models import ErrorEvent

        backend.scripts.append([ErrorEvent(message="Backend error 503: busy")])
        events = sse_events(client.post(f"/api/chat/sessions/{chat_id}/messages", json={"content": "Hi"}).text)
        assert events[0] == {"type": "error", "message": "Backend error 503: busy"}
        assert events[-2]["message"] is None
        assert events[-2]["state"] == "error"

    def test_stop_when_idle(self, client, backend, chat_id):
        response = client.post(f"/api/chat/sessions/{chat_id}/stop")
        assert response.json() == {"status": "idle"}
        assert backend.aborts == []

    def test_unknown_chat(self, client):
        response = client.post(f"/api/chat/sessions/{uuid.uuid4().hex}/messages", json={"content": "Hi"})
        assert response.status_code == 404


class TestMessageRoutes:
    """Tests for swipe, edit and delete routes."""

    def test_swipe(self, client, chat_id):
        right = client.post(f"/api/chat/sessions/{chat_id}/swipe/right", json={"index": 0}).json()
        assert right["content"] == "Welcome back, User."
        # Already at the last swipe
        again = client.post(f"/api/chat/sessions/{chat_id}/swipe/right").json()
        assert again["swipe_id"] == 1
        left = client.post(f"/api/chat/sessions/{chat_id}/swipe/left").json()
        assert left["content"] == "Hello, User."

    def test_swipe_bad_direction(self, client, chat_id):
        assert client.post(f"/api/chat/sessions/{chat_id}/swipe/up").status_code == 422

    def test_edit(self, client, chat_id):
        edited = client.put(f"/api/chat/sessions/{chat_id}/messages/0", json={"content": "Good morning."}).json()
        assert edited["content"] == "Good morning."
        assert edited["swipes"] == ["Good morning.", "Welcome back, User."]

    def test_delete(self, client, chat_id):
        assert client.delete(f"/api/chat/sessions/{chat_id}/messages/0").json() == {"status": "deleted"}
        assert client.get(f"/api/chat/sessions/{chat_id}").json()["messages"] == []
        assert client.delete(f"/api/chat/sessions/{chat_id}/messages/0").status_code == 400


class TestLogsRoutes:
    """Tests for the request log routes."""

    def test_logged_request_is_listed(self, client):
        from routers.logs import log_request

        log_id = asyncio.run(log_request(
            request_type="instruct",
            model="mythomax",
            full_request={"prompt": "Hello there"},
            full_response={"content": "Hi"},
            duration_ms=12,
        ))

        entry = client.get(f"/api/logs/{log_id}").json()
        assert entry["model"] == "mythomax"
        assert entry["prompt_preview"] == "Hello there"
        assert entry["response_chars"] == 2
        assert any(log["id"] == log_id for log in client.get("/api/logs", params={"request_type": "instruct"}).json())
        assert client.get("/api/logs/count").json()["count"] >= 1

    def test_stats(self, client):
        from routers.logs import log_request

        asyncio.run(log_request(
            request_type="chat",
            model=None,
            full_request={"messages": [{"role": "user", "content": "Hi"}]},
            status="cancelled",
        ))

        stats = client.get("/api/logs/stats").json()
        assert stats["by_status"]["cancelled"] >= 1
        assert stats["total"] == sum(stats["by_status"].values())

    def test_missing_log(self, client):
        assert client.get("/api/logs/does-not-exist").status_code == 404

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "healthy", "version": "1.0.0"}
