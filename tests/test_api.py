"""
Tests for the HTTP surface, with authentication stubbed out.
"""

import pytest
from fastapi.testclient import TestClient

from chatdesk.api import app
from chatdesk.auth import authenticate
from chatdesk.config import Settings
from chatdesk.generator import TemplateResponseGenerator
from chatdesk.page import SimulatedPageAnalyzer
from chatdesk.repository import SQLiteChatStore
from chatdesk.service import ChatService


@pytest.fixture
def client(tmp_path):
    ChatService._instance = ChatService(
        settings=Settings(chat_db_path=str(tmp_path / "chat.db")),
        store=SQLiteChatStore(str(tmp_path / "chat.db")),
        generator=TemplateResponseGenerator(min_delay=0, max_delay=0),
        page_analyzer=SimulatedPageAnalyzer(delay=0),
    )
    app.dependency_overrides[authenticate] = lambda: {"sub": "user-1"}
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    ChatService.reset()


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_requires_bearer_token(client):
    app.dependency_overrides.pop(authenticate)

    resp = client.get("/chats")

    assert resp.status_code == 401


def test_models(client):
    models = client.get("/models").json()

    assert [m["id"] for m in models][:2] == ["gpt-4o", "gpt-4o-mini"]
    assert len(models) == 4


def test_send_creates_chat_and_reply(client):
    resp = client.post("/session/messages", json={"text": "Hello"})
    assert resp.status_code == 200
    body = resp.json()

    assert body["pending"] is False
    assert body["partial_reply"] == ""
    assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
    assert body["messages"][1]["model"] == "GPT-4o"

    chats = client.get("/chats").json()
    assert len(chats) == 1
    assert chats[0]["id"] == body["current_chat_id"]
    assert chats[0]["title"] == "Hello"


def test_blank_message_is_rejected(client):
    resp = client.post("/session/messages", json={"text": "   "})

    assert resp.status_code == 422
    assert client.get("/chats").json() == []


def test_select_and_new_chat(client):
    chat_id = client.post("/session/messages", json={"text": "Hello"}).json()["current_chat_id"]

    state = client.post("/chats/new").json()
    assert state["current_chat_id"] is None
    assert state["messages"] == []

    state = client.post(f"/chats/{chat_id}/select").json()
    assert state["current_chat_id"] == chat_id
    assert [m["content"] for m in state["messages"]][0] == "Hello"


def test_delete_chat_twice(client):
    chat_id = client.post("/session/messages", json={"text": "Hello"}).json()["current_chat_id"]

    first = client.delete(f"/chats/{chat_id}")
    second = client.delete(f"/chats/{chat_id}")

    assert first.status_code == second.status_code == 200
    assert first.json()["current_chat_id"] is None
    assert [n["title"] for n in first.json()["notices"]] == ["Chat deleted"]
    assert client.get("/chats").json() == []


def test_clear_reports_notice(client):
    client.post("/session/messages", json={"text": "Hello"})

    state = client.post("/session/clear").json()

    assert state["messages"] == []
    assert state["notices"][0]["title"] == "Chat cleared"
    assert len(client.get("/chats").json()) == 1


def test_settings_and_model(client):
    resp = client.put("/session/settings", json={"temperature": 1.5, "max_tokens": 200})
    assert resp.status_code == 200
    assert resp.json()["temperature"] == 1.5
    assert resp.json()["max_tokens"] == 200

    assert client.put("/session/settings", json={"temperature": 3}).status_code == 422
    assert client.put("/session/model", json={"model_id": "nope"}).status_code == 422

    resp = client.put("/session/model", json={"model_id": "gpt-4o-mini"})
    assert resp.json()["name"] == "GPT-4o Mini"
    assert client.get("/session").json()["model_id"] == "gpt-4o-mini"


def test_page_analysis(client):
    assert client.post("/session/page", json={"url": "not a url"}).status_code == 422

    state = client.post("/session/page", json={"url": "https://example.com"}).json()

    assert state["page_url"] == "https://example.com"
    reply = client.post("/session/messages", json={"text": "Summarise"}).json()["messages"][-1]
    assert "https://example.com" in reply["content"]
