"""Endpoint tests over a minimal app with in-memory services."""

from __future__ import annotations

import json

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fakes import CityGuideTool, FakeChatStore, FakeLLMService, call_tool

from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from concierge.api.dependencies import get_app_settings, get_chat_service, get_db, get_store
from concierge.api.middleware.exception_handlers import register_exception_handlers
from concierge.api.routes import router
from concierge.api.services.chat_service import ChatService
from concierge.core.constants import Settings
from concierge.models.chat_models import ChatRecord, UserInfo
from concierge.models.stream_models import TextDelta
from concierge.tools.registry import ToolRegistry


def _token(settings: Settings, sub: str = "idp|alice", expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = {"sub": sub, "exp": datetime.now(UTC) + expires_in}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _body(model: str = "chat-model", chat_id: str = "abc") -> dict[str, Any]:
    return {
        "id": chat_id,
        "message": {
            "id": "msg-1",
            "role": "user",
            "parts": [{"type": "text", "text": "find a hotel in Lisbon next week"}],
            "createdAt": "2026-10-19T09:00:00Z",
        },
        "selectedChatModel": model,
        "selectedVisibilityType": "private",
    }


@pytest.fixture
def workflow() -> MagicMock:
    client = MagicMock()
    client.dispatch = AsyncMock()
    return client


@pytest.fixture
def app(store: FakeChatStore, llm: FakeLLMService, workflow: MagicMock, settings: Settings) -> FastAPI:
    registry = ToolRegistry()
    registry.register(CityGuideTool())
    service = ChatService(store, llm, registry, workflow, settings)  # type: ignore[arg-type]

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router, prefix="/api")
    app.dependency_overrides[get_chat_service] = lambda: service
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_app_settings] = lambda: settings
    return app


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth(settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(settings)}"}


# ----------------------------------------------------------------------
# POST /api/chat
# ----------------------------------------------------------------------


def test_turn_streams_ndjson(client: TestClient, llm: FakeLLMService, auth: dict[str, str]) -> None:
    async def script(tools: list[Any]) -> Any:
        await call_tool(tools, "city_guide", {"city": "Lisbon"})
        yield TextDelta(text="Here you go")

    llm.turn_script = script

    response = client.post("/api/chat", json=_body(), headers=auth)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    chunks = [json.loads(line) for line in response.text.splitlines()]
    assert [c["type"] for c in chunks] == ["tool-call", "city-progress", "tool-result", "text-delta"]
    assert chunks[1]["content"] == {"stage": "searching", "message": "Looking up Lisbon..."}


def test_workflow_turn_returns_no_content(
    client: TestClient, store: FakeChatStore, workflow: MagicMock, auth: dict[str, str]
) -> None:
    response = client.post("/api/chat", json=_body(model="n8n-assistant"), headers=auth)

    assert response.status_code == 204
    assert response.content == b""
    assert [m.role for m in store.messages_for("abc")] == ["user"]


def test_turn_requires_authentication(client: TestClient) -> None:
    response = client.post("/api/chat", json=_body())

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_1001"


def test_unknown_principal_is_unauthorized(client: TestClient, settings: Settings) -> None:
    headers = {"Authorization": f"Bearer {_token(settings, sub='idp|mallory')}"}

    response = client.post("/api/chat", json=_body(), headers=headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_1005"


def test_expired_token(client: TestClient, settings: Settings) -> None:
    headers = {"Authorization": f"Bearer {_token(settings, expires_in=timedelta(minutes=-5))}"}

    response = client.post("/api/chat", json=_body(), headers=headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_1003"


def test_token_with_wrong_signature(client: TestClient) -> None:
    token = jwt.encode({"sub": "idp|alice"}, "some-other-secret", algorithm="HS256")

    response = client.post("/api/chat", json=_body(), headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_1002"


def test_other_users_chat_is_forbidden(
    client: TestClient, store: FakeChatStore, other_user: UserInfo, auth: dict[str, str]
) -> None:
    store.chats["abc"] = ChatRecord(id="abc", user_id=other_user.id, title="Bob's chat")

    response = client.post("/api/chat", json=_body(), headers=auth)

    assert response.status_code == 403
    assert store.messages == []


def test_unknown_model_is_unprocessable(client: TestClient, auth: dict[str, str]) -> None:
    response = client.post("/api/chat", json=_body(model="gpt-99"), headers=auth)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VAL_2004"


def test_malformed_turn_body(client: TestClient, auth: dict[str, str]) -> None:
    body = _body()
    body["message"]["parts"] = []

    response = client.post("/api/chat", json=body, headers=auth)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VAL_2001"


# ----------------------------------------------------------------------
# DELETE /api/chat
# ----------------------------------------------------------------------


def test_delete_requires_id(client: TestClient, auth: dict[str, str]) -> None:
    response = client.delete("/api/chat", headers=auth)

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Missing chat ID"


def test_delete_other_users_chat_is_not_found(
    client: TestClient, store: FakeChatStore, other_user: UserInfo, auth: dict[str, str]
) -> None:
    store.chats["abc"] = ChatRecord(id="abc", user_id=other_user.id, title="Bob's chat")

    response = client.delete("/api/chat", params={"id": "abc"}, headers=auth)

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Chat not found or you do not have permission"
    assert "abc" in store.chats


def test_delete_own_chat(client: TestClient, store: FakeChatStore, user: UserInfo, auth: dict[str, str]) -> None:
    store.chats["abc"] = ChatRecord(id="abc", user_id=user.id, title="Lisbon trip")

    response = client.delete("/api/chat", params={"id": "abc"}, headers=auth)

    assert response.status_code == 200
    assert response.json() == {"id": "abc"}
    assert store.chats == {}


# ----------------------------------------------------------------------
# POST /api/workflow-callback
# ----------------------------------------------------------------------


def test_workflow_callback_saves_reply(client: TestClient, store: FakeChatStore, user: UserInfo) -> None:
    store.chats["abc"] = ChatRecord(id="abc", user_id=user.id, title="Plans")

    response = client.post("/api/workflow-callback", json={"chatId": "abc", "responseMessage": "All booked."})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "message": "Assistant message saved successfully"}
    saved = store.messages_for("abc")
    assert saved[0].role == "assistant"
    assert saved[0].parts == [{"type": "text", "text": "All booked."}]


def test_workflow_callback_unknown_chat(client: TestClient) -> None:
    response = client.post("/api/workflow-callback", json={"chatId": "missing", "responseMessage": "hi"})

    assert response.status_code == 404


def test_workflow_callback_secret(
    app: FastAPI, store: FakeChatStore, user: UserInfo, settings: Settings
) -> None:
    secured = settings.model_copy(update={"workflow_callback_secret": "callback-secret"})
    app.dependency_overrides[get_app_settings] = lambda: secured
    store.chats["abc"] = ChatRecord(id="abc", user_id=user.id, title="Plans")
    body = {"chatId": "abc", "responseMessage": "Done", "parts": [{"type": "text", "text": "Done!"}]}

    with TestClient(app) as client:
        missing = client.post("/api/workflow-callback", json=body)
        wrong = client.post("/api/workflow-callback", json=body, headers={"Authorization": "Bearer nope"})
        ok = client.post("/api/workflow-callback", json=body, headers={"Authorization": "Bearer callback-secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200
    assert store.messages_for("abc")[0].parts == [{"type": "text", "text": "Done!"}]


# ----------------------------------------------------------------------
# GET /api/health
# ----------------------------------------------------------------------


@pytest.mark.parametrize(("healthy", "status"), [(True, "healthy"), (False, "unhealthy")])
def test_health(app: FastAPI, settings: Settings, healthy: bool, status: str) -> None:
    stats = {"healthy": healthy, "pool_size": 10, "free_connections": 8, "used_connections": 2}
    app.dependency_overrides[get_db] = lambda: MagicMock()

    with patch("concierge.api.routes.health.check_pool_health", AsyncMock(return_value=stats)):
        with TestClient(app) as client:
            response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": status, "version": settings.app_version, "database": stats}
