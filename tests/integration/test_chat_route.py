"""Integration tests for POST /chat.

Completion backends are served by httpx.MockTransport; stores are in memory.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.ragchat.api.deps import get_orchestrator
from backend.ragchat.config import Settings
from backend.ragchat.db.context import RequestContext
from backend.ragchat.llm.client import CompletionBackend
from backend.ragchat.main import app
from backend.ragchat.orchestration.orchestrator import UNAVAILABLE_MESSAGE, ChatOrchestrator
from ui.helpers import parse_sse_lines

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
AUTH_HEADERS = {"Authorization": f"Bearer {OWNER_ID}"}


def _sse(*contents: str) -> bytes:
    frames = [
        f"data: {json.dumps({'choices': [{'delta': {'content': c}}]})}\n\n" for c in contents
    ]
    return ("".join(frames) + "data: [DONE]\n\n").encode()


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("refused", request=request)


class FakeBackends:
    """Primary and secondary completion endpoints with swappable handlers."""

    def __init__(self) -> None:
        self.primary: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(
            200, content=_sse("Hello", " there")
        )
        self.secondary: Callable[[httpx.Request], httpx.Response] = _refused
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if request.url.host == "primary.test":
            return self.primary(request)
        return self.secondary(request)


@pytest.fixture
def backends(api_client: TestClient, stores: Any) -> Iterator[FakeBackends]:
    """Route the orchestrator's completion calls to fake backends."""
    fake = FakeBackends()

    def orchestrator() -> ChatOrchestrator:
        http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
        return ChatOrchestrator(
            thread_store=stores.threads,
            chunk_store=stores.chunks,
            primary=CompletionBackend("primary", "http://primary.test/v1/chat", client=http),
            secondary=CompletionBackend("secondary", "http://secondary.test/v1/chat", client=http),
            settings=Settings(),
        )

    app.dependency_overrides[get_orchestrator] = orchestrator
    yield fake


def _events(response: httpx.Response) -> list[dict]:
    return list(parse_sse_lines(response.text.splitlines()))


def _messages(stores: Any, thread_id: str) -> list:
    ctx = RequestContext(owner_id=OWNER_ID)
    return asyncio.run(stores.threads.list_messages(uuid.UUID(thread_id), ctx))


class TestChatStream:
    """Successful turns."""

    def test_streams_sse_with_headers(
        self, api_client: TestClient, backends: FakeBackends, stores: Any
    ) -> None:
        """Test the SSE response, its headers and the persisted exchange."""
        response = api_client.post("/chat", json={"message": "hi"}, headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-rag-enabled"] == "false"

        events = _events(response)
        assert [e["type"] for e in events] == ["content", "content", "done"]
        assert events[-1]["full_content"] == "Hello there"
        assert events[-1]["tier"] == "primary"

        thread_id = response.headers["x-thread-id"]
        messages = _messages(stores, thread_id)
        assert [(m.role.value, m.content) for m in messages] == [
            ("user", "hi"),
            ("assistant", "Hello there"),
        ]

    def test_new_thread_is_titled_from_message(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test that the first message creates an active thread named after it."""
        response = api_client.post(
            "/chat", json={"message": "How long after botox can I exercise?"}, headers=AUTH_HEADERS
        )

        threads = api_client.get("/threads", headers=AUTH_HEADERS).json()
        assert [t["thread_id"] for t in threads] == [response.headers["x-thread-id"]]
        assert threads[0]["title"] == "How long after botox can I exercise?..."
        assert threads[0]["is_active"] is True

    def test_follow_up_reuses_active_thread_with_history(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test that a second message continues the thread and sends prior turns."""
        first = api_client.post("/chat", json={"message": "first"}, headers=AUTH_HEADERS)
        second = api_client.post("/chat", json={"message": "second"}, headers=AUTH_HEADERS)

        assert first.headers["x-thread-id"] == second.headers["x-thread-id"]
        sent = backends.requests[-1]["messages"]
        assert [(m["role"], m["content"]) for m in sent[1:]] == [
            ("user", "first"),
            ("assistant", "Hello there"),
            ("user", "second"),
        ]

    def test_explicit_thread_is_activated(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test that posting to an inactive thread makes it active."""
        old = api_client.post("/threads", json={"title": "old"}, headers=AUTH_HEADERS).json()
        api_client.post("/threads", json={"title": "new"}, headers=AUTH_HEADERS)

        response = api_client.post(
            "/chat", json={"message": "hi", "thread_id": old["thread_id"]}, headers=AUTH_HEADERS
        )

        assert response.headers["x-thread-id"] == old["thread_id"]
        threads = api_client.get("/threads", headers=AUTH_HEADERS).json()
        assert [t["thread_id"] for t in threads if t["is_active"]] == [old["thread_id"]]

    def test_rag_enabled_from_user_settings(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test that the saved RAG preference applies when the request omits it."""
        api_client.post(
            "/docs",
            json={"filename": "policy.txt", "text": "Deposit policy: deposits are refundable."},
            headers=AUTH_HEADERS,
        )
        api_client.patch("/settings", json={"enable_rag": True}, headers=AUTH_HEADERS)

        response = api_client.post(
            "/chat", json={"message": "deposit policy"}, headers=AUTH_HEADERS
        )

        assert response.headers["x-rag-enabled"] == "true"
        assert _events(response)[-1]["citations"] == ["policy.txt"]
        assert "Deposit policy" in backends.requests[-1]["messages"][0]["content"]

    def test_mid_stream_failure_emits_reset(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test that the client is told to discard partial content before the retry."""

        async def broken() -> AsyncIterator[bytes]:
            yield b'data: {"content": "Hel"}\n\n'
            raise httpx.ReadError("reset")

        def primary(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["stream"]:
                return httpx.Response(200, content=broken())
            return httpx.Response(200, json={"choices": [{"message": {"content": "Hello"}}]})

        backends.primary = primary

        response = api_client.post("/chat", json={"message": "hi"}, headers=AUTH_HEADERS)

        events = _events(response)
        assert [e["type"] for e in events] == ["content", "reset", "content", "done"]
        assert events[-1]["full_content"] == "Hello"


class TestChatFailures:
    """Auth, validation and exhausted backends."""

    def test_requires_auth(self, api_client: TestClient, backends: FakeBackends) -> None:
        """Test that anonymous callers get 401."""
        response = api_client.post("/chat", json={"message": "hi"})

        assert response.status_code == 401

    def test_empty_message_is_rejected(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test request validation."""
        response = api_client.post("/chat", json={"message": ""}, headers=AUTH_HEADERS)

        assert response.status_code == 422

    def test_unknown_thread_is_404(self, api_client: TestClient, backends: FakeBackends) -> None:
        """Test that a thread id the caller does not own is not found."""
        response = api_client.post(
            "/chat", json={"message": "hi", "thread_id": str(uuid.uuid4())}, headers=AUTH_HEADERS
        )

        assert response.status_code == 404

    def test_exhausted_backends_return_500(
        self, api_client: TestClient, backends: FakeBackends, stores: Any
    ) -> None:
        """Test the JSON error when no tier can answer, and the recorded notice."""
        backends.primary = _refused

        response = api_client.post("/chat", json={"message": "hi"}, headers=AUTH_HEADERS)

        assert response.status_code == 500
        assert response.json() == {"error": "upstream_unreachable", "detail": UNAVAILABLE_MESSAGE}

        [thread] = api_client.get("/threads", headers=AUTH_HEADERS).json()
        messages = _messages(stores, thread["thread_id"])
        assert [m.content for m in messages] == ["hi", UNAVAILABLE_MESSAGE]

    def test_secondary_answers_when_primary_is_down(
        self, api_client: TestClient, backends: FakeBackends
    ) -> None:
        """Test failover to the secondary tier over HTTP."""
        backends.primary = _refused
        backends.secondary = lambda r: httpx.Response(200, content=_sse("Backup"))

        response = api_client.post("/chat", json={"message": "hi"}, headers=AUTH_HEADERS)

        events = _events(response)
        assert events[-1]["tier"] == "secondary"
        assert events[-1]["full_content"] == "Backup"
