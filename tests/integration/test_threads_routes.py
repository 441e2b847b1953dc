"""Integration tests for thread API routes."""

import asyncio
import uuid
from typing import Any

from fastapi.testclient import TestClient

from backend.ragchat.db.context import RequestContext
from backend.ragchat.models.chat import Role

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
AUTH_HEADERS = {"Authorization": f"Bearer {OWNER_ID}"}


def _create(client: TestClient, **body: Any) -> dict:
    response = client.post("/threads", json=body, headers=AUTH_HEADERS)
    assert response.status_code == 201
    return response.json()


def _add_messages(stores: Any, thread_id: str, *turns: tuple[Role, str]) -> None:
    ctx = RequestContext(owner_id=OWNER_ID)

    async def add() -> None:
        for role, content in turns:
            await stores.threads.append_message(
                uuid.UUID(thread_id), ctx, role=role, content=content
            )

    asyncio.run(add())


class TestThreadLifecycle:
    """Create, list, rename, activate, delete."""

    def test_create_thread_defaults(self, api_client: TestClient) -> None:
        """Test that a new thread is active, titled "New Chat" and uses the default tenant."""
        thread = _create(api_client)

        assert thread["title"] == "New Chat"
        assert thread["is_active"] is True
        assert thread["tenant"] == "amanda"

    def test_new_thread_deactivates_previous(self, api_client: TestClient) -> None:
        """Test that only the newest thread is active."""
        first = _create(api_client, title="first")
        second = _create(api_client, title="second", tenant="robbie")

        threads = api_client.get("/threads", headers=AUTH_HEADERS).json()

        active = {t["thread_id"]: t["is_active"] for t in threads}
        assert active == {first["thread_id"]: False, second["thread_id"]: True}

    def test_get_thread_with_messages(self, api_client: TestClient, stores: Any) -> None:
        """Test that GET /threads/{id} returns the history in order."""
        thread = _create(api_client)
        _add_messages(stores, thread["thread_id"], (Role.user, "hi"), (Role.assistant, "hello"))

        response = api_client.get(f"/threads/{thread['thread_id']}", headers=AUTH_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["thread"]["thread_id"] == thread["thread_id"]
        assert [m["content"] for m in data["messages"]] == ["hi", "hello"]

    def test_rename_and_activate(self, api_client: TestClient) -> None:
        """Test PATCH with a title and activation."""
        first = _create(api_client, title="first")
        _create(api_client, title="second")

        response = api_client.patch(
            f"/threads/{first['thread_id']}",
            json={"title": "renamed", "is_active": True},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "renamed"
        assert response.json()["is_active"] is True

        threads = api_client.get("/threads", headers=AUTH_HEADERS).json()
        assert [t["thread_id"] for t in threads if t["is_active"]] == [first["thread_id"]]

    def test_direct_deactivation_is_rejected(self, api_client: TestClient) -> None:
        """Test that is_active=false is not accepted."""
        thread = _create(api_client)

        response = api_client.patch(
            f"/threads/{thread['thread_id']}", json={"is_active": False}, headers=AUTH_HEADERS
        )

        assert response.status_code == 422

    def test_delete_thread(self, api_client: TestClient) -> None:
        """Test that a deleted thread is gone."""
        thread = _create(api_client)

        response = api_client.delete(f"/threads/{thread['thread_id']}", headers=AUTH_HEADERS)

        assert response.status_code == 204
        missing = api_client.get(f"/threads/{thread['thread_id']}", headers=AUTH_HEADERS)
        assert missing.status_code == 404


class TestThreadIsolation:
    """Ownership and auth."""

    def test_requires_auth(self, api_client: TestClient) -> None:
        """Test that anonymous callers get 401."""
        assert api_client.get("/threads").status_code == 401

    def test_other_owner_sees_nothing(self, api_client: TestClient) -> None:
        """Test that another owner can neither list nor read the thread."""
        thread = _create(api_client)
        other = {"Authorization": f"Bearer {uuid.uuid4()}"}

        assert api_client.get("/threads", headers=other).json() == []
        assert api_client.get(f"/threads/{thread['thread_id']}", headers=other).status_code == 404
        assert (
            api_client.delete(f"/threads/{thread['thread_id']}", headers=other).status_code == 404
        )


def test_thread_sections(api_client: TestClient, stores: Any) -> None:
    """Test that each user turn after the first opens a new section."""
    thread = _create(api_client)
    _add_messages(
        stores,
        thread["thread_id"],
        (Role.user, "q1"),
        (Role.assistant, "a1"),
        (Role.user, "q2"),
        (Role.assistant, "a2"),
    )

    response = api_client.get(f"/threads/{thread['thread_id']}/sections", headers=AUTH_HEADERS)

    assert response.status_code == 200
    sections = response.json()
    assert len(sections) == 2
    assert [m["content"] for m in sections[1]["messages"]] == ["q2", "a2"]
    assert [s["is_active"] for s in sections] == [False, True]
