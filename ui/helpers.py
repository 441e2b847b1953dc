"""Helper functions for UI - /chat streaming client and section rendering."""

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from backend.ragchat.models.sections import MessageSection, SectionMessage
from backend.ragchat.rendering.sections import reduce_sections

DEV_OWNER_ID = "00000000-0000-0000-0000-000000000002"


def get_auth_header(owner_id: str = DEV_OWNER_ID) -> dict[str, str]:
    """Get auth header for API calls (dev owner id)."""
    return {"Authorization": f"Bearer {owner_id}"}


def parse_sse_lines(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Parse ``data: {...}`` lines of the /chat stream into event dicts.

    Blank lines and non-data fields are skipped, as are frames that are not
    valid JSON.
    """
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[len("data:") :].strip()
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict):
            yield event


@dataclass
class StreamingReply:
    """Client-side view of the assistant reply being streamed."""

    content: str = ""
    citations: list[str] = field(default_factory=list)
    done: bool = False
    error: str | None = None
    tier: str | None = None

    def apply(self, event: dict[str, Any]) -> None:
        """Fold one /chat event into the reply."""
        kind = event.get("type")
        if kind == "content":
            self.content += event.get("delta", "")
        elif kind == "reset":
            # Partial content of a failed attempt is discarded
            self.content = ""
        elif kind == "done":
            self.content = event.get("full_content", self.content)
            self.citations = list(event.get("citations") or [])
            self.tier = event.get("tier")
            self.done = True
        elif kind == "error":
            self.error = event.get("message") or event.get("code", "error")
            self.done = True


def stream_chat(
    backend_url: str,
    message: str,
    *,
    thread_id: str | None = None,
    tenant: str | None = None,
    rag_enabled: bool | None = None,
    deep: bool = False,
    client: httpx.Client | None = None,
) -> Iterator[tuple[str | None, dict[str, Any]]]:
    """POST /chat and yield (thread_id, event) pairs as they arrive.

    Raises:
        httpx.HTTPStatusError: If the request fails (including exhausted backends)
    """
    body: dict[str, Any] = {"message": message, "deep": deep}
    if thread_id:
        body["thread_id"] = thread_id
    if tenant:
        body["tenant"] = tenant
    if rag_enabled is not None:
        body["rag_enabled"] = rag_enabled

    http = client or httpx.Client(timeout=120.0)
    try:
        with http.stream(
            "POST", f"{backend_url}/chat", json=body, headers=get_auth_header()
        ) as response:
            if response.status_code >= 400:
                response.read()
                response.raise_for_status()
            active_thread = response.headers.get("X-Thread-Id")
            for event in parse_sse_lines(response.iter_lines()):
                yield active_thread, event
    finally:
        if client is None:
            http.close()


def list_threads(backend_url: str) -> list[dict[str, Any]]:
    """GET /threads."""
    response = httpx.get(f"{backend_url}/threads", headers=get_auth_header(), timeout=10.0)
    response.raise_for_status()
    result: list[dict[str, Any]] = response.json()
    return result


def get_thread_messages(backend_url: str, thread_id: str) -> list[dict[str, Any]]:
    """GET /threads/{id} and return its messages."""
    response = httpx.get(
        f"{backend_url}/threads/{thread_id}", headers=get_auth_header(), timeout=10.0
    )
    response.raise_for_status()
    messages: list[dict[str, Any]] = response.json()["messages"]
    return messages


def build_sections(
    messages: list[dict[str, Any]], pending_user: str | None = None
) -> list[MessageSection]:
    """Sections for persisted messages plus an optional just-sent user message.

    Args:
        messages: Message dicts as returned by GET /threads/{id}
        pending_user: User message not yet persisted on the server

    Returns:
        Sections ready to render, the newest last
    """
    flagged: list[SectionMessage] = []
    for message in messages:
        if message.get("role") == "system":
            continue
        flagged.append(
            SectionMessage(
                id=str(message["message_id"]),
                role=message["role"],
                content=message["content"],
                new_section=message["role"] == "user" and bool(flagged),
                citations=tuple(message.get("citations") or ()),
            )
        )

    if pending_user is not None:
        flagged.append(
            SectionMessage(
                id=f"pending-{len(flagged)}",
                role="user",
                content=pending_user,
                new_section=bool(flagged),
            )
        )

    return reduce_sections(flagged)
