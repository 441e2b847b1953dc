"""Unit tests for UI helper functions."""

import json

import httpx

from ui.helpers import (
    DEV_OWNER_ID,
    StreamingReply,
    build_sections,
    get_auth_header,
    parse_sse_lines,
    stream_chat,
)


def test_auth_header_uses_dev_owner() -> None:
    """Test the bearer header."""
    assert get_auth_header() == {"Authorization": f"Bearer {DEV_OWNER_ID}"}


def test_parse_sse_lines_skips_noise() -> None:
    """Test that only JSON data frames become events."""
    lines = [
        'data: {"type": "content", "delta": "Hi"}',
        "",
        ": comment",
        "data: not json",
        'data: {"type": "done", "full_content": "Hi", "tier": "primary"}',
    ]

    events = list(parse_sse_lines(lines))

    assert [e["type"] for e in events] == ["content", "done"]


def test_streaming_reply_discards_content_on_reset() -> None:
    """Test that a reset clears partial content before the retry streams."""
    reply = StreamingReply()

    for event in [
        {"type": "content", "delta": "Hel"},
        {"type": "reset", "tier": "primary", "reason": "upstream_unreachable"},
        {"type": "content", "delta": "Hello"},
        {"type": "done", "full_content": "Hello", "citations": ["a.txt"], "tier": "primary"},
    ]:
        reply.apply(event)

    assert reply.content == "Hello"
    assert reply.citations == ["a.txt"]
    assert reply.done
    assert reply.error is None


def test_streaming_reply_error() -> None:
    """Test that an error event ends the reply with a message."""
    reply = StreamingReply()

    reply.apply({"type": "error", "code": "persistence_failure", "message": "disk full"})

    assert reply.done
    assert reply.error == "disk full"


def test_stream_chat_yields_thread_id_and_events() -> None:
    """Test the /chat client against a mocked stream."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["authorization"]
        body = (
            'data: {"type": "content", "delta": "Hi"}\n\n'
            'data: {"type": "done", "full_content": "Hi", "tier": "primary"}\n\n'
        )
        return httpx.Response(
            200,
            text=body,
            headers={"content-type": "text/event-stream", "X-Thread-Id": "t-1"},
        )

    client = httpx.Client(transport=httpx.MockTransport(handler))

    events = list(
        stream_chat("http://api.test", "hello", tenant="robbie", rag_enabled=True, client=client)
    )

    assert seen["body"] == {
        "message": "hello",
        "deep": False,
        "tenant": "robbie",
        "rag_enabled": True,
    }
    assert seen["auth"] == f"Bearer {DEV_OWNER_ID}"
    assert [thread_id for thread_id, _ in events] == ["t-1", "t-1"]
    assert [e["type"] for _, e in events] == ["content", "done"]


def test_build_sections_from_history_and_pending_message() -> None:
    """Test that each user turn after the first opens a section."""
    messages = [
        {"message_id": "1", "role": "user", "content": "q1"},
        {"message_id": "2", "role": "assistant", "content": "a1", "citations": ["x.txt"]},
        {"message_id": "3", "role": "system", "content": "hidden"},
    ]

    sections = build_sections(messages, pending_user="q2")

    assert len(sections) == 2
    assert [m.content for m in sections[0].messages] == ["q1", "a1"]
    assert sections[0].messages[1].citations == ("x.txt",)
    assert sections[1].is_active
    assert sections[1].messages[0].content == "q2"


def test_build_sections_empty() -> None:
    """Test that nothing renders for a new thread."""
    assert build_sections([]) == []
