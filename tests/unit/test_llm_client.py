"""Tests for the completion backend client and strategies.

All tests are deterministic and do not make real network calls.
"""

import json
from collections.abc import AsyncIterator

import httpx
import pytest

from backend.ragchat.config import Settings
from backend.ragchat.errors import (
    StreamingRejected,
    StreamInterrupted,
    TransportUnavailable,
    UpstreamRejected,
    UpstreamTimeout,
)
from backend.ragchat.llm.client import CompletionBackend, get_completion_backends
from backend.ragchat.llm.strategies import (
    CompletionRequest,
    NonStreamingStrategy,
    StreamingStrategy,
)

URL = "http://primary.test/v1/chat/completions"


def _backend(handler) -> CompletionBackend:  # type: ignore[no-untyped-def]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CompletionBackend("primary", URL, api_key="sk-test", model="m1", client=client)


def _sse(*contents: str, done: bool = True) -> bytes:
    frames = [
        f"data: {json.dumps({'choices': [{'delta': {'content': c}}]})}\n\n" for c in contents
    ]
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


async def _collect(iterator: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in iterator])


class TestStream:
    """Streaming POST behaviour."""

    @pytest.mark.asyncio
    async def test_sends_stream_flag_model_and_auth(self) -> None:
        """Test request body and headers of a streaming call."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, content=_sse("hi"))

        body = await _collect(_backend(handler).stream({"messages": []}))

        assert seen["body"]["stream"] is True
        assert seen["body"]["model"] == "m1"
        assert seen["auth"] == "Bearer sk-test"
        assert b"[DONE]" in body

    @pytest.mark.asyncio
    async def test_connect_timeout_maps_to_upstream_timeout(self) -> None:
        """Test that a connect timeout is reported as a timeout."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamTimeout) as exc_info:
            await _collect(_backend(handler).stream({}))

        assert exc_info.value.code == "upstream_unreachable"
        assert not exc_info.value.retry_same_backend

    @pytest.mark.asyncio
    async def test_connection_refused_maps_to_transport_unavailable(self) -> None:
        """Test that a connect error is reported as unreachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportUnavailable):
            await _collect(_backend(handler).stream({}))

    @pytest.mark.asyncio
    async def test_error_status_maps_to_rejection(self) -> None:
        """Test that a 500 is a rejection that moves on to the next tier."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="internal error")

        with pytest.raises(UpstreamRejected) as exc_info:
            await _collect(_backend(handler).stream({}))

        assert exc_info.value.status_code == 500
        assert not exc_info.value.retry_same_backend

    @pytest.mark.asyncio
    async def test_streaming_refusal_is_retryable(self) -> None:
        """Test that an explicit refusal of streaming allows a non-streaming retry."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "stream is not supported"})

        with pytest.raises(StreamingRejected) as exc_info:
            await _collect(_backend(handler).stream({}))

        assert exc_info.value.retry_same_backend

    @pytest.mark.asyncio
    async def test_failure_mid_body_is_interrupted(self) -> None:
        """Test that a transport error after the first bytes is an interruption."""

        async def body() -> AsyncIterator[bytes]:
            yield _sse("Hel", done=False)
            raise httpx.ReadError("connection reset")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        received: list[bytes] = []
        with pytest.raises(StreamInterrupted):
            async for chunk in _backend(handler).stream({}):
                received.append(chunk)

        assert received == [_sse("Hel", done=False)]


class TestComplete:
    """Non-streaming POST behaviour."""

    @pytest.mark.asyncio
    async def test_reads_message_content(self) -> None:
        """Test choices[0].message.content extraction and stream flag."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Hello"}}]})

        assert await _backend(handler).complete({"messages": []}) == "Hello"
        assert seen["body"]["stream"] is False

    @pytest.mark.asyncio
    async def test_reads_top_level_content(self) -> None:
        """Test the top-level content fallback."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": "plain"})

        assert await _backend(handler).complete({}) == "plain"

    @pytest.mark.asyncio
    async def test_non_json_body_is_rejected(self) -> None:
        """Test that an unreadable body is a rejection."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(UpstreamRejected):
            await _backend(handler).complete({})


class TestStrategies:
    """Strategy event sequences."""

    @pytest.mark.asyncio
    async def test_streaming_strategy_decodes_events(self) -> None:
        """Test that the streaming strategy yields content then done."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("Hel", "lo"))

        strategy = StreamingStrategy(_backend(handler))
        request = CompletionRequest(messages=[], temperature=0.7, max_tokens=100)

        events = [e async for e in strategy.attempt(request)]

        assert [e.kind for e in events] == ["content", "content", "done"]

    @pytest.mark.asyncio
    async def test_streaming_strategy_ends_with_done_without_sentinel(self) -> None:
        """Test that a body closed without [DONE] still completes."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse("partial", done=False))

        strategy = StreamingStrategy(_backend(handler))
        request = CompletionRequest(messages=[], temperature=0.7, max_tokens=100)

        events = [e async for e in strategy.attempt(request)]

        assert events[-1].kind == "done"

    @pytest.mark.asyncio
    async def test_non_streaming_strategy_omits_functions(self) -> None:
        """Test that function definitions are not sent without streaming."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": "whole answer"})

        strategy = NonStreamingStrategy(_backend(handler))
        request = CompletionRequest(
            messages=[], temperature=0.7, max_tokens=100, functions=[{"name": "f"}]
        )

        events = [e async for e in strategy.attempt(request)]

        assert "functions" not in seen["body"]
        assert [(e.kind, e.text) for e in events] == [("content", "whole answer"), ("done", "")]


def test_completion_request_payload_with_functions() -> None:
    """Test that functions are offered with automatic calling."""
    request = CompletionRequest(
        messages=[{"role": "user", "content": "hi"}],
        temperature=0.5,
        max_tokens=10,
        functions=[{"name": "f"}],
    )

    payload = request.to_payload()

    assert payload["function_call"] == "auto"
    assert payload["functions"] == [{"name": "f"}]
    assert payload["max_tokens"] == 10


def test_get_completion_backends_without_secondary() -> None:
    """Test that the secondary tier is optional."""
    settings = Settings(
        primary_completion_url="http://primary.test", secondary_completion_url=""
    )

    primary, secondary = get_completion_backends(settings)

    assert primary.name == "primary"
    assert secondary is None


def test_get_completion_backends_with_secondary() -> None:
    """Test that the secondary backend carries its own model."""
    settings = Settings(
        primary_completion_url="http://primary.test",
        secondary_completion_url="http://secondary.test",
        secondary_model="gpt-5-mini",
    )

    _, secondary = get_completion_backends(settings)

    assert secondary is not None
    assert secondary.model == "gpt-5-mini"
