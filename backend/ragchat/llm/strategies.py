"""Completion strategies and the tier list the orchestrator walks."""

from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Protocol

from backend.ragchat.llm.client import CompletionBackend
from backend.ragchat.llm.decoder import decode_stream
from backend.ragchat.models.events import StreamEvent


@dataclass(frozen=True)
class CompletionRequest:
    """Request body shared by every strategy of a tier."""

    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int
    functions: list[dict[str, Any]] | None = None

    def to_payload(self, *, include_functions: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if include_functions and self.functions:
            payload["functions"] = self.functions
            payload["function_call"] = "auto"
        return payload


class CompletionStrategy(Protocol):
    """One way of obtaining a completion from a backend."""

    name: str
    backend: CompletionBackend

    def attempt(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Yield decoded events, ending with a ``done`` event.

        Raises:
            ChatServiceError: On transport failure or rejection
        """
        ...


class StreamingStrategy:
    """POST with ``stream: true`` and decode the SSE body incrementally."""

    name = "streaming"

    def __init__(self, backend: CompletionBackend) -> None:
        self.backend = backend

    async def attempt(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        saw_done = False
        async with aclosing(self.backend.stream(request.to_payload())) as body:
            async with aclosing(decode_stream(body)) as events:
                async for event in events:
                    if event.kind == "done":
                        saw_done = True
                    yield event

        # Body ended without the sentinel: the completion is what was received
        if not saw_done:
            yield StreamEvent(kind="done")


class NonStreamingStrategy:
    """POST with ``stream: false``; the whole answer arrives as one event."""

    name = "non_streaming"

    def __init__(self, backend: CompletionBackend) -> None:
        self.backend = backend

    async def attempt(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        content = await self.backend.complete(request.to_payload(include_functions=False))
        if content:
            yield StreamEvent(kind="content", text=content)
        yield StreamEvent(kind="done")


@dataclass
class Tier:
    """A backend with its request and the strategies to try, in order."""

    name: str
    request: CompletionRequest
    strategies: list[CompletionStrategy]
    citations: list[str] = field(default_factory=list)


def backend_tier(
    name: str,
    backend: CompletionBackend,
    request: CompletionRequest,
    *,
    citations: list[str] | None = None,
) -> Tier:
    """Streaming first, then a single non-streaming retry on the same backend."""
    return Tier(
        name=name,
        request=request,
        strategies=[StreamingStrategy(backend), NonStreamingStrategy(backend)],
        citations=list(citations or []),
    )
