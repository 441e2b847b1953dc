"""Stream event models - what the decoder reads and what the client receives."""

from dataclasses import dataclass
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field

StreamEventKind = Literal["content", "function_call", "error", "done"]


@dataclass(frozen=True)
class StreamEvent:
    """Event decoded from a completion backend's SSE body.

    ``content`` carries ``text``; ``function_call`` carries ``name`` and/or an
    ``arguments`` fragment; ``error`` carries the upstream message in ``text``.
    """

    kind: StreamEventKind
    text: str = ""
    name: str | None = None
    arguments: str = ""


class ContentDelta(BaseModel):
    """Incremental assistant content."""

    type: Literal["content"] = "content"
    delta: str


class StreamReset(BaseModel):
    """Partial content of a failed attempt must be discarded by the client."""

    type: Literal["reset"] = "reset"
    tier: str
    reason: str


class Done(BaseModel):
    """Terminal success event."""

    type: Literal["done"] = "done"
    full_content: str
    citations: list[str] = Field(default_factory=list)
    message_id: UUID | None = None
    tier: str


class ErrorEvent(BaseModel):
    """Terminal failure event.

    Per the error taxonomy: ``upstream_unreachable`` / ``upstream_rejected`` when
    every completion tier is exhausted, ``persistence_failure`` when the
    completed turn could not be written.
    """

    type: Literal["error"] = "error"
    code: str
    message: str


ChatEvent = Annotated[
    ContentDelta | StreamReset | Done | ErrorEvent,
    Field(discriminator="type"),
]


def to_sse(event: ContentDelta | StreamReset | Done | ErrorEvent) -> str:
    """Serialize a chat event as a single SSE data frame."""
    return f"data: {event.model_dump_json()}\n\n"
