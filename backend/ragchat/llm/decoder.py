"""Incremental decoder for completion backend SSE bodies.

Bytes arrive in arbitrary pieces: a frame may be split across reads and one
read may carry several frames. The decoder keeps the unterminated tail in a
carry-over buffer and only parses complete lines.
"""

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from backend.ragchat.errors import DecodeAnomaly
from backend.ragchat.models.events import StreamEvent
from backend.ragchat.utils.metrics import metrics

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_IGNORED_FIELDS = ("event:", "id:", "retry:")


class StreamDecoder:
    """Stateful SSE frame parser owning a carry-over buffer."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Data payload that failed to parse, retried joined with the next frame
        self._stash: str | None = None
        self.finished = False
        self.anomalies: list[DecodeAnomaly] = []

    def feed(self, data: bytes) -> list[StreamEvent]:
        """Consume bytes and return the events completed by them."""
        if self.finished:
            return []

        self._buffer.extend(data)
        events: list[StreamEvent] = []

        while not self.finished:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            events.extend(self._decode_line(raw))

        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the unterminated tail and any stashed payload at end of body."""
        events: list[StreamEvent] = []
        if self._buffer and not self.finished:
            raw = bytes(self._buffer)
            self._buffer.clear()
            events.extend(self._decode_line(raw))

        if self._stash is not None:
            self._record_anomaly("Unterminated JSON payload at end of stream", self._stash)
            self._stash = None

        return events

    def _decode_line(self, raw: bytes) -> list[StreamEvent]:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")

        if not line.strip() or line.startswith(":"):
            return []
        if line.startswith(_IGNORED_FIELDS):
            return []
        if not line.startswith("data:"):
            self._record_anomaly("Unrecognized stream line", line)
            return []

        payload = line[len("data:") :].strip()
        if not payload:
            return []

        if payload == DONE_SENTINEL:
            if self._stash is not None:
                self._record_anomaly("Unterminated JSON payload before [DONE]", self._stash)
                self._stash = None
            self.finished = True
            return [StreamEvent(kind="done")]

        return self._decode_payload(payload)

    def _decode_payload(self, payload: str) -> list[StreamEvent]:
        if self._stash is not None:
            joined = self._stash + payload
            try:
                data = json.loads(joined)
            except json.JSONDecodeError:
                # Joined form is no better; give up on the stash, retry alone
                self._record_anomaly("Malformed JSON payload", self._stash)
                self._stash = None
            else:
                self._stash = None
                return self._events_from(data, joined)

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._stash = payload
            return []

        return self._events_from(data, payload)

    def _events_from(self, data: Any, payload: str) -> list[StreamEvent]:
        if not isinstance(data, dict):
            self._record_anomaly("Stream payload is not an object", payload)
            return []

        if data.get("error"):
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            return [StreamEvent(kind="error", text=str(message))]

        delta = _first_choice_delta(data)

        function_call = delta.get("function_call") if delta else None
        if isinstance(function_call, dict):
            return [
                StreamEvent(
                    kind="function_call",
                    name=function_call.get("name"),
                    arguments=function_call.get("arguments") or "",
                )
            ]

        content = _extract_content(data, delta)
        if content:
            return [StreamEvent(kind="content", text=content)]

        return []

    def _record_anomaly(self, message: str, frame: str) -> None:
        anomaly = DecodeAnomaly(message, frame=frame)
        self.anomalies.append(anomaly)
        metrics.inc_decode_anomaly()
        logger.warning(f"{message}: {frame[:200]!r}")


def _first_choice_delta(data: dict) -> dict | None:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict):
            return delta
    return None


def _extract_content(data: dict, delta: dict | None) -> str:
    """First present of choices[0].delta.content, delta, content."""
    if delta is not None and isinstance(delta.get("content"), str):
        return delta["content"]
    if isinstance(data.get("delta"), str):
        return data["delta"]
    if isinstance(data.get("content"), str):
        return data["content"]
    return ""


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream into events.

    Each call owns a fresh decoder, so the same source can be decoded again
    from the start. Iteration stops after the ``done`` event.
    """
    decoder = StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.finished:
            return

    for event in decoder.finish():
        yield event
