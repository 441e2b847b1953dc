"""HTTP client for OpenAI-compatible chat completion backends.

Security: API keys come from settings only, never hardcoded.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from backend.ragchat.config import Settings
from backend.ragchat.errors import (
    StreamingRejected,
    StreamInterrupted,
    TransportUnavailable,
    UpstreamRejected,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

# Statuses a backend uses to refuse ``stream: true`` specifically
_STREAMING_REFUSAL_STATUSES = frozenset({400, 415, 422, 501})


class CompletionBackend:
    """One chat completion endpoint, usable streaming or non-streaming."""

    def __init__(
        self,
        name: str,
        url: str,
        *,
        api_key: str = "",
        model: str | None = None,
        connect_timeout_sec: float = 5.0,
        read_timeout_sec: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize completion backend.

        Args:
            name: Backend name used in logs and errors
            url: Chat completions endpoint URL
            api_key: Optional bearer token
            model: Optional model name added to every payload
            connect_timeout_sec: Connection establishment ceiling
            read_timeout_sec: Ceiling between two reads of the body
            client: Optional httpx client (for testing with mocks)
        """
        self.name = name
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = httpx.Timeout(
            read_timeout_sec, connect=connect_timeout_sec, read=read_timeout_sec
        )
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(self, payload: dict[str, Any], *, stream: bool) -> dict[str, Any]:
        body = dict(payload)
        body["stream"] = stream
        if self.model and "model" not in body:
            body["model"] = self.model
        return body

    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[bytes]:
        """POST with ``stream: true`` and yield raw body bytes as they arrive.

        Closing the iterator closes the upstream response.

        Raises:
            UpstreamTimeout: Connect or read timeout before the body started
            TransportUnavailable: Connection refused, DNS failure
            StreamingRejected: Backend refused streaming for this request
            UpstreamRejected: Any other non-success status
            StreamInterrupted: Transport failure after the body started
        """
        client, close_client = self._acquire_client()
        try:
            try:
                async with client.stream(
                    "POST",
                    self.url,
                    json=self._body(payload, stream=True),
                    headers=self._headers(),
                    timeout=self.timeout,
                ) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise self._rejection(response.status_code, body, streaming=True)

                    started = False
                    try:
                        async for chunk in response.aiter_bytes():
                            started = True
                            yield chunk
                    except httpx.TransportError as e:
                        if not started and isinstance(e, httpx.TimeoutException):
                            raise UpstreamTimeout(
                                f"{self.name} timed out before streaming", backend=self.name
                            ) from e
                        raise StreamInterrupted(
                            f"{self.name} stream interrupted: {e}", backend=self.name
                        ) from e
            except httpx.TimeoutException as e:
                raise UpstreamTimeout(f"{self.name} timed out: {e}", backend=self.name) from e
            except httpx.TransportError as e:
                raise TransportUnavailable(
                    f"{self.name} unreachable: {e}", backend=self.name
                ) from e
        finally:
            if close_client:
                await client.aclose()

    async def complete(self, payload: dict[str, Any]) -> str:
        """POST with ``stream: false`` and return the assistant content.

        Raises:
            UpstreamTimeout: Connect or read timeout
            TransportUnavailable: Connection refused, DNS failure
            UpstreamRejected: Non-success status or unreadable body
        """
        client, close_client = self._acquire_client()
        try:
            response = await client.post(
                self.url,
                json=self._body(payload, stream=False),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"{self.name} timed out: {e}", backend=self.name) from e
        except httpx.TransportError as e:
            raise TransportUnavailable(f"{self.name} unreachable: {e}", backend=self.name) from e
        finally:
            if close_client:
                await client.aclose()

        if response.status_code >= 400:
            raise self._rejection(response.status_code, response.text, streaming=False)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise UpstreamRejected(
                f"{self.name} returned a non-JSON body",
                status_code=response.status_code,
                backend=self.name,
                body=response.text,
            ) from e

        return _extract_message_content(data)

    def _acquire_client(self) -> tuple[httpx.AsyncClient, bool]:
        if self._client is not None:
            return self._client, False
        return httpx.AsyncClient(timeout=self.timeout), True

    def _rejection(self, status_code: int, body: str, *, streaming: bool) -> UpstreamRejected:
        message = f"{self.name} returned {status_code}"
        if (
            streaming
            and status_code in _STREAMING_REFUSAL_STATUSES
            and "stream" in body.lower()
        ):
            return StreamingRejected(
                message, status_code=status_code, backend=self.name, body=body
            )
        return UpstreamRejected(message, status_code=status_code, backend=self.name, body=body)


def _extract_message_content(data: Any) -> str:
    """Content of a non-streaming response: choices[0].message.content, else content."""
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
        if isinstance(data.get("content"), str):
            return data["content"]
    return ""


def get_completion_backends(
    settings: Settings, client: httpx.AsyncClient | None = None
) -> tuple[CompletionBackend, CompletionBackend | None]:
    """Build the primary and (if configured) secondary backends from settings."""
    primary = CompletionBackend(
        "primary",
        settings.primary_completion_url,
        api_key=settings.primary_api_key,
        connect_timeout_sec=settings.completion_connect_timeout_sec,
        read_timeout_sec=settings.completion_read_timeout_sec,
        client=client,
    )

    secondary = None
    if settings.secondary_completion_url:
        secondary = CompletionBackend(
            "secondary",
            settings.secondary_completion_url,
            api_key=settings.secondary_api_key,
            model=settings.secondary_model,
            connect_timeout_sec=settings.completion_connect_timeout_sec,
            read_timeout_sec=settings.completion_read_timeout_sec,
            client=client,
        )
    else:
        logger.warning("No secondary completion backend configured")

    return primary, secondary
