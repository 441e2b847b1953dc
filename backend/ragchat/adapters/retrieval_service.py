"""Client for the external document retrieval service."""

import logging
from collections.abc import Sequence

import httpx

from backend.ragchat.db.context import RequestContext
from backend.ragchat.errors import TransportUnavailable, UpstreamRejected, UpstreamTimeout
from backend.ragchat.models.docs import RetrievalResult

logger = logging.getLogger(__name__)

BACKEND_NAME = "retrieval_service"


class RetrievalServiceClient:
    """HTTP client for ``POST {query, top_k, filters}`` search requests."""

    def __init__(
        self,
        url: str,
        *,
        timeout_sec: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize retrieval service client.

        Args:
            url: Search endpoint URL
            timeout_sec: Ceiling for the whole request
            client: Optional httpx client (for testing with mocks)
        """
        self.url = url
        self.timeout_sec = timeout_sec
        self._client = client

    async def search(
        self,
        query: str,
        top_k: int,
        ctx: RequestContext,
        *,
        document_types: Sequence[str] = (),
    ) -> list[RetrievalResult]:
        """Search the owner's documents.

        Args:
            query: Free-text query
            top_k: Maximum number of results
            ctx: Request context; the owner id is sent as a filter
            document_types: Optional document type filter

        Returns:
            Results in the order the service returned them

        Raises:
            UpstreamTimeout: If the service did not answer in time
            TransportUnavailable: On connection errors
            UpstreamRejected: On non-success status or an unreadable body
        """
        filters: dict = {"owner_id": str(ctx.owner_id)}
        if document_types:
            filters["document_types"] = list(document_types)
        payload = {"query": query, "top_k": top_k, "filters": filters}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self.timeout_sec)
            close_client = True

        try:
            response = await client.post(self.url, json=payload, timeout=self.timeout_sec)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(
                f"Retrieval service timed out after {self.timeout_sec}s", backend=BACKEND_NAME
            ) from e
        except httpx.TransportError as e:
            raise TransportUnavailable(
                f"Retrieval service unreachable: {e}", backend=BACKEND_NAME
            ) from e
        finally:
            if close_client:
                await client.aclose()

        if response.status_code >= 400:
            raise UpstreamRejected(
                f"Retrieval service returned {response.status_code}",
                status_code=response.status_code,
                backend=BACKEND_NAME,
                body=response.text,
            )

        try:
            data = response.json()
            rows = data.get("results", [])
            results = [self._parse_row(row) for row in rows]
        except (ValueError, AttributeError, KeyError, TypeError) as e:
            raise UpstreamRejected(
                f"Retrieval service returned an unreadable body: {e}",
                status_code=response.status_code,
                backend=BACKEND_NAME,
                body=response.text,
            ) from e

        logger.info(f"Retrieval service returned {len(results)} results")
        return results[:top_k]

    @staticmethod
    def _parse_row(row: dict) -> RetrievalResult:
        # Service rows: {id, content, score, filename, chunk_index, document_id?}
        metadata: dict = {"filename": row.get("filename")}
        if "chunk_index" in row:
            metadata["chunk_index"] = row["chunk_index"]

        return RetrievalResult(
            chunk_id=str(row["id"]),
            text=row["content"],
            score=max(float(row.get("score") or 0.0), 0.0),
            document_id=str(row.get("document_id") or row.get("filename") or row["id"]),
            metadata=metadata,
        )


def get_retrieval_service_client(url: str, timeout_sec: float) -> RetrievalServiceClient | None:
    """Build a client when a service URL is configured, else None."""
    if not url:
        return None
    return RetrievalServiceClient(url, timeout_sec=timeout_sec)
