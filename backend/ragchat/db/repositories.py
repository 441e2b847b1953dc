"""Repository protocol interfaces for data access."""

from typing import Protocol
from uuid import UUID

from backend.ragchat.db.context import RequestContext
from backend.ragchat.models.chat import Message, Role, Thread, UserSettings
from backend.ragchat.models.docs import DocChunk, RetrievalResult, UserDocument

TITLE_MAX_CHARS = 50


def default_title(first_message: str) -> str:
    """Thread title derived from the first user message."""
    return first_message[:TITLE_MAX_CHARS] + "..."


class ThreadStore(Protocol):
    """Repository for threads and their messages.

    All operations are scoped to ``ctx.owner_id``. Threads owned by someone
    else behave exactly like threads that do not exist.
    """

    async def create_thread(
        self, ctx: RequestContext, *, title: str, tenant: str
    ) -> Thread:
        """Create a thread and make it the owner's only active thread.

        Args:
            ctx: Request context
            title: Display title
            tenant: Persona id the thread was started with

        Returns:
            The new, active thread
        """
        ...

    async def get_thread(self, thread_id: UUID, ctx: RequestContext) -> Thread | None:
        """Get a thread by ID, or None if missing or not owned."""
        ...

    async def get_active_thread(self, ctx: RequestContext) -> Thread | None:
        """Get the owner's active thread, if any."""
        ...

    async def set_active_thread(self, thread_id: UUID, ctx: RequestContext) -> Thread:
        """Deactivate all of the owner's threads, then activate one.

        Raises:
            AuthorizationFailure: If the thread is missing or not owned
        """
        ...

    async def list_threads(self, ctx: RequestContext) -> list[Thread]:
        """List the owner's threads, most recently updated first."""
        ...

    async def update_thread_title(
        self, thread_id: UUID, title: str, ctx: RequestContext
    ) -> Thread:
        """Rename a thread.

        Raises:
            AuthorizationFailure: If the thread is missing or not owned
        """
        ...

    async def delete_thread(self, thread_id: UUID, ctx: RequestContext) -> None:
        """Delete a thread and all of its messages.

        Raises:
            AuthorizationFailure: If the thread is missing or not owned
        """
        ...

    async def append_message(
        self,
        thread_id: UUID,
        ctx: RequestContext,
        *,
        role: Role,
        content: str,
        citations: list[str] | None = None,
        message_id: UUID | None = None,
    ) -> Message:
        """Append a message and bump the thread's ``updated_at``.

        Raises:
            AuthorizationFailure: If the thread is missing or not owned
            PersistenceFailure: If the write fails
        """
        ...

    async def list_messages(
        self, thread_id: UUID, ctx: RequestContext, *, limit: int | None = None
    ) -> list[Message]:
        """List messages oldest first. With ``limit``, only the most recent ones.

        Raises:
            AuthorizationFailure: If the thread is missing or not owned
        """
        ...


class ChunkStore(Protocol):
    """Repository for documents and their chunks."""

    async def create_document(self, ctx: RequestContext, *, filename: str) -> UserDocument:
        """Register a document before its chunks are inserted."""
        ...

    async def insert_chunks(
        self, doc: UserDocument, chunks: list[tuple[int, str]], ctx: RequestContext
    ) -> list[DocChunk]:
        """Persist a document's chunks in one transaction.

        Args:
            doc: Owning document
            chunks: (sequence_index, text) pairs from the chunker
            ctx: Request context

        Returns:
            The stored chunks, metadata filled with filename and total_chunks
        """
        ...

    async def list_documents(self, ctx: RequestContext) -> list[UserDocument]:
        """List the owner's documents, newest first."""
        ...

    async def delete_document(self, doc_id: UUID, ctx: RequestContext) -> None:
        """Delete a document and its chunks.

        Raises:
            AuthorizationFailure: If the document is missing or not owned
        """
        ...

    async def search_chunks(
        self, query: str, top_k: int, ctx: RequestContext
    ) -> list[RetrievalResult]:
        """Rank the owner's chunks against a query."""
        ...


class SettingsStore(Protocol):
    """Repository for per-user chat settings."""

    async def get_settings(self, ctx: RequestContext) -> UserSettings:
        """Get settings, falling back to defaults when none are stored."""
        ...

    async def save_settings(self, settings: UserSettings, ctx: RequestContext) -> UserSettings:
        """Insert or replace the owner's settings."""
        ...
