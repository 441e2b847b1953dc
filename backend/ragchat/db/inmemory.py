"""In-memory implementations of repository interfaces."""

import asyncio
import uuid
from datetime import datetime, timezone

from backend.ragchat.db.context import RequestContext
from backend.ragchat.docs.retriever import rank_chunks
from backend.ragchat.errors import AuthorizationFailure
from backend.ragchat.models.chat import Message, Role, Thread, UserSettings
from backend.ragchat.models.docs import DocChunk, RetrievalResult, UserDocument
from backend.ragchat.utils.metrics import metrics


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryThreadStore:
    """In-memory implementation of ThreadStore."""

    def __init__(self) -> None:
        self._threads: dict[uuid.UUID, Thread] = {}
        self._messages: dict[uuid.UUID, list[Message]] = {}
        # Serializes the deactivate-then-activate sequence
        self._lock = asyncio.Lock()

    def _owned(self, thread_id: uuid.UUID, ctx: RequestContext) -> Thread:
        thread = self._threads.get(thread_id)
        if thread is None or thread.owner_id != ctx.owner_id:
            raise AuthorizationFailure(f"Thread {thread_id} not found")
        return thread

    def _deactivate_all(self, ctx: RequestContext) -> None:
        for thread_id, thread in self._threads.items():
            if thread.owner_id == ctx.owner_id and thread.is_active:
                self._threads[thread_id] = thread.model_copy(update={"is_active": False})

    async def create_thread(self, ctx: RequestContext, *, title: str, tenant: str) -> Thread:
        """Create a thread and make it the owner's only active thread."""
        async with self._lock:
            self._deactivate_all(ctx)
            now = _now()
            thread = Thread(
                thread_id=uuid.uuid4(),
                owner_id=ctx.owner_id,
                title=title,
                tenant=tenant,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self._threads[thread.thread_id] = thread
            self._messages[thread.thread_id] = []
            return thread

    async def get_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> Thread | None:
        thread = self._threads.get(thread_id)
        if thread is None or thread.owner_id != ctx.owner_id:
            return None
        return thread

    async def get_active_thread(self, ctx: RequestContext) -> Thread | None:
        for thread in self._threads.values():
            if thread.owner_id == ctx.owner_id and thread.is_active:
                return thread
        return None

    async def set_active_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> Thread:
        """Deactivate all of the owner's threads, then activate one."""
        async with self._lock:
            thread = self._owned(thread_id, ctx)
            self._deactivate_all(ctx)
            thread = thread.model_copy(update={"is_active": True, "updated_at": _now()})
            self._threads[thread_id] = thread
            return thread

    async def list_threads(self, ctx: RequestContext) -> list[Thread]:
        threads = [t for t in self._threads.values() if t.owner_id == ctx.owner_id]
        threads.sort(key=lambda t: t.updated_at, reverse=True)
        return threads

    async def update_thread_title(
        self, thread_id: uuid.UUID, title: str, ctx: RequestContext
    ) -> Thread:
        thread = self._owned(thread_id, ctx)
        thread = thread.model_copy(update={"title": title, "updated_at": _now()})
        self._threads[thread_id] = thread
        return thread

    async def delete_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> None:
        self._owned(thread_id, ctx)
        del self._threads[thread_id]
        self._messages.pop(thread_id, None)

    async def append_message(
        self,
        thread_id: uuid.UUID,
        ctx: RequestContext,
        *,
        role: Role,
        content: str,
        citations: list[str] | None = None,
        message_id: uuid.UUID | None = None,
    ) -> Message:
        """Append a message and bump the thread's updated_at."""
        thread = self._owned(thread_id, ctx)
        now = _now()
        message = Message(
            message_id=message_id or uuid.uuid4(),
            thread_id=thread_id,
            role=role,
            content=content,
            created_at=now,
            citations=citations,
        )
        self._messages[thread_id].append(message)
        self._threads[thread_id] = thread.model_copy(update={"updated_at": now})
        return message

    async def list_messages(
        self, thread_id: uuid.UUID, ctx: RequestContext, *, limit: int | None = None
    ) -> list[Message]:
        self._owned(thread_id, ctx)
        messages = list(self._messages[thread_id])
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages


class InMemoryChunkStore:
    """In-memory implementation of ChunkStore."""

    def __init__(self) -> None:
        self._documents: dict[uuid.UUID, UserDocument] = {}
        # Chunks in upload order
        self._chunks: list[DocChunk] = []

    async def create_document(self, ctx: RequestContext, *, filename: str) -> UserDocument:
        doc = UserDocument(
            doc_id=uuid.uuid4(),
            owner_id=ctx.owner_id,
            filename=filename,
            uploaded_at=_now(),
        )
        self._documents[doc.doc_id] = doc
        return doc

    async def insert_chunks(
        self, doc: UserDocument, chunks: list[tuple[int, str]], ctx: RequestContext
    ) -> list[DocChunk]:
        """Persist a document's chunks."""
        stored = self._documents.get(doc.doc_id)
        if stored is None or stored.owner_id != ctx.owner_id:
            raise AuthorizationFailure(f"Document {doc.doc_id} not found")

        total = len(chunks)
        new_chunks = [
            DocChunk(
                chunk_id=uuid.uuid4(),
                doc_id=doc.doc_id,
                owner_id=ctx.owner_id,
                sequence_index=sequence_index,
                text=text,
                metadata={"filename": doc.filename, "total_chunks": total},
            )
            for sequence_index, text in chunks
        ]
        self._chunks.extend(new_chunks)
        self._documents[doc.doc_id] = stored.model_copy(update={"chunk_count": total})
        return new_chunks

    async def list_documents(self, ctx: RequestContext) -> list[UserDocument]:
        docs = [d for d in self._documents.values() if d.owner_id == ctx.owner_id]
        docs.sort(key=lambda d: d.uploaded_at, reverse=True)
        return docs

    async def delete_document(self, doc_id: uuid.UUID, ctx: RequestContext) -> None:
        doc = self._documents.get(doc_id)
        if doc is None or doc.owner_id != ctx.owner_id:
            raise AuthorizationFailure(f"Document {doc_id} not found")
        del self._documents[doc_id]
        self._chunks = [c for c in self._chunks if c.doc_id != doc_id]

    async def search_chunks(
        self, query: str, top_k: int, ctx: RequestContext
    ) -> list[RetrievalResult]:
        if top_k <= 0:
            return []
        owned = [c for c in self._chunks if c.owner_id == ctx.owner_id]
        ranking = rank_chunks(owned, query, top_k)
        if ranking.strategy == "substring":
            metrics.inc_retrieval_fallback("substring")
        return ranking.results


class InMemorySettingsStore:
    """In-memory implementation of SettingsStore."""

    def __init__(self) -> None:
        self._settings: dict[uuid.UUID, UserSettings] = {}

    async def get_settings(self, ctx: RequestContext) -> UserSettings:
        return self._settings.get(ctx.owner_id) or UserSettings(owner_id=ctx.owner_id)

    async def save_settings(self, settings: UserSettings, ctx: RequestContext) -> UserSettings:
        stored = settings.model_copy(update={"owner_id": ctx.owner_id})
        self._settings[ctx.owner_id] = stored
        return stored
