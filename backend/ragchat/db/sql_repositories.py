"""SQL implementations of repository interfaces."""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.models import (
    DocumentChunkRow,
    DocumentRow,
    MessageRow,
    ThreadRow,
    UserSettingsRow,
)
from backend.ragchat.docs.retriever import rank_chunks
from backend.ragchat.errors import AuthorizationFailure, PersistenceFailure
from backend.ragchat.models.chat import Message, Role, Thread, UserSettings
from backend.ragchat.models.docs import DocChunk, RetrievalResult, UserDocument
from backend.ragchat.utils.metrics import metrics

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_thread(row: ThreadRow) -> Thread:
    return Thread(
        thread_id=row.thread_id,
        owner_id=row.owner_id,
        title=row.title,
        tenant=row.tenant,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        message_id=row.message_id,
        thread_id=row.thread_id,
        role=Role(row.role),
        content=row.content,
        created_at=row.created_at,
        citations=row.citations,
    )


class SqlThreadStore:
    """SQL implementation of ThreadStore."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _owned_row(self, thread_id: uuid.UUID, ctx: RequestContext) -> ThreadRow:
        result = await self._session.execute(
            select(ThreadRow).where(
                ThreadRow.thread_id == thread_id,
                ThreadRow.owner_id == ctx.owner_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise AuthorizationFailure(f"Thread {thread_id} not found")
        return row

    async def _deactivate_all(self, ctx: RequestContext) -> None:
        await self._session.execute(
            update(ThreadRow)
            .where(ThreadRow.owner_id == ctx.owner_id, ThreadRow.is_active.is_(True))
            .values(is_active=False)
        )

    async def create_thread(self, ctx: RequestContext, *, title: str, tenant: str) -> Thread:
        """Create a thread and make it the owner's only active thread.

        A concurrent activation by the same owner can violate the partial
        unique index; the whole sequence is then retried once.
        """
        for attempt in range(2):
            now = _now()
            row = ThreadRow(
                thread_id=uuid.uuid4(),
                owner_id=ctx.owner_id,
                title=title,
                tenant=tenant,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            thread = _to_thread(row)
            try:
                await self._deactivate_all(ctx)
                self._session.add(row)
                await self._session.commit()
                return thread
            except IntegrityError as e:
                await self._session.rollback()
                if attempt == 1:
                    raise PersistenceFailure(f"Could not create thread: {e}") from e
                logger.warning("Concurrent thread activation detected, retrying create")
            except SQLAlchemyError as e:
                await self._session.rollback()
                raise PersistenceFailure(f"Could not create thread: {e}") from e

        raise PersistenceFailure("Could not create thread")

    async def get_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> Thread | None:
        result = await self._session.execute(
            select(ThreadRow).where(
                ThreadRow.thread_id == thread_id,
                ThreadRow.owner_id == ctx.owner_id,
            )
        )
        row = result.scalar_one_or_none()
        return _to_thread(row) if row else None

    async def get_active_thread(self, ctx: RequestContext) -> Thread | None:
        result = await self._session.execute(
            select(ThreadRow).where(
                ThreadRow.owner_id == ctx.owner_id,
                ThreadRow.is_active.is_(True),
            )
        )
        row = result.scalars().first()
        return _to_thread(row) if row else None

    async def set_active_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> Thread:
        """Deactivate all of the owner's threads, then activate one, in one transaction."""
        row = await self._owned_row(thread_id, ctx)

        for attempt in range(2):
            try:
                await self._deactivate_all(ctx)
                await self._session.execute(
                    update(ThreadRow)
                    .where(
                        ThreadRow.thread_id == thread_id,
                        ThreadRow.owner_id == ctx.owner_id,
                    )
                    .values(is_active=True, updated_at=_now())
                )
                await self._session.commit()
                break
            except IntegrityError as e:
                await self._session.rollback()
                if attempt == 1:
                    raise PersistenceFailure(f"Could not activate thread: {e}") from e
                logger.warning("Concurrent thread activation detected, retrying")
            except SQLAlchemyError as e:
                await self._session.rollback()
                raise PersistenceFailure(f"Could not activate thread: {e}") from e

        await self._session.refresh(row)
        return _to_thread(row)

    async def list_threads(self, ctx: RequestContext) -> list[Thread]:
        result = await self._session.execute(
            select(ThreadRow)
            .where(ThreadRow.owner_id == ctx.owner_id)
            .order_by(ThreadRow.updated_at.desc(), ThreadRow.created_at.desc())
        )
        return [_to_thread(row) for row in result.scalars().all()]

    async def update_thread_title(
        self, thread_id: uuid.UUID, title: str, ctx: RequestContext
    ) -> Thread:
        row = await self._owned_row(thread_id, ctx)
        row.title = title
        row.updated_at = _now()
        thread = _to_thread(row)
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not rename thread: {e}") from e
        return thread

    async def delete_thread(self, thread_id: uuid.UUID, ctx: RequestContext) -> None:
        """Delete a thread and its messages after checking ownership."""
        await self._owned_row(thread_id, ctx)
        try:
            await self._session.execute(delete(MessageRow).where(MessageRow.thread_id == thread_id))
            await self._session.execute(
                delete(ThreadRow).where(
                    ThreadRow.thread_id == thread_id,
                    ThreadRow.owner_id == ctx.owner_id,
                )
            )
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not delete thread: {e}") from e

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
        """Append a message and bump the thread's updated_at.

        Timestamps are kept strictly increasing per thread so that ordering
        by created_at is the append order.
        """
        thread = await self._owned_row(thread_id, ctx)

        now = _now()
        last = _as_utc(thread.updated_at)
        if now <= last:
            now = last + timedelta(microseconds=1)

        row = MessageRow(
            message_id=message_id or uuid.uuid4(),
            thread_id=thread_id,
            role=role.value,
            content=content,
            citations=citations,
            created_at=now,
        )
        message = _to_message(row)
        try:
            self._session.add(row)
            thread.updated_at = now
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not append message: {e}") from e

        return message

    async def list_messages(
        self, thread_id: uuid.UUID, ctx: RequestContext, *, limit: int | None = None
    ) -> list[Message]:
        await self._owned_row(thread_id, ctx)

        if limit is not None and limit <= 0:
            return []

        stmt = select(MessageRow).where(MessageRow.thread_id == thread_id)
        if limit is None:
            result = await self._session.execute(stmt.order_by(MessageRow.created_at.asc()))
            return [_to_message(row) for row in result.scalars().all()]

        # Most recent N, returned oldest first
        result = await self._session.execute(
            stmt.order_by(MessageRow.created_at.desc()).limit(limit)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return [_to_message(row) for row in rows]


class SqlChunkStore:
    """SQL implementation of ChunkStore."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_document(self, ctx: RequestContext, *, filename: str) -> UserDocument:
        """Register a document. It is committed together with its chunks."""
        row = DocumentRow(
            doc_id=uuid.uuid4(),
            owner_id=ctx.owner_id,
            filename=filename,
            uploaded_at=_now(),
        )
        self._session.add(row)
        return UserDocument(
            doc_id=row.doc_id,
            owner_id=row.owner_id,
            filename=row.filename,
            uploaded_at=row.uploaded_at,
        )

    async def insert_chunks(
        self, doc: UserDocument, chunks: list[tuple[int, str]], ctx: RequestContext
    ) -> list[DocChunk]:
        """Persist a document's chunks in one transaction."""
        if doc.owner_id != ctx.owner_id:
            raise AuthorizationFailure(f"Document {doc.doc_id} not found")

        total = len(chunks)
        rows = [
            DocumentChunkRow(
                chunk_id=uuid.uuid4(),
                doc_id=doc.doc_id,
                owner_id=ctx.owner_id,
                sequence_index=sequence_index,
                text=text,
                metadata_={"filename": doc.filename, "total_chunks": total},
            )
            for sequence_index, text in chunks
        ]

        stored = [
            DocChunk(
                chunk_id=row.chunk_id,
                doc_id=row.doc_id,
                owner_id=row.owner_id,
                sequence_index=row.sequence_index,
                text=row.text,
                metadata=row.metadata_,
            )
            for row in rows
        ]

        try:
            self._session.add_all(rows)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not store chunks for {doc.filename}: {e}") from e

        return stored

    async def list_documents(self, ctx: RequestContext) -> list[UserDocument]:
        counts = (
            select(
                DocumentChunkRow.doc_id,
                func.count(DocumentChunkRow.chunk_id).label("chunk_count"),
            )
            .group_by(DocumentChunkRow.doc_id)
            .subquery()
        )
        result = await self._session.execute(
            select(DocumentRow, counts.c.chunk_count)
            .outerjoin(counts, counts.c.doc_id == DocumentRow.doc_id)
            .where(DocumentRow.owner_id == ctx.owner_id)
            .order_by(DocumentRow.uploaded_at.desc())
        )
        return [
            UserDocument(
                doc_id=row.doc_id,
                owner_id=row.owner_id,
                filename=row.filename,
                uploaded_at=row.uploaded_at,
                chunk_count=chunk_count or 0,
            )
            for row, chunk_count in result.all()
        ]

    async def delete_document(self, doc_id: uuid.UUID, ctx: RequestContext) -> None:
        """Delete a document and its chunks as a unit."""
        result = await self._session.execute(
            select(DocumentRow.doc_id).where(
                DocumentRow.doc_id == doc_id,
                DocumentRow.owner_id == ctx.owner_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise AuthorizationFailure(f"Document {doc_id} not found")

        try:
            await self._session.execute(
                delete(DocumentChunkRow).where(DocumentChunkRow.doc_id == doc_id)
            )
            await self._session.execute(delete(DocumentRow).where(DocumentRow.doc_id == doc_id))
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not delete document: {e}") from e

    async def search_chunks(
        self, query: str, top_k: int, ctx: RequestContext
    ) -> list[RetrievalResult]:
        """Rank the owner's chunks. Only the owner's rows are ever loaded."""
        if top_k <= 0:
            return []

        try:
            result = await self._session.execute(
                select(DocumentChunkRow)
                .join(DocumentRow, DocumentRow.doc_id == DocumentChunkRow.doc_id)
                .where(
                    DocumentChunkRow.owner_id == ctx.owner_id,
                    DocumentRow.owner_id == ctx.owner_id,
                )
                .order_by(DocumentRow.uploaded_at.asc(), DocumentChunkRow.sequence_index.asc())
            )
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not load chunks: {e}") from e

        chunks = [
            DocChunk(
                chunk_id=row.chunk_id,
                doc_id=row.doc_id,
                owner_id=row.owner_id,
                sequence_index=row.sequence_index,
                text=row.text,
                metadata=row.metadata_ or {},
            )
            for row in result.scalars().all()
        ]

        ranking = rank_chunks(chunks, query, top_k)
        if ranking.strategy == "substring":
            metrics.inc_retrieval_fallback("substring")
        return ranking.results


class SqlSettingsStore:
    """SQL implementation of SettingsStore."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_settings(self, ctx: RequestContext) -> UserSettings:
        row = await self._session.get(UserSettingsRow, ctx.owner_id)
        if row is None:
            return UserSettings(owner_id=ctx.owner_id)
        return UserSettings(
            owner_id=row.owner_id,
            system_prompt=row.system_prompt,
            enable_rag=row.enable_rag,
            default_tenant=row.default_tenant,
            max_tokens=row.max_tokens,
        )

    async def save_settings(self, settings: UserSettings, ctx: RequestContext) -> UserSettings:
        row = await self._session.get(UserSettingsRow, ctx.owner_id)
        if row is None:
            row = UserSettingsRow(owner_id=ctx.owner_id)
            self._session.add(row)

        row.system_prompt = settings.system_prompt
        row.enable_rag = settings.enable_rag
        row.default_tenant = settings.default_tenant
        row.max_tokens = settings.max_tokens
        row.updated_at = _now()

        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise PersistenceFailure(f"Could not save settings: {e}") from e

        return settings.model_copy(update={"owner_id": ctx.owner_id})
