"""Store and orchestrator dependencies, overridable in tests."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.ragchat.adapters.retrieval_service import get_retrieval_service_client
from backend.ragchat.config import get_settings
from backend.ragchat.db.engine import get_session
from backend.ragchat.db.repositories import ChunkStore, SettingsStore, ThreadStore
from backend.ragchat.db.sql_repositories import SqlChunkStore, SqlSettingsStore, SqlThreadStore
from backend.ragchat.llm.client import get_completion_backends
from backend.ragchat.orchestration.orchestrator import ChatOrchestrator


async def get_thread_store(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ThreadStore:
    return SqlThreadStore(session)


async def get_chunk_store(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ChunkStore:
    return SqlChunkStore(session)


async def get_settings_store(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SettingsStore:
    return SqlSettingsStore(session)


async def get_orchestrator(
    thread_store: Annotated[ThreadStore, Depends(get_thread_store)],
    chunk_store: Annotated[ChunkStore, Depends(get_chunk_store)],
) -> ChatOrchestrator:
    """Build the orchestrator for one request from settings."""
    settings = get_settings()
    primary, secondary = get_completion_backends(settings)
    return ChatOrchestrator(
        thread_store=thread_store,
        chunk_store=chunk_store,
        primary=primary,
        secondary=secondary,
        retrieval_service=get_retrieval_service_client(
            settings.retrieval_service_url, settings.retrieval_timeout_sec
        ),
        settings=settings,
    )
