"""Chat endpoint - POST /chat streams the assistant's answer as SSE."""

import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from backend.ragchat.api.auth import get_current_context
from backend.ragchat.api.deps import get_orchestrator, get_settings_store, get_thread_store
from backend.ragchat.config import get_settings
from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import SettingsStore, ThreadStore, default_title
from backend.ragchat.models.chat import Role, Thread
from backend.ragchat.models.events import ErrorEvent, to_sse
from backend.ragchat.orchestration.history import ConversationHistory
from backend.ragchat.orchestration.orchestrator import ChatOrchestrator
from backend.ragchat.orchestration.personas import resolve_persona

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    message: str = Field(..., min_length=1, description="User message")
    thread_id: uuid.UUID | None = Field(None, description="Thread to continue")
    tenant: str | None = Field(None, description="Persona id, defaults to user settings")
    rag_enabled: bool | None = Field(None, description="Defaults to user settings")
    deep: bool = Field(False, description="Offer document search, allow longer answers")
    temperature: float | None = Field(None, ge=0, le=2)
    max_tokens: int | None = Field(None, ge=1, le=8000)


async def _resolve_thread(
    request: ChatRequest,
    tenant: str,
    ctx: RequestContext,
    thread_store: ThreadStore,
) -> Thread:
    """Requested thread, else the active one, else a new one."""
    if request.thread_id is not None:
        thread = await thread_store.get_thread(request.thread_id, ctx)
        if thread is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Thread not found",
            )
        if not thread.is_active:
            thread = await thread_store.set_active_thread(thread.thread_id, ctx)
        return thread

    thread = await thread_store.get_active_thread(ctx)
    if thread is not None:
        return thread

    return await thread_store.create_thread(
        ctx, title=default_title(request.message), tenant=tenant
    )


@router.post("", response_model=None)
async def chat(
    request: ChatRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    thread_store: Annotated[ThreadStore, Depends(get_thread_store)],
    settings_store: Annotated[SettingsStore, Depends(get_settings_store)],
    orchestrator: Annotated[ChatOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse | JSONResponse:
    """Send a message and stream the answer.

    The user message is persisted before the completion starts. If every
    completion backend fails before anything was streamed, the response is a
    500 with the error code instead of an event stream.

    Args:
        request: Chat request
        ctx: Request context (owner)
        thread_store: Thread store
        settings_store: User settings store
        orchestrator: Completion orchestrator

    Returns:
        SSE stream of chat events, or a JSON error
    """
    settings = get_settings()
    user_settings = await settings_store.get_settings(ctx)

    tenant = request.tenant or user_settings.default_tenant
    rag_enabled = user_settings.enable_rag if request.rag_enabled is None else request.rag_enabled
    persona = resolve_persona(tenant, user_settings.system_prompt)

    thread = await _resolve_thread(request, tenant, ctx, thread_store)

    recent = await thread_store.list_messages(
        thread.thread_id, ctx, limit=settings.history_max_entries
    )
    history = ConversationHistory.from_messages(recent, max_entries=settings.history_max_entries)

    await thread_store.append_message(
        thread.thread_id, ctx, role=Role.user, content=request.message
    )

    events = orchestrator.orchestrate(
        thread.thread_id,
        history,
        request.message,
        rag_enabled,
        owner_id=ctx.owner_id,
        persona=persona,
        deep=request.deep,
        temperature=request.temperature,
        max_tokens=request.max_tokens or user_settings.max_tokens,
    )

    # Peek so that total failure can still be reported with a status code
    first = await anext(events)
    if isinstance(first, ErrorEvent):
        await events.aclose()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": first.code, "detail": first.message},
        )

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE frames."""
        try:
            yield to_sse(first)
            async for event in events:
                yield to_sse(event)
        finally:
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
            "X-Thread-Id": str(thread.thread_id),
            "X-RAG-Enabled": "true" if rag_enabled else "false",
        },
    )
