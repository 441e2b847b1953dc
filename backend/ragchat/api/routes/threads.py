"""Thread endpoints - list, create, inspect, rename/activate, delete."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from backend.ragchat.api.auth import get_current_context
from backend.ragchat.api.deps import get_thread_store
from backend.ragchat.config import get_settings
from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import ThreadStore
from backend.ragchat.models.chat import Message, Thread
from backend.ragchat.models.sections import MessageSection
from backend.ragchat.rendering.sections import flag_sections, reduce_sections

router = APIRouter(prefix="/threads", tags=["threads"])

DEFAULT_THREAD_TITLE = "New Chat"


class CreateThreadRequest(BaseModel):
    """Request body for POST /threads."""

    title: str = Field(DEFAULT_THREAD_TITLE, min_length=1, max_length=200)
    tenant: str | None = Field(None, description="Persona id, defaults to the configured tenant")


class UpdateThreadRequest(BaseModel):
    """Request body for PATCH /threads/{thread_id}."""

    title: str | None = Field(None, min_length=1, max_length=200)
    is_active: bool | None = Field(None, description="Only true is accepted")


class ThreadDetailResponse(BaseModel):
    """Response for GET /threads/{thread_id}."""

    thread: Thread
    messages: list[Message]


async def _get_owned(thread_id: uuid.UUID, ctx: RequestContext, store: ThreadStore) -> Thread:
    thread = await store.get_thread(thread_id, ctx)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return thread


@router.get("", response_model=list[Thread])
async def list_threads(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> list[Thread]:
    """List the caller's threads, most recently updated first."""
    return await store.list_threads(ctx)


@router.post("", response_model=Thread, status_code=status.HTTP_201_CREATED)
async def create_thread(
    request: CreateThreadRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> Thread:
    """Create a thread. It becomes the caller's active thread."""
    tenant = request.tenant or get_settings().default_tenant
    return await store.create_thread(ctx, title=request.title, tenant=tenant)


@router.get("/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(
    thread_id: uuid.UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> ThreadDetailResponse:
    """Get a thread with its full message history."""
    thread = await _get_owned(thread_id, ctx, store)
    messages = await store.list_messages(thread_id, ctx)
    return ThreadDetailResponse(thread=thread, messages=messages)


@router.patch("/{thread_id}", response_model=Thread)
async def update_thread(
    thread_id: uuid.UUID,
    request: UpdateThreadRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> Thread:
    """Rename a thread and/or make it the active one.

    Deactivating directly is not supported; activate another thread instead.
    """
    if request.is_active is False:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Threads are deactivated by activating another thread",
        )

    thread = await _get_owned(thread_id, ctx, store)

    if request.title is not None:
        thread = await store.update_thread_title(thread_id, request.title, ctx)
    if request.is_active:
        thread = await store.set_active_thread(thread_id, ctx)

    return thread


@router.delete("/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_thread(
    thread_id: uuid.UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> Response:
    """Delete a thread and all of its messages."""
    await store.delete_thread(thread_id, ctx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{thread_id}/sections", response_model=list[MessageSection])
async def get_thread_sections(
    thread_id: uuid.UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ThreadStore, Depends(get_thread_store)],
) -> list[MessageSection]:
    """Thread history grouped into renderable sections."""
    await _get_owned(thread_id, ctx, store)
    messages = await store.list_messages(thread_id, ctx)
    return reduce_sections(flag_sections(messages))
