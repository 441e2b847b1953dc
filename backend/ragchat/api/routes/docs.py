"""Document endpoints - POST /docs, GET /docs, GET /docs/search, DELETE /docs/{id}."""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from backend.ragchat.api.auth import get_current_context
from backend.ragchat.api.deps import get_chunk_store
from backend.ragchat.config import get_settings
from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import ChunkStore
from backend.ragchat.docs.ingest import EmptyDocumentError, ingest_document
from backend.ragchat.models.docs import RetrievalResult, UserDocument

router = APIRouter(prefix="/docs", tags=["docs"])


class CreateDocRequest(BaseModel):
    """Request body for POST /docs."""

    filename: str = Field(..., min_length=1, max_length=255, description="Original filename")
    text: str = Field(..., min_length=1, description="Raw document text")


class CreateDocResponse(BaseModel):
    """Response for POST /docs."""

    doc_id: str
    filename: str
    chunk_count: int
    uploaded_at: datetime


class DocListResponse(BaseModel):
    """Response for GET /docs."""

    docs: list[UserDocument]


class DocSearchResponse(BaseModel):
    """Response for GET /docs/search."""

    results: list[RetrievalResult]
    query: str


@router.post("", response_model=CreateDocResponse, status_code=status.HTTP_201_CREATED)
async def create_doc(
    request: CreateDocRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
) -> CreateDocResponse:
    """Create a new document with automatic chunking.

    Args:
        request: Document creation request
        ctx: Request context (owner)
        store: Chunk store

    Returns:
        Created document metadata
    """
    try:
        doc = await ingest_document(
            ctx=ctx,
            filename=request.filename,
            text=request.text,
            store=store,
            max_chars=get_settings().chunk_max_chars,
        )
    except EmptyDocumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return CreateDocResponse(
        doc_id=str(doc.doc_id),
        filename=doc.filename,
        chunk_count=doc.chunk_count,
        uploaded_at=doc.uploaded_at,
    )


@router.get("", response_model=DocListResponse)
async def list_docs(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
) -> DocListResponse:
    """List the caller's documents, newest first."""
    return DocListResponse(docs=await store.list_documents(ctx))


@router.get("/search", response_model=DocSearchResponse)
async def search_docs_endpoint(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
    query: Annotated[str, Query(min_length=1, max_length=500)],
    limit: Annotated[int, Query(ge=1, le=20)] = 4,
) -> DocSearchResponse:
    """Search the caller's document chunks.

    Args:
        ctx: Request context (owner)
        store: Chunk store
        query: Search query string
        limit: Maximum number of results (default 4, max 20)

    Returns:
        Ranked chunks with scores
    """
    results = await store.search_chunks(query, limit, ctx)
    return DocSearchResponse(results=results, query=query)


@router.delete("/{doc_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_doc(
    doc_id: uuid.UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
) -> Response:
    """Delete a document and all of its chunks."""
    await store.delete_document(doc_id, ctx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
