"""Document ingestion - chunk text and persist document plus chunks."""

import logging

from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import ChunkStore
from backend.ragchat.docs.chunker import DEFAULT_MAX_CHARS, chunk_document
from backend.ragchat.models.docs import UserDocument

logger = logging.getLogger(__name__)


class EmptyDocumentError(ValueError):
    """Document has no text left after sanitization."""


async def ingest_document(
    *,
    ctx: RequestContext,
    filename: str,
    text: str,
    store: ChunkStore,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> UserDocument:
    """Ingest a document: chunk it and persist it with its chunks.

    Chunking happens before anything is written, so an empty document leaves
    no trace in the store.

    Args:
        ctx: Request context for ownership
        filename: Original filename, used as the citation source
        text: Raw document text
        store: Chunk store
        max_chars: Maximum characters per chunk

    Returns:
        UserDocument with its chunk count

    Raises:
        EmptyDocumentError: If the text has no content
        PersistenceFailure: If the store write fails
    """
    chunks = chunk_document(text, max_chars=max_chars)
    if not chunks:
        raise EmptyDocumentError(f"Document {filename!r} contains no text")

    doc = await store.create_document(ctx, filename=filename)
    await store.insert_chunks(doc, chunks, ctx)

    logger.info(f"Ingested {filename!r} as {len(chunks)} chunks")
    return doc.model_copy(update={"chunk_count": len(chunks)})
