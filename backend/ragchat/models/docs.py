"""Document domain models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class UserDocument(BaseModel):
    """Uploaded document metadata."""

    doc_id: UUID
    owner_id: UUID
    filename: str
    uploaded_at: datetime
    chunk_count: int = 0


class DocChunk(BaseModel):
    """Document chunk with text content."""

    chunk_id: UUID
    doc_id: UUID
    owner_id: UUID
    sequence_index: int  # 0-based, contiguous per document
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievalResult(BaseModel):
    """Chunk selected for a query, with its relevance score."""

    chunk_id: UUID | str
    text: str
    score: float = Field(..., ge=0)
    document_id: UUID | str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def source(self) -> str:
        """Citation identifier: originating filename, else the document id."""
        filename = self.metadata.get("filename")
        if filename:
            return str(filename)
        return str(self.document_id)
