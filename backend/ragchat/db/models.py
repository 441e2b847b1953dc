"""SQLAlchemy ORM models for threads, messages, documents and settings."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ThreadRow(Base):
    """Thread table - one conversation owned by one user."""

    __tablename__ = "thread"
    __table_args__ = (
        Index("idx_thread_owner_updated", "owner_id", "updated_at"),
        # At most one active thread per owner
        Index(
            "uq_thread_owner_active",
            "owner_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    thread_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    tenant: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    messages: Mapped[list["MessageRow"]] = relationship(
        "MessageRow",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MessageRow(Base):
    """Message table - append-only chat history."""

    __tablename__ = "message"
    __table_args__ = (Index("idx_message_thread_created", "thread_id", "created_at"),)

    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("thread.thread_id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    citations: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    thread: Mapped["ThreadRow"] = relationship("ThreadRow", back_populates="messages")


class DocumentRow(Base):
    """Document table - user-uploaded text documents."""

    __tablename__ = "document"
    __table_args__ = (Index("idx_document_owner", "owner_id", "uploaded_at"),)

    doc_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    chunks: Mapped[list["DocumentChunkRow"]] = relationship(
        "DocumentChunkRow",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DocumentChunkRow(Base):
    """Document chunk table - ordered text segments of a document."""

    __tablename__ = "document_chunk"
    __table_args__ = (
        Index("idx_chunk_owner", "owner_id"),
        Index("idx_chunk_doc_seq", "doc_id", "sequence_index", unique=True),
    )

    chunk_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    doc_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("document.doc_id", ondelete="CASCADE"), nullable=False
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    # Relationships
    document: Mapped["DocumentRow"] = relationship("DocumentRow", back_populates="chunks")


class UserSettingsRow(Base):
    """User settings table - one row per owner."""

    __tablename__ = "user_settings"

    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    enable_rag: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_tenant: Mapped[str] = mapped_column(Text, default="amanda", nullable=False)
    max_tokens: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
