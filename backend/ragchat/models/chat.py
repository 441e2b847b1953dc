"""Thread and message domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Message author role."""

    user = "user"
    assistant = "assistant"
    system = "system"


class Thread(BaseModel):
    """Conversation thread owned by a single user."""

    thread_id: UUID
    owner_id: UUID
    title: str
    tenant: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    """Persisted chat message. Append-only."""

    message_id: UUID
    thread_id: UUID
    role: Role
    content: str
    created_at: datetime
    citations: list[str] | None = None


class ChatTurn(BaseModel):
    """Role/content pair as sent to a completion backend."""

    role: Role
    content: str

    def as_payload(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class UserSettings(BaseModel):
    """Per-user chat preferences."""

    owner_id: UUID
    system_prompt: str | None = None
    enable_rag: bool = False
    default_tenant: str = "amanda"
    max_tokens: int = Field(1000, ge=1, le=8000)
