"""Models package - re-exports for convenience."""

from backend.ragchat.models.chat import ChatTurn, Message, Role, Thread, UserSettings
from backend.ragchat.models.docs import DocChunk, RetrievalResult, UserDocument
from backend.ragchat.models.events import (
    ChatEvent,
    ContentDelta,
    Done,
    ErrorEvent,
    StreamEvent,
    StreamReset,
)
from backend.ragchat.models.sections import MessageSection, SectionMessage

__all__ = [
    # Chat
    "ChatTurn",
    "Message",
    "Role",
    "Thread",
    "UserSettings",
    # Docs
    "DocChunk",
    "RetrievalResult",
    "UserDocument",
    # Events
    "ChatEvent",
    "ContentDelta",
    "Done",
    "ErrorEvent",
    "StreamEvent",
    "StreamReset",
    # Sections
    "MessageSection",
    "SectionMessage",
]
