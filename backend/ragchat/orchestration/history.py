"""Bounded buffer of recent conversation turns."""

from collections import deque
from collections.abc import Iterable

from backend.ragchat.models.chat import ChatTurn, Message, Role

DEFAULT_MAX_ENTRIES = 20


class ConversationHistory:
    """Most recent user/assistant turns sent with every completion request.

    Appending past ``max_entries`` drops the oldest turns.
    """

    def __init__(self, turns: Iterable[ChatTurn] = (), *, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._turns: deque[ChatTurn] = deque(turns, maxlen=max_entries)

    @classmethod
    def from_messages(
        cls, messages: Iterable[Message], *, max_entries: int = DEFAULT_MAX_ENTRIES
    ) -> "ConversationHistory":
        """Seed from persisted messages, skipping system messages."""
        turns = (
            ChatTurn(role=m.role, content=m.content)
            for m in messages
            if m.role in (Role.user, Role.assistant)
        )
        return cls(turns, max_entries=max_entries)

    def append(self, turn: ChatTurn) -> None:
        self._turns.append(turn)

    def append_exchange(self, user_content: str, assistant_content: str) -> None:
        self._turns.append(ChatTurn(role=Role.user, content=user_content))
        self._turns.append(ChatTurn(role=Role.assistant, content=assistant_content))

    def turns(self) -> list[ChatTurn]:
        return list(self._turns)

    def as_payload(self) -> list[dict[str, str]]:
        return [turn.as_payload() for turn in self._turns]

    def __len__(self) -> int:
        return len(self._turns)
