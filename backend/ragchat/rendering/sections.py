"""Section reducer - group a message list into renderable sections.

A section is the unit the chat view scrolls to: every user turn after the
first opens a new one, and only the newest section is active.
"""

from collections.abc import Iterable, Sequence

from backend.ragchat.models.chat import Message, Role
from backend.ragchat.models.sections import MessageSection, SectionMessage


def section_id(first_message_id: str) -> str:
    return f"section-{first_message_id}"


def reduce_sections(messages: Iterable[SectionMessage]) -> list[MessageSection]:
    """Group messages into sections.

    Pure and deterministic: the same input always yields equal output. A
    message flagged ``new_section`` closes the current section (which
    becomes inactive) and opens a new active one. Other messages join the
    current section.

    Args:
        messages: Messages in display order

    Returns:
        Sections in display order, indexed from 0
    """
    sections: list[MessageSection] = []
    current: MessageSection | None = None

    for message in messages:
        if message.new_section or current is None:
            if current is not None and current.messages:
                current.is_active = False
                sections.append(current)
            current = MessageSection(
                id=section_id(message.id),
                messages=[message],
                is_new_section=message.new_section,
                is_active=message.new_section,
                section_index=len(sections),
            )
        else:
            current.messages.append(message)

    if current is not None and current.messages:
        sections.append(current)

    return sections


def flag_sections(messages: Sequence[Message]) -> list[SectionMessage]:
    """Convert persisted messages, flagging user turns that open a section.

    A user message starts a new section unless it is the first message of
    the thread. System messages are not rendered.
    """
    flagged: list[SectionMessage] = []
    for position, message in enumerate(messages):
        if message.role == Role.system:
            continue
        flagged.append(
            SectionMessage(
                id=str(message.message_id),
                role=message.role.value,
                content=message.content,
                new_section=message.role == Role.user and position > 0,
                citations=tuple(message.citations or ()),
            )
        )
    return flagged
