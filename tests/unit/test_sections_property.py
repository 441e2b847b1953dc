"""Property-based tests for the section reducer."""

import random

from backend.ragchat.models.sections import MessageSection, SectionMessage
from backend.ragchat.rendering.sections import reduce_sections


def generate_messages(n: int, seed: int = 42) -> list[SectionMessage]:
    """Generate n messages with random roles and section flags."""
    rng = random.Random(seed)

    return [
        SectionMessage(
            id=str(i),
            role=rng.choice(["user", "assistant"]),
            content=f"message {i}",
            new_section=rng.random() < 0.4,
        )
        for i in range(n)
    ]


def flatten(sections: list[MessageSection]) -> list[SectionMessage]:
    return [message for section in sections for message in section.messages]


def test_reduce_is_idempotent() -> None:
    """Test that re-reducing the flattened sections gives the same sections."""
    messages = generate_messages(7, seed=42)

    sections = reduce_sections(messages)

    assert reduce_sections(flatten(sections)) == sections


def test_property_various_seeds() -> None:
    """Test reducer invariants over random flag patterns."""
    for seed in [1, 10, 100, 999, 12345]:
        for n in [1, 2, 5, 20]:
            messages = generate_messages(n, seed=seed)

            sections = reduce_sections(messages)

            # Idempotent and lossless
            assert reduce_sections(flatten(sections)) == sections, f"Seed {seed}, n={n}"
            assert flatten(sections) == messages, f"Seed {seed}, n={n}"

            # Indexed from 0 in display order
            assert [s.section_index for s in sections] == list(range(len(sections)))

            # Only the last section may be active
            assert not any(s.is_active for s in sections[:-1]), f"Seed {seed}, n={n}"
            assert sections[-1].is_active == sections[-1].messages[0].new_section

            # Every section after the first opens on a flagged message
            for section in sections[1:]:
                assert section.messages[0].new_section
                assert all(not m.new_section for m in section.messages[1:])


def test_all_flagged_messages_open_one_section_each() -> None:
    """Test the extreme where every message is flagged."""
    messages = [
        SectionMessage(id=str(i), role="user", content="q", new_section=True) for i in range(6)
    ]

    sections = reduce_sections(messages)

    assert [len(s.messages) for s in sections] == [1] * 6
    assert reduce_sections(flatten(sections)) == sections
