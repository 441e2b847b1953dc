"""Section models for incremental rendering of a conversation."""

from pydantic import BaseModel, ConfigDict, Field


class SectionMessage(BaseModel):
    """Message as seen by the rendering layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: str
    content: str
    new_section: bool = False
    citations: tuple[str, ...] = ()


class MessageSection(BaseModel):
    """Consecutive messages sharing one visual/scroll anchor."""

    id: str
    messages: list[SectionMessage] = Field(default_factory=list)
    is_new_section: bool = False
    is_active: bool = False
    section_index: int = 0
