"""Context assembler - fold retrieved chunks into the system prompt."""

from dataclasses import dataclass, field

from backend.ragchat.models.docs import RetrievalResult

CONTEXT_HEADER = "RELEVANT DOCUMENTS FROM YOUR KNOWLEDGE BASE:"


@dataclass(frozen=True)
class AssembledContext:
    """Augmented system prompt and the sources it cites."""

    augmented_system_prompt: str
    citations: list[str] = field(default_factory=list)


def collect_citations(results: list[RetrievalResult], seen: list[str] | None = None) -> list[str]:
    """Distinct source identifiers in first-seen order.

    Args:
        results: Retrieval results in rank order
        seen: Citations already collected, kept at the front

    Returns:
        New list; duplicates of ``seen`` are not repeated
    """
    citations = list(seen or [])
    for result in results:
        if result.source not in citations:
            citations.append(result.source)
    return citations


def format_documents(results: list[RetrievalResult]) -> str:
    """Numbered ``[i] text`` entries separated by blank lines."""
    return "\n\n".join(f"[{i}] {result.text}" for i, result in enumerate(results, start=1))


def assemble_context(
    base_prompt: str, results: list[RetrievalResult], user_query: str
) -> AssembledContext:
    """Append retrieved chunks to the base prompt.

    Results are used in the order given; the assembler never re-ranks. With no
    results the prompt is returned unchanged and nothing is cited.

    Args:
        base_prompt: Persona or custom system prompt
        results: Retrieval results in rank order
        user_query: Query the results were retrieved for

    Returns:
        AssembledContext with the augmented prompt and citations
    """
    if not results:
        return AssembledContext(augmented_system_prompt=base_prompt)

    block = f"\n\n{CONTEXT_HEADER}\n{format_documents(results)}"

    return AssembledContext(
        augmented_system_prompt=base_prompt + block,
        citations=collect_citations(results),
    )
