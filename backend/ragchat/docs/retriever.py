"""Document retriever - rank an owner's chunks against a query."""

import logging
import math
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from backend.ragchat.db.context import RequestContext
from backend.ragchat.errors import (
    PersistenceFailure,
    TransportUnavailable,
    UpstreamRejected,
    UpstreamTimeout,
)
from backend.ragchat.models.docs import DocChunk, RetrievalResult
from backend.ragchat.utils.metrics import metrics

if TYPE_CHECKING:
    from backend.ragchat.adapters.retrieval_service import RetrievalServiceClient
    from backend.ragchat.db.repositories import ChunkStore

logger = logging.getLogger(__name__)

FallbackPolicy = Literal["unconditional", "disabled"]

# Current fallback behaviour: substring matches are returned whenever the
# lexical pass finds nothing, regardless of how weak they are.
fallback_policy: FallbackPolicy = "unconditional"

SUBSTRING_SCORE = 1.0

_TOKEN = re.compile(r"\w+")

STOP_WORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because
    been before being below between both but by can did do does doing down
    during each few for from further had has have having he her here hers
    herself him himself his how i if in into is it its itself just me more
    most my myself no nor not now of off on once only or other our ours
    ourselves out over own same she should so some such than that the their
    theirs them themselves then there these they this those through to too
    under until up very was we were what when where which while who whom why
    will with you your yours yourself yourselves
    """.split()
)


@dataclass(frozen=True)
class Ranking:
    """Ranked results plus the pass that produced them."""

    results: list[RetrievalResult]
    strategy: Literal["lexical", "substring", "none"]


def query_terms(query: str) -> list[str]:
    """Lower-cased query tokens with English stop words removed, deduplicated."""
    terms: list[str] = []
    for token in _TOKEN.findall(query.lower()):
        if token not in STOP_WORDS and token not in terms:
            terms.append(token)
    return terms


def stem(token: str) -> str:
    """Reduce a lower-cased token to a crude stem.

    Folds plurals, -ing and -ed forms and a final "e", so "dosages" and
    "dosage" or "exercising" and "exercise" share a stem. Short tokens and
    tokens with digits are left alone.
    """
    if len(token) <= 3 or not token.isalpha():
        return token

    if token.endswith("ies"):
        token = token[:-3] + "y"
    elif token.endswith("sses"):
        token = token[:-2]
    elif token.endswith("s") and not token.endswith(("ss", "us", "is")):
        token = token[:-1]

    for suffix in ("ing", "ed"):
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            token = token[: -len(suffix)]
            break

    if token.endswith("e") and len(token) > 3:
        token = token[:-1]
    return token


def _to_result(chunk: DocChunk, score: float) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=chunk.chunk_id,
        text=chunk.text,
        score=score,
        document_id=chunk.doc_id,
        metadata=dict(chunk.metadata),
    )


def lexical_matches(chunks: list[DocChunk], query: str, top_k: int) -> list[RetrievalResult]:
    """Chunks containing every query term, scored by length-normalized term frequency.

    Scoring strategy:
    - Tokenize chunk text with the same rules as the query, then stem both
    - A chunk matches only if every query term occurs in it
    - Score = total occurrences of query terms / log2(chunk token count + 1)
    - Sort by score descending, then by sequence_index, then upload order
    """
    terms = list(dict.fromkeys(stem(term) for term in query_terms(query)))
    if not terms:
        return []

    scored: list[tuple[float, int, int, DocChunk]] = []
    for position, chunk in enumerate(chunks):
        tokens = [stem(token) for token in _TOKEN.findall(chunk.text.lower())]
        counts = Counter(tokens)
        if any(counts[term] == 0 for term in terms):
            continue

        hits = sum(counts[term] for term in terms)
        score = round(hits / math.log2(len(tokens) + 1), 6)
        scored.append((score, chunk.sequence_index, position, chunk))

    scored.sort(key=lambda item: (-item[0], item[1], item[2]))

    return [_to_result(chunk, score) for score, _, _, chunk in scored[:top_k]]


def substring_matches(chunks: list[DocChunk], query: str, top_k: int) -> list[RetrievalResult]:
    """Chunks containing the whole trimmed query, case-insensitively.

    Results keep sequence_index order (then upload order) with a uniform score.
    """
    needle = query.strip().lower()
    if not needle:
        return []

    ordered = sorted(
        ((chunk.sequence_index, position, chunk) for position, chunk in enumerate(chunks)),
        key=lambda item: (item[0], item[1]),
    )
    matches = [chunk for _, _, chunk in ordered if needle in chunk.text.lower()]

    return [_to_result(chunk, SUBSTRING_SCORE) for chunk in matches[:top_k]]


def rank_chunks(
    chunks: Iterable[DocChunk],
    query: str,
    top_k: int,
    *,
    policy: FallbackPolicy | None = None,
) -> Ranking:
    """Rank chunks with the lexical pass, falling back to substring search.

    Pure function: callers are responsible for passing only the owner's
    chunks, in upload order.

    Args:
        chunks: Candidate chunks
        query: Free-text query
        top_k: Maximum number of results; values <= 0 yield nothing
        policy: Substring fallback policy (defaults to ``fallback_policy``)

    Returns:
        Ranking with at most top_k results
    """
    if top_k <= 0:
        return Ranking(results=[], strategy="none")

    candidates = list(chunks)

    results = lexical_matches(candidates, query, top_k)
    if results:
        return Ranking(results=results, strategy="lexical")

    if (policy or fallback_policy) == "disabled":
        return Ranking(results=[], strategy="none")

    results = substring_matches(candidates, query, top_k)
    if results:
        return Ranking(results=results, strategy="substring")

    return Ranking(results=[], strategy="none")


async def retrieve_context(
    query: str,
    top_k: int,
    ctx: RequestContext,
    *,
    chunk_store: "ChunkStore",
    remote: "RetrievalServiceClient | None" = None,
    document_types: Sequence[str] = (),
) -> list[RetrievalResult]:
    """Retrieve chunks for a chat turn.

    The retrieval service is tried first when configured. If it cannot be
    reached or rejects the request, the in-process index answers instead. A
    timeout yields no context at all.

    Args:
        query: User query
        top_k: Maximum number of results
        ctx: Request context (owner isolation)
        chunk_store: In-process index
        remote: Optional retrieval service client
        document_types: Document type filter for the retrieval service; the
            in-process index stores no types and ignores it

    Returns:
        Retrieval results, possibly empty
    """
    if top_k <= 0:
        return []

    if remote is not None:
        try:
            return await remote.search(query, top_k, ctx, document_types=document_types)
        except UpstreamTimeout as e:
            logger.warning(f"Retrieval service timed out, continuing without context: {e}")
            metrics.inc_retrieval_fallback("timeout")
            return []
        except (TransportUnavailable, UpstreamRejected) as e:
            logger.warning(f"Retrieval service unavailable, using local index: {e}")
            metrics.inc_retrieval_fallback("remote_unavailable")

    try:
        return await chunk_store.search_chunks(query, top_k, ctx)
    except PersistenceFailure as e:
        logger.error(f"Local retrieval failed, continuing without context: {e}")
        metrics.inc_retrieval_fallback("store_error")
        return []
