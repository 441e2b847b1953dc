"""Completion orchestrator - tiered failover around a streaming chat turn.

Tiers are tried in order. Within a tier, the streaming strategy runs first;
a failure that leaves the backend usable (interrupted stream, explicit
refusal of streaming) retries the same backend once without streaming. Any
other failure moves on to the next tier. Only when every tier is exhausted
does the caller see an error.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from backend.ragchat.adapters.retrieval_service import RetrievalServiceClient
from backend.ragchat.config import Settings, get_settings
from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import ChunkStore, ThreadStore
from backend.ragchat.docs.retriever import retrieve_context
from backend.ragchat.errors import (
    AuthorizationFailure,
    ChatServiceError,
    PersistenceFailure,
    StreamInterrupted,
    TransportUnavailable,
)
from backend.ragchat.llm.client import CompletionBackend
from backend.ragchat.llm.strategies import CompletionRequest, Tier, backend_tier
from backend.ragchat.models.chat import Role
from backend.ragchat.models.events import ContentDelta, Done, ErrorEvent, StreamReset
from backend.ragchat.orchestration.context import assemble_context, collect_citations
from backend.ragchat.orchestration.functions import (
    SEARCH_FUNCTION_NAME,
    PendingFunctionCall,
    format_practice_documents,
    parse_search_arguments,
    search_function_definition,
)
from backend.ragchat.orchestration.history import ConversationHistory
from backend.ragchat.orchestration.personas import Persona
from backend.ragchat.utils.logging import AttemptContext, StructuredCompletionLogger
from backend.ragchat.utils.metrics import metrics

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = (
    "The assistant service is currently unavailable. "
    "Please try again in a few moments."
)

ChatStreamEvent = ContentDelta | StreamReset | Done | ErrorEvent


@dataclass
class StreamSession:
    """State of one completion attempt. Discarded if the attempt fails."""

    message_id: UUID = field(default_factory=uuid4)
    accumulated_content: str = ""
    pending_function_call: PendingFunctionCall | None = None
    function_call_used: bool = False
    citations: list[str] = field(default_factory=list)
    terminal: bool = False


class ChatOrchestrator:
    """Runs one chat turn: retrieval, tiered completion, persistence."""

    def __init__(
        self,
        *,
        thread_store: ThreadStore,
        chunk_store: ChunkStore,
        primary: CompletionBackend,
        secondary: CompletionBackend | None = None,
        retrieval_service: RetrievalServiceClient | None = None,
        settings: Settings | None = None,
        attempt_logger: StructuredCompletionLogger | None = None,
    ) -> None:
        self.thread_store = thread_store
        self.chunk_store = chunk_store
        self.primary = primary
        self.secondary = secondary
        self.retrieval_service = retrieval_service
        self.settings = settings or get_settings()
        self.attempt_logger = attempt_logger or StructuredCompletionLogger()

    async def orchestrate(
        self,
        thread_id: UUID,
        prior_messages: ConversationHistory,
        user_message: str,
        rag_enabled: bool,
        *,
        owner_id: UUID,
        persona: Persona,
        deep: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Run a chat turn and yield events for the client.

        The user message must already be persisted; ``prior_messages`` holds
        the turns before it. On success exactly one assistant message is
        appended to the thread and the exchange is added to
        ``prior_messages``. Closing the iterator early writes nothing.

        Args:
            thread_id: Thread receiving the answer
            prior_messages: Recent history buffer
            user_message: The new user message
            rag_enabled: Whether to retrieve from the user's documents
            owner_id: Thread owner
            persona: Persona supplying the system prompt and temperature
            deep: Offer the document search function and allow longer answers
            temperature: Overrides the persona temperature
            max_tokens: Overrides the default answer length (ignored in deep mode)

        Yields:
            ContentDelta and StreamReset events, then one Done or ErrorEvent
        """
        ctx = RequestContext(owner_id=owner_id)
        tiers = await self._build_tiers(
            prior_messages,
            user_message,
            rag_enabled,
            ctx=ctx,
            persona=persona,
            deep=deep,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        last_error: ChatServiceError | None = None

        for tier in tiers:
            for strategy in tier.strategies:
                session = StreamSession(citations=list(tier.citations))
                attempt = AttemptContext(
                    thread_id=thread_id,
                    tier=tier.name,
                    strategy=strategy.name,
                    backend=strategy.backend.name,
                )
                started = time.perf_counter()
                emitted = False

                try:
                    async with aclosing(strategy.attempt(tier.request)) as events:
                        async for event in events:
                            if event.kind == "function_call":
                                self._accumulate_function_call(session, event.name, event.arguments)
                                continue

                            if session.pending_function_call is not None:
                                inserted = await self._resolve_function_call(
                                    session, user_message, ctx
                                )
                                if inserted:
                                    emitted = True
                                    yield ContentDelta(delta=inserted)

                            if event.kind == "content":
                                session.accumulated_content += event.text
                                emitted = True
                                yield ContentDelta(delta=event.text)
                            elif event.kind == "error":
                                raise StreamInterrupted(
                                    f"{strategy.backend.name} reported an error: {event.text}",
                                    backend=strategy.backend.name,
                                )
                            elif event.kind == "done":
                                session.terminal = True
                                break
                except ChatServiceError as exc:
                    self._record_failure(attempt, exc, started)
                    last_error = exc
                    if emitted:
                        yield StreamReset(tier=tier.name, reason=exc.code)
                    if exc.retry_same_backend:
                        continue
                    break

                self._record_success(attempt, started)
                async for final in self._complete_turn(
                    thread_id, prior_messages, user_message, session, tier, ctx
                ):
                    yield final
                return

        async for final in self._exhausted(thread_id, last_error, ctx):
            yield final

    async def _build_tiers(
        self,
        history: ConversationHistory,
        user_message: str,
        rag_enabled: bool,
        *,
        ctx: RequestContext,
        persona: Persona,
        deep: bool,
        temperature: float | None,
        max_tokens: int | None,
    ) -> list[Tier]:
        base_prompt = persona.system_prompt
        citations: list[str] = []
        primary_prompt = base_prompt

        if rag_enabled:
            results = await retrieve_context(
                user_message,
                self.settings.retrieval_top_k,
                ctx,
                chunk_store=self.chunk_store,
                remote=self.retrieval_service,
            )
            assembled = assemble_context(base_prompt, results, user_message)
            primary_prompt = assembled.augmented_system_prompt
            citations = assembled.citations

        if deep:
            tokens = self.settings.deep_max_tokens
        else:
            tokens = max_tokens or self.settings.default_max_tokens
        temp = persona.temperature if temperature is None else temperature

        turns = history.as_payload()
        user_turn = {"role": Role.user.value, "content": user_message}

        tiers = [
            backend_tier(
                "primary",
                self.primary,
                CompletionRequest(
                    messages=[{"role": "system", "content": primary_prompt}, *turns, user_turn],
                    temperature=temp,
                    max_tokens=tokens,
                    functions=[search_function_definition(persona)] if deep else None,
                ),
                citations=citations,
            )
        ]

        if self.secondary is not None:
            tiers.append(
                backend_tier(
                    "secondary",
                    self.secondary,
                    CompletionRequest(
                        messages=[{"role": "system", "content": base_prompt}, *turns, user_turn],
                        temperature=temp,
                        max_tokens=tokens,
                    ),
                )
            )

        return tiers

    def _accumulate_function_call(
        self, session: StreamSession, name: str | None, arguments: str
    ) -> None:
        if session.function_call_used:
            logger.warning("Ignoring additional function call in the same turn")
            return
        if session.pending_function_call is None:
            session.pending_function_call = PendingFunctionCall()
        session.pending_function_call.add_fragment(name, arguments)

    async def _resolve_function_call(
        self, session: StreamSession, user_message: str, ctx: RequestContext
    ) -> str:
        """Run the pending document search and return the text to insert."""
        call = session.pending_function_call
        session.pending_function_call = None
        session.function_call_used = True

        if call is None or call.name != SEARCH_FUNCTION_NAME:
            logger.warning(f"Ignoring unknown function call: {call.name if call else None}")
            return ""

        args = parse_search_arguments(call.arguments, user_message)
        logger.info(
            f"Model requested document search (top_k={args.top_k}, "
            f"document_types={args.document_types})"
        )

        results = await retrieve_context(
            args.query,
            args.top_k,
            ctx,
            chunk_store=self.chunk_store,
            remote=self.retrieval_service,
            document_types=args.document_types,
        )

        inserted = format_practice_documents(results)
        session.accumulated_content += inserted
        session.citations = collect_citations(results, session.citations)
        return inserted

    async def _complete_turn(
        self,
        thread_id: UUID,
        history: ConversationHistory,
        user_message: str,
        session: StreamSession,
        tier: Tier,
        ctx: RequestContext,
    ) -> AsyncIterator[ChatStreamEvent]:
        try:
            message = await self.thread_store.append_message(
                thread_id,
                ctx,
                role=Role.assistant,
                content=session.accumulated_content,
                citations=session.citations or None,
                message_id=session.message_id,
            )
        except (PersistenceFailure, AuthorizationFailure) as e:
            logger.error(f"Failed to persist assistant message for thread {thread_id}: {e}")
            yield ErrorEvent(code=PersistenceFailure.code, message=str(e))
            return

        history.append_exchange(user_message, session.accumulated_content)

        yield Done(
            full_content=session.accumulated_content,
            citations=session.citations,
            message_id=message.message_id,
            tier=tier.name,
        )

    async def _exhausted(
        self,
        thread_id: UUID,
        last_error: ChatServiceError | None,
        ctx: RequestContext,
    ) -> AsyncIterator[ChatStreamEvent]:
        code = last_error.code if last_error else TransportUnavailable.code
        detail = last_error.message if last_error else "No completion backend configured"
        logger.error(f"All completion tiers exhausted for thread {thread_id}: {code} ({detail})")

        try:
            await self.thread_store.append_message(
                thread_id, ctx, role=Role.assistant, content=UNAVAILABLE_MESSAGE
            )
        except (PersistenceFailure, AuthorizationFailure) as e:
            logger.error(f"Failed to persist unavailability notice for thread {thread_id}: {e}")

        yield ErrorEvent(code=code, message=UNAVAILABLE_MESSAGE)

    def _record_success(self, attempt: AttemptContext, started: float) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency(attempt.tier, "success", latency_ms)
        self.attempt_logger.log_attempt(attempt, "success", latency_ms)

    def _record_failure(
        self, attempt: AttemptContext, exc: ChatServiceError, started: float
    ) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency(attempt.tier, "error", latency_ms)
        metrics.inc_error(attempt.tier, exc.code)
        self.attempt_logger.log_attempt(attempt, "error", latency_ms, error_reason=exc.message)
