"""Structured logging for completion attempts."""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptContext:
    """Identifies one completion attempt."""

    thread_id: UUID
    tier: str
    strategy: str
    backend: str


class StructuredCompletionLogger:
    """Structured logger for completion tier attempts."""

    def log_attempt(
        self,
        ctx: AttemptContext,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log completion attempt with structured data."""
        log_data: dict[str, Any] = {
            "thread_id": str(ctx.thread_id),
            "tier": ctx.tier,
            "strategy": ctx.strategy,
            "backend": ctx.backend,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"Completion attempt: {ctx.tier}/{ctx.strategy} - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
