"""Health check endpoints.

- /health: process is up
- /healthz: database and completion backend configuration
"""

import json
from typing import Any

from fastapi import APIRouter, Response
from sqlalchemy import text

from backend.ragchat.config import Settings, get_settings
from backend.ragchat.db.engine import get_async_engine

router = APIRouter()


async def check_db() -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


def check_backends(settings: Settings) -> dict[str, str]:
    """Report which completion and retrieval backends are configured."""
    return {
        "primary": "configured" if settings.primary_completion_url else "missing",
        "secondary": "configured" if settings.secondary_completion_url else "not_configured",
        "retrieval_service": (
            "configured" if settings.retrieval_service_url else "local_index"
        ),
    }


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz() -> dict[str, Any] | Response:
    """Health check endpoint.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    settings = get_settings()

    db_ok, db_status = await check_db()

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {"db": db_status, **check_backends(settings)},
    }

    if not db_ok:
        return Response(
            content=json.dumps(response_body),
            status_code=503,
            media_type="application/json",
        )

    return response_body
