"""Minimal auth dependency.

Stub implementation that takes the owner id straight from the bearer token.
Identity verification belongs to the deployment's gateway.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from backend.ragchat.db.context import RequestContext


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Extract request context from authorization header.

    Accepts ``Bearer <owner-uuid>``.

    Args:
        authorization: Authorization header (e.g., "Bearer <token>")

    Returns:
        RequestContext with owner_id

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        raise _unauthorized("Unauthorized")

    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid authorization header format")

    token = authorization[7:].strip()  # Strip "Bearer "

    try:
        return RequestContext(owner_id=uuid.UUID(token))
    except ValueError as e:
        raise _unauthorized("Invalid token format (expected owner id)") from e
