"""Request context for ownership enforcement."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Request context containing the caller's identity.

    Every store operation is scoped to ``owner_id``; rows belonging to other
    owners are indistinguishable from missing rows.
    """

    owner_id: UUID
