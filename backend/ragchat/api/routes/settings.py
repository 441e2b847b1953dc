"""User settings endpoints - GET/PATCH /settings."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.ragchat.api.auth import get_current_context
from backend.ragchat.api.deps import get_settings_store
from backend.ragchat.db.context import RequestContext
from backend.ragchat.db.repositories import SettingsStore
from backend.ragchat.models.chat import UserSettings
from backend.ragchat.orchestration.personas import is_known_tenant

router = APIRouter(prefix="/settings", tags=["settings"])


class UpdateSettingsRequest(BaseModel):
    """Request body for PATCH /settings. Omitted fields are left unchanged."""

    system_prompt: str | None = Field(None, max_length=10000)
    enable_rag: bool | None = None
    default_tenant: str | None = None
    max_tokens: int | None = Field(None, ge=1, le=8000)


@router.get("", response_model=UserSettings)
async def get_user_settings(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[SettingsStore, Depends(get_settings_store)],
) -> UserSettings:
    """Get the caller's settings, defaults if none were saved."""
    return await store.get_settings(ctx)


@router.patch("", response_model=UserSettings)
async def update_user_settings(
    request: UpdateSettingsRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    store: Annotated[SettingsStore, Depends(get_settings_store)],
) -> UserSettings:
    """Update the caller's settings.

    An empty system prompt clears the custom prompt.
    """
    if request.default_tenant is not None and not is_known_tenant(request.default_tenant):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown tenant: {request.default_tenant}",
        )

    current = await store.get_settings(ctx)
    changes = request.model_dump(exclude_unset=True)
    if "system_prompt" in changes and not (changes["system_prompt"] or "").strip():
        changes["system_prompt"] = None

    return await store.save_settings(current.model_copy(update=changes), ctx)
