from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, File, UploadFile

from reelsync.api import deps
from reelsync.core.config import Settings
from reelsync.core.errors import RecordNotFound
from reelsync.services.replacement import Caller, UserBannerSlot

from . import schemas


router = APIRouter(prefix="/users", tags=["users"])


@router.put("/me/banner", response_model=schemas.StoredObjectResponse)
async def replace_banner(
    services: deps.Services,
    context: deps.RateLimitedCaller,
    file: UploadFile = File(...),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.StoredObjectResponse:
    if await services.users.get(context.user_id) is None:
        raise RecordNotFound("user_not_found", user_id=context.user_id)
    payload = await deps.read_image_upload(file, settings)
    stored = await services.coordinator.replace(
        UserBannerSlot(services.users, context.user_id),
        payload,
        Caller(user_id=context.user_id),
        filename=f"{context.user_id}-banner{Path(file.filename or '').suffix or '.jpg'}",
        content_type=file.content_type,
    )
    return schemas.StoredObjectResponse(url=stored.url, key=stored.key)


__all__ = ["router"]
