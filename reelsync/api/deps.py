from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status

from reelsync.core.auth import AuthContext, get_auth_context
from reelsync.core.config import Settings
from reelsync.core.errors import RateLimited
from reelsync.core.rate_limit import Denied
from reelsync.services.container import Collaborators


def get_collaborators(request: Request) -> Collaborators:
    collaborators = request.app.state.collaborators
    if not isinstance(collaborators, Collaborators):  # pragma: no cover - lifespan not run
        raise RuntimeError("collaborators_not_configured")
    return collaborators


def get_app_settings(collaborators: Collaborators = Depends(get_collaborators)) -> Settings:
    return collaborators.settings


async def enforce_rate_limit(
    context: AuthContext = Depends(get_auth_context),
    collaborators: Collaborators = Depends(get_collaborators),
) -> AuthContext:
    decision = await collaborators.rate_limiter.allow(context.user_id)
    if isinstance(decision, Denied):
        raise RateLimited(decision.retry_after, caller_id=context.user_id)
    return context


def get_idempotency_key(request: Request) -> str | None:
    return request.headers.get("Idempotency-Key")


async def read_image_upload(file: UploadFile, settings: Settings) -> bytes:
    """Read an image upload, enforcing the configured content types and size limit."""
    if file.content_type not in settings.allowed_image_content_types:
        raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="unsupported_image_type")
    payload = await file.read(settings.max_image_upload_bytes + 1)
    await file.close()
    if len(payload) > settings.max_image_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="image_too_large")
    if not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="empty_upload")
    return payload


Services = Annotated[Collaborators, Depends(get_collaborators)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]
RateLimitedCaller = Annotated[AuthContext, Depends(enforce_rate_limit)]


__all__ = [
    "get_collaborators",
    "get_app_settings",
    "enforce_rate_limit",
    "get_idempotency_key",
    "read_image_upload",
    "Services",
    "AuthDependency",
    "RateLimitedCaller",
]
