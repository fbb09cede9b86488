from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from reelsync.api import deps
from reelsync.core.errors import ConcurrentUpdateError, UpstreamError, UpstreamTimeout
from reelsync.core.logging import get_logger
from reelsync.services.webhooks import WebhookAck

from .schemas import WebhookAckResponse


router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(component="webhook_routes")

Handler = Callable[[bytes, Mapping[str, str]], Awaitable[WebhookAck]]


async def _dispatch(request: Request, handler: Handler, provider: str):
    # signatures cover the exact bytes received
    raw_body = await request.body()
    try:
        ack = await handler(raw_body, request.headers)
    except (UpstreamTimeout, UpstreamError, ConcurrentUpdateError) as exc:
        # a non-2xx answer makes the provider redeliver, which resumes the pending work
        logger.warning("webhook_deferred", provider=provider, error=exc.code, reason=exc.reason)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "retry", "error": exc.code},
        )
    return WebhookAckResponse(**ack.as_dict())


@router.post("/media", response_model=WebhookAckResponse, summary="Media provider asset events")
async def media_webhook(request: Request, services: deps.Services):
    return await _dispatch(request, services.webhooks.handle_media, "media")


@router.post("/identity", response_model=WebhookAckResponse, summary="Identity provider user events")
async def identity_webhook(request: Request, services: deps.Services):
    return await _dispatch(request, services.webhooks.handle_identity, "identity")


@router.post("/workflow", response_model=WebhookAckResponse, summary="Enrichment job completion callback")
async def workflow_webhook(request: Request, services: deps.Services):
    return await _dispatch(request, services.webhooks.handle_workflow, "workflow")


__all__ = ["router"]
