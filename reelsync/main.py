from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from reelsync.api.v1 import get_api_router
from reelsync.core.config import Settings, get_settings
from reelsync.core.errors import (
    ConcurrentUpdateError,
    InvalidRequest,
    OwnershipViolation,
    RateLimited,
    RecordNotFound,
    ReelsyncError,
    SignatureInvalid,
    StaleOrRegressiveEvent,
    TerminalAssetError,
    UpstreamError,
    UpstreamTimeout,
)
from reelsync.core.logging import configure_logging, get_logger
from reelsync.services.container import build_collaborators

logger = get_logger(component="app")

_STATUS_BY_ERROR: dict[type[ReelsyncError], int] = {
    OwnershipViolation: status.HTTP_403_FORBIDDEN,
    RecordNotFound: status.HTTP_404_NOT_FOUND,
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    StaleOrRegressiveEvent: status.HTTP_409_CONFLICT,
    ConcurrentUpdateError: status.HTTP_409_CONFLICT,
    TerminalAssetError: status.HTTP_409_CONFLICT,
    UpstreamTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    UpstreamError: status.HTTP_502_BAD_GATEWAY,
}


async def _signature_invalid(request: Request, exc: SignatureInvalid) -> JSONResponse:
    # the rejection reason is logged by the verifier, never returned
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": SignatureInvalid.code})


async def _rate_limited(request: Request, exc: RateLimited) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": exc.code},
        headers={"Retry-After": str(exc.retry_after)},
    )


async def _reelsync_error(request: Request, exc: ReelsyncError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    logger.info("request_failed", path=request.url.path, error=exc.code, reason=exc.reason, status_code=status_code)
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.reason})


def create_app(settings: Optional[Settings] = None, **overrides: Any) -> FastAPI:
    """Build the application; ``overrides`` replace individual collaborators (storage, media, ...)."""
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=log_level)
    collaborators = build_collaborators(settings, **overrides)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.collaborators = collaborators
        logger.info("app_started", environment=settings.environment, job_backend=settings.normalized_job_backend)
        try:
            yield
        finally:
            await collaborators.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.add_exception_handler(SignatureInvalid, _signature_invalid)
    app.add_exception_handler(RateLimited, _rate_limited)
    app.add_exception_handler(ReelsyncError, _reelsync_error)
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
