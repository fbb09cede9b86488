from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from reelsync.api import deps
from reelsync.core.logging import get_logger

from .schemas import HealthResponse


router = APIRouter(tags=["system"])
logger = get_logger(component="system_routes")


@router.get("/health", response_model=HealthResponse, summary="Liveness probe with database reachability")
async def health(services: deps.Services) -> HealthResponse:
    database = "ok"
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health_database_unreachable", error=str(exc))
        database = "unreachable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=services.settings.version,
        database=database,
    )


__all__ = ["router"]
