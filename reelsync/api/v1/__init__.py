"""Versioned API routing for Reelsync."""

from fastapi import APIRouter

from . import routes_admin, routes_jobs, routes_system, routes_users, routes_videos, routes_webhooks, routes_workers


def get_api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")
    router.include_router(routes_system.router)
    router.include_router(routes_admin.router)
    router.include_router(routes_webhooks.router)
    router.include_router(routes_workers.router)
    router.include_router(routes_videos.router)
    router.include_router(routes_users.router)
    router.include_router(routes_jobs.router)
    return router


__all__ = ["get_api_router"]
