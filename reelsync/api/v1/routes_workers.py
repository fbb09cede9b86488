from __future__ import annotations

from fastapi import APIRouter, Request

from reelsync.api import deps

from .schemas import WorkerAcceptedResponse


router = APIRouter(prefix="/workers", tags=["workers"])


@router.post(
    "/enrichment",
    response_model=WorkerAcceptedResponse,
    summary="Run an enrichment job delivered by the workflow queue",
)
async def run_enrichment(request: Request, services: deps.Services) -> WorkerAcceptedResponse:
    raw_body = await request.body()
    spec = await services.webhooks.handle_worker(raw_body, request.headers, services.run_worker_job)
    return WorkerAcceptedResponse(job_id=spec.job_id)


__all__ = ["router"]
