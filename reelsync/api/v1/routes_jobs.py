from __future__ import annotations

from fastapi import APIRouter

from reelsync.api import deps
from reelsync.core.errors import RecordNotFound

from . import schemas


router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=schemas.JobResponse)
async def get_job(job_id: str, services: deps.Services, context: deps.AuthDependency) -> schemas.JobResponse:
    job = await services.enrichment.get_job(job_id)
    video = await services.videos.find_for_event(job.external_asset_id) if job else None
    if not job or video is None or video.owner_id != context.user_id:
        raise RecordNotFound("job_not_found", job_id=job_id)

    error = job.error or {}
    return schemas.JobResponse(
        job_id=job.job_id,
        kind=job.kind.value,
        external_asset_id=job.external_asset_id,
        status=job.status.value,
        created_at=job.created_at,
        finished_at=job.finished_at,
        result=job.result,
        error=schemas.JobError(**error) if error else None,
    )


__all__ = ["router"]
