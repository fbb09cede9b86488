from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from reelsync.api import deps
from reelsync.core.auth import AuthContext
from reelsync.core.config import Settings
from reelsync.core.errors import RecordNotFound, TerminalAssetError
from reelsync.db.models import EnrichmentKind, ProcessingState
from reelsync.services.container import Collaborators
from reelsync.services.replacement import Caller, VideoMediaSlot
from reelsync.services.video_store import VideoSnapshot

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])


def _to_response(video: VideoSnapshot) -> schemas.VideoResponse:
    return schemas.VideoResponse(
        id=video.id,
        owner_id=video.owner_id,
        title=video.title,
        description=video.description,
        processing_state=video.processing_state.value,
        error_reason=video.error_reason,
        external_asset_id=video.external_asset_id,
        playback_id=video.playback_id,
        duration_ms=video.duration_ms,
        thumbnail=schemas.MediaPointer(url=video.thumbnail_url, key=video.thumbnail_key),
        preview=schemas.MediaPointer(url=video.preview_url, key=video.preview_key),
        transcript_track_id=video.transcript_track_id,
    )


async def _owned_video(video_id: str, context: AuthContext, services: Collaborators) -> VideoSnapshot:
    video = await services.videos.get(video_id)
    # other users' videos are reported as missing
    if video is None or video.owner_id != context.user_id:
        raise RecordNotFound("video_not_found", video_id=video_id)
    return video


def _require_ready(video: VideoSnapshot) -> str:
    if video.processing_state == ProcessingState.errored:
        raise TerminalAssetError("video_errored", video_id=video.id)
    if video.processing_state != ProcessingState.ready or not video.playback_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="video_not_ready")
    return video.playback_id


@router.post("", response_model=schemas.VideoCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    payload: schemas.VideoCreateRequest,
    services: deps.Services,
    context: deps.RateLimitedCaller,
) -> schemas.VideoCreateResponse:
    session = await services.media.create_upload(owner_id=context.user_id, cors_origin=services.settings.media_cors_origin)
    video = await services.videos.create(owner_id=context.user_id, upload_id=session.upload_id, title=payload.title)
    return schemas.VideoCreateResponse(
        id=video.id,
        upload_id=session.upload_id,
        upload_url=session.upload_url,
        processing_state=video.processing_state.value,
    )


@router.get("/{video_id}", response_model=schemas.VideoResponse)
async def get_video(video_id: str, services: deps.Services, context: deps.AuthDependency) -> schemas.VideoResponse:
    return _to_response(await _owned_video(video_id, context, services))


@router.put("/{video_id}/thumbnail", response_model=schemas.StoredObjectResponse)
async def upload_thumbnail(
    video_id: str,
    services: deps.Services,
    context: deps.RateLimitedCaller,
    file: UploadFile = File(...),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.StoredObjectResponse:
    video = await services.videos.get(video_id)
    if video is None:
        raise RecordNotFound("video_not_found", video_id=video_id)
    payload = await deps.read_image_upload(file, settings)
    filename = f"{video.id}-thumbnail{Path(file.filename or '').suffix or '.jpg'}"
    stored = await services.coordinator.replace(
        VideoMediaSlot(services.videos, video, "thumbnail"),
        payload,
        Caller(user_id=context.user_id),
        filename=filename,
        content_type=file.content_type,
    )
    return schemas.StoredObjectResponse(url=stored.url, key=stored.key)


@router.post("/{video_id}/thumbnail/restore", response_model=schemas.StoredObjectResponse)
async def restore_thumbnail(
    video_id: str,
    services: deps.Services,
    context: deps.RateLimitedCaller,
) -> schemas.StoredObjectResponse:
    video = await _owned_video(video_id, context, services)
    playback_id = _require_ready(video)
    stored = await services.coordinator.replace(
        VideoMediaSlot(services.videos, video, "thumbnail", expected_playback_id=playback_id),
        services.media.thumbnail_url(playback_id),
        Caller(user_id=context.user_id),
        filename=f"{video.id}-thumbnail.jpg",
    )
    return schemas.StoredObjectResponse(url=stored.url, key=stored.key)


@router.post(
    "/{video_id}/enrichment/{kind}",
    response_model=schemas.JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_enrichment(
    video_id: str,
    kind: EnrichmentKind,
    services: deps.Services,
    context: deps.RateLimitedCaller,
    idempotency_key: str | None = Depends(deps.get_idempotency_key),
) -> schemas.JobAcceptedResponse:
    video = await _owned_video(video_id, context, services)
    playback_id = _require_ready(video)
    if not video.transcript_track_id or not video.external_asset_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="transcript_not_ready")
    result = await services.enrichment.enqueue(
        video.external_asset_id,
        kind,
        services.media.transcript_url(playback_id, video.transcript_track_id),
        key_suffix=f"manual:{idempotency_key or uuid4().hex}",
    )
    return schemas.JobAcceptedResponse(job_id=result.job_id, duplicate=result.duplicate, location=f"/v1/jobs/{result.job_id}")


__all__ = ["router"]
