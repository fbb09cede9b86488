from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="ok | degraded")
    version: Optional[str] = None
    database: str = "ok"
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WebhookAckResponse(BaseModel):
    status: str = "ok"
    outcome: str = Field(description="applied | noop | anomaly | unknown_asset | unrecognized")
    note: Optional[str] = None


class VideoCreateRequest(BaseModel):
    title: str = Field(default="Untitled", min_length=1, max_length=255, json_schema_extra={"example": "My trip"})


class VideoCreateResponse(BaseModel):
    id: str
    upload_id: str
    upload_url: str
    processing_state: str


class MediaPointer(BaseModel):
    url: Optional[str] = None
    key: Optional[str] = None


class VideoResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    description: Optional[str]
    processing_state: str
    error_reason: Optional[str]
    external_asset_id: Optional[str]
    playback_id: Optional[str]
    duration_ms: int
    thumbnail: MediaPointer
    preview: MediaPointer
    transcript_track_id: Optional[str]


class StoredObjectResponse(BaseModel):
    url: str
    key: str


class JobAcceptedResponse(BaseModel):
    job_id: str
    duplicate: bool = False
    location: str


class JobError(BaseModel):
    message: str


class JobResponse(BaseModel):
    job_id: str
    kind: str
    external_asset_id: str
    status: str
    created_at: Optional[datetime]
    finished_at: Optional[datetime]
    result: Optional[Dict[str, Any]]
    error: Optional[JobError]


class WorkerAcceptedResponse(BaseModel):
    job_id: str
    status: str = "completed"


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None


__all__ = [
    "HealthResponse",
    "WebhookAckResponse",
    "VideoCreateRequest",
    "VideoCreateResponse",
    "MediaPointer",
    "VideoResponse",
    "StoredObjectResponse",
    "JobAcceptedResponse",
    "JobError",
    "JobResponse",
    "WorkerAcceptedResponse",
    "ErrorResponse",
]
