from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from reelsync.core.db import Base


class ProcessingState(str, enum.Enum):
    waiting_upload = "waiting_upload"
    processing = "processing"
    ready = "ready"
    errored = "errored"


class PendingEffect(str, enum.Enum):
    derive_media = "derive_media"


class EnrichmentKind(str, enum.Enum):
    title = "title"
    description = "description"


class JobStatus(str, enum.Enum):
    queued = "queued"
    succeeded = "succeeded"
    failed = "failed"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    banner_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    banner_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class VideoRecord(Base):
    __tablename__ = "videos"
    __table_args__ = (Index("ix_videos_owner_id", "owner_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    upload_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    external_asset_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    playback_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processing_state: Mapped[ProcessingState] = mapped_column(
        Enum(ProcessingState), default=ProcessingState.waiting_upload, nullable=False
    )
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="Untitled")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    thumbnail_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    preview_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    preview_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transcript_track_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pending_effect: Mapped[PendingEffect | None] = mapped_column(Enum(PendingEffect), nullable=True)
    pending_playback_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pending_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class EnrichmentJob(Base):
    __tablename__ = "enrichment_jobs"
    __table_args__ = (Index("ix_enrichment_jobs_asset", "external_asset_id"),)

    job_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    kind: Mapped[EnrichmentKind] = mapped_column(Enum(EnrichmentKind), nullable=False)
    external_asset_id: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), default=JobStatus.queued, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "User",
    "VideoRecord",
    "EnrichmentJob",
    "ProcessingState",
    "PendingEffect",
    "EnrichmentKind",
    "JobStatus",
]
