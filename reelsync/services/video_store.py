"""Durable video records with atomic read-modify-write.

Writes are optimistic: every row carries a ``version`` and an update only lands
when the version it was computed from is still current. A conflicting writer
re-reads and recomputes its change, so two deliveries of the same webhook can
never interleave a stale decision over a fresh one. Rows for different videos
never contend.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelsync.core.errors import ConcurrentUpdateError
from reelsync.core.logging import get_logger
from reelsync.db.models import PendingEffect, ProcessingState, VideoRecord

Decision = Callable[["VideoSnapshot"], Optional[dict[str, Any]]]

_IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "version", "created_at"})


@dataclass(frozen=True)
class VideoSnapshot:
    id: str
    owner_id: str
    upload_id: Optional[str]
    external_asset_id: Optional[str]
    playback_id: Optional[str]
    processing_state: ProcessingState
    error_reason: Optional[str]
    title: str
    description: Optional[str]
    thumbnail_url: Optional[str]
    thumbnail_key: Optional[str]
    preview_url: Optional[str]
    preview_key: Optional[str]
    duration_ms: int
    transcript_track_id: Optional[str]
    pending_effect: Optional[PendingEffect]
    pending_playback_id: Optional[str]
    pending_since: Optional[datetime]
    version: int

    @classmethod
    def from_row(cls, row: VideoRecord) -> "VideoSnapshot":
        return cls(**{f.name: getattr(row, f.name) for f in dataclasses.fields(cls)})

    def as_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class VideoRecordStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, max_attempts: int = 5):
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.logger = get_logger(component="video_store")

    async def create(self, *, owner_id: str, upload_id: Optional[str], title: str = "Untitled") -> VideoSnapshot:
        row = VideoRecord(
            id=uuid4().hex,
            owner_id=owner_id,
            upload_id=upload_id,
            title=title,
            processing_state=ProcessingState.waiting_upload,
            duration_ms=0,
            version=0,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return VideoSnapshot.from_row(row)

    async def get(self, video_id: str) -> Optional[VideoSnapshot]:
        async with self.session_factory() as session:
            row = await session.get(VideoRecord, video_id)
            return VideoSnapshot.from_row(row) if row else None

    async def find_for_event(self, external_asset_id: Optional[str], upload_id: Optional[str] = None) -> Optional[VideoSnapshot]:
        """Locate a record by provider asset id, falling back to the direct-upload id."""
        clauses = []
        if external_asset_id:
            clauses.append(VideoRecord.external_asset_id == external_asset_id)
        if upload_id:
            clauses.append(VideoRecord.upload_id == upload_id)
        if not clauses:
            return None
        async with self.session_factory() as session:
            rows = (await session.execute(select(VideoRecord).where(or_(*clauses)))).scalars().all()
        if not rows:
            return None
        for row in rows:
            if external_asset_id and row.external_asset_id == external_asset_id:
                return VideoSnapshot.from_row(row)
        return VideoSnapshot.from_row(rows[0])

    async def compare_and_set(self, snapshot: VideoSnapshot, changes: dict[str, Any]) -> Optional[VideoSnapshot]:
        """Apply ``changes`` only if the row is still at ``snapshot.version``; ``None`` on conflict."""
        illegal = _IMMUTABLE_FIELDS.intersection(changes)
        if illegal:
            raise ValueError(f"immutable_fields:{','.join(sorted(illegal))}")
        stmt = (
            update(VideoRecord)
            .where(VideoRecord.id == snapshot.id, VideoRecord.version == snapshot.version)
            .values(**changes, version=VideoRecord.version + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount != 1:
            return None
        return dataclasses.replace(snapshot, version=snapshot.version + 1, **changes)

    async def read_modify_write(
        self,
        load: Callable[[], Awaitable[Optional[VideoSnapshot]]],
        decide: Decision,
    ) -> tuple[Optional[VideoSnapshot], bool]:
        """Run ``decide`` against the freshest row until its change lands or it declines to write.

        Returns ``(snapshot, written)``. ``decide`` must be a pure function of the snapshot;
        it is re-run after every conflict.
        """
        for attempt in range(1, self.max_attempts + 1):
            current = await load()
            if current is None:
                return None, False
            changes = decide(current)
            if not changes:
                return current, False
            updated = await self.compare_and_set(current, changes)
            if updated is not None:
                return updated, True
            self.logger.info("video_cas_conflict", video_id=current.id, attempt=attempt, version=current.version)
        raise ConcurrentUpdateError("cas_attempts_exhausted", attempts=self.max_attempts)

    async def update_by_id(self, video_id: str, decide: Decision) -> tuple[Optional[VideoSnapshot], bool]:
        return await self.read_modify_write(lambda: self.get(video_id), decide)


__all__ = ["VideoRecordStore", "VideoSnapshot", "Decision"]
