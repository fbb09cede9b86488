from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelsync.core.jobs import BaseJobBackend, EnqueueResult, EnrichmentJobSpec
from reelsync.core.logging import get_logger
from reelsync.db.models import EnrichmentJob, EnrichmentKind, JobStatus


def idempotency_key(external_asset_id: str, kind: EnrichmentKind, suffix: Optional[str] = None) -> str:
    key = f"{external_asset_id}:{kind.value}"
    return f"{key}:{suffix}" if suffix else key


class EnrichmentTrigger:
    """Submits title/description jobs and keeps a ledger of their outcome."""

    def __init__(
        self,
        backend: BaseJobBackend,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        callback_url: str,
    ):
        self.backend = backend
        self.session_factory = session_factory
        self.callback_url = callback_url
        self.logger = get_logger(component="enrichment_trigger")

    async def enqueue(
        self,
        external_asset_id: str,
        kind: EnrichmentKind,
        transcript_locator: str,
        *,
        key_suffix: Optional[str] = None,
    ) -> EnqueueResult:
        key = idempotency_key(external_asset_id, kind, key_suffix)
        job = await self._ledger_entry(external_asset_id, kind, key)
        spec = EnrichmentJobSpec(
            job_id=job.job_id,
            external_asset_id=external_asset_id,
            kind=kind,
            transcript_url=transcript_locator,
            callback_url=self.callback_url,
        )
        result = await self.backend.enqueue(spec, key)
        self.logger.info(
            "enrichment_job_enqueued",
            job_id=result.job_id,
            kind=kind.value,
            external_asset_id=external_asset_id,
            duplicate=result.duplicate,
        )
        return result

    async def _ledger_entry(self, external_asset_id: str, kind: EnrichmentKind, key: str) -> EnrichmentJob:
        async with self.session_factory() as session:
            existing = await self._by_key(session, key)
            if existing:
                return existing
            job = EnrichmentJob(
                job_id=uuid4().hex,
                kind=kind,
                external_asset_id=external_asset_id,
                idempotency_key=key,
                status=JobStatus.queued,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._by_key(session, key)
                if existing is None:
                    raise
                return existing
            return job

    @staticmethod
    async def _by_key(session: AsyncSession, key: str) -> Optional[EnrichmentJob]:
        stmt = select(EnrichmentJob).where(EnrichmentJob.idempotency_key == key)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def record_completion(self, job_id: Optional[str], *, result_text: Optional[str], error: Optional[str]) -> None:
        if not job_id:
            return
        async with self.session_factory() as session:
            job = await session.get(EnrichmentJob, job_id)
            if job is None:
                self.logger.warning("enrichment_job_unknown", job_id=job_id)
                return
            succeeded = error is None and bool(result_text and result_text.strip())
            job.status = JobStatus.succeeded if succeeded else JobStatus.failed
            job.result = {"text": result_text} if succeeded else None
            job.error = None if succeeded else {"message": error or "empty_result"}
            job.finished_at = datetime.now(timezone.utc)
            await session.commit()

    async def get_job(self, job_id: str) -> Optional[EnrichmentJob]:
        async with self.session_factory() as session:
            return await session.get(EnrichmentJob, job_id)


__all__ = ["EnrichmentTrigger", "idempotency_key"]
