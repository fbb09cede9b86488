from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reelsync.core.config import Settings
from reelsync.core.db import create_engine, create_session_factory
from reelsync.core.jobs import BaseJobBackend, EnrichmentJobSpec, get_job_backend
from reelsync.core.media import MediaProvider, get_media_provider
from reelsync.core.rate_limit import RateLimitPolicy, get_rate_limiter
from reelsync.core.storage import Storage, get_storage
from reelsync.services.enrichment import EnrichmentTrigger
from reelsync.services.reconciler import LifecycleReconciler
from reelsync.services.replacement import AssetReplacementCoordinator
from reelsync.services.text_generator import TextGenerator, get_text_generator
from reelsync.services.transcripts import TranscriptFetcher
from reelsync.services.users import UserStore
from reelsync.services.video_store import VideoRecordStore
from reelsync.services.webhooks import WebhookService
from reelsync.workers.tasks import InProcessEnrichmentRunner, process_enrichment_job


@dataclass
class Collaborators:
    """Everything a request handler needs, built once per application."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    storage: Storage
    media: MediaProvider
    generator: TextGenerator
    fetcher: TranscriptFetcher
    jobs: BaseJobBackend
    rate_limiter: RateLimitPolicy
    videos: VideoRecordStore
    users: UserStore
    coordinator: AssetReplacementCoordinator
    enrichment: EnrichmentTrigger
    reconciler: LifecycleReconciler
    webhooks: WebhookService

    async def run_worker_job(self, spec: EnrichmentJobSpec) -> None:
        await process_enrichment_job(spec, self.settings, self.generator)

    async def aclose(self) -> None:
        await self.jobs.aclose()
        await self.rate_limiter.aclose()
        await self.fetcher.aclose()
        await self.media.aclose()
        await self.engine.dispose()


def build_collaborators(
    settings: Settings,
    *,
    storage: Optional[Storage] = None,
    media: Optional[MediaProvider] = None,
    generator: Optional[TextGenerator] = None,
    fetcher: Optional[TranscriptFetcher] = None,
    rate_limiter: Optional[RateLimitPolicy] = None,
    **reconciler_options: Any,
) -> Collaborators:
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    storage = storage or get_storage(settings)
    media = media or get_media_provider(settings)
    generator = generator or get_text_generator(settings)
    fetcher = fetcher or TranscriptFetcher(timeout_s=settings.http_timeout_s, max_chars=settings.transcript_max_chars)

    runner = InProcessEnrichmentRunner(settings, fetcher, generator)
    jobs = get_job_backend(settings, runner)

    videos = VideoRecordStore(session_factory, max_attempts=settings.store_cas_max_attempts)
    users = UserStore(session_factory)
    coordinator = AssetReplacementCoordinator(storage, timeout_s=settings.storage_timeout_s)
    enrichment = EnrichmentTrigger(jobs, session_factory, callback_url=settings.workflow_callback_url)
    reconciler = LifecycleReconciler(
        videos,
        coordinator,
        enrichment,
        media,
        lease_seconds=settings.side_effect_lease_seconds,
        **reconciler_options,
    )
    webhooks = WebhookService(settings, reconciler, users)
    runner.deliver = webhooks.handle_workflow

    return Collaborators(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        storage=storage,
        media=media,
        generator=generator,
        fetcher=fetcher,
        jobs=jobs,
        rate_limiter=rate_limiter or get_rate_limiter(settings),
        videos=videos,
        users=users,
        coordinator=coordinator,
        enrichment=enrichment,
        reconciler=reconciler,
        webhooks=webhooks,
    )


__all__ = ["Collaborators", "build_collaborators"]
