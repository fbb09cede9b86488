from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

import httpx
from redis import Redis
from rq import Queue

from reelsync.db.models import EnrichmentKind

from .config import Settings
from .errors import UpstreamError, UpstreamTimeout
from .logging import get_logger

QUEUE_NAME = "reelsync-enrichment"


@dataclass(frozen=True)
class EnrichmentJobSpec:
    job_id: str
    external_asset_id: str
    kind: EnrichmentKind
    transcript_url: str
    callback_url: str

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EnrichmentJobSpec":
        return cls(
            job_id=payload["job_id"],
            external_asset_id=payload["external_asset_id"],
            kind=EnrichmentKind(payload["kind"]),
            transcript_url=payload["transcript_url"],
            callback_url=payload["callback_url"],
        )


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    duplicate: bool = False


JobRunner = Callable[[EnrichmentJobSpec], Awaitable[None]]


class BaseJobBackend(ABC):
    """Queue collaborator. ``idempotency_key`` must suppress repeat submissions."""

    @abstractmethod
    async def enqueue(self, spec: EnrichmentJobSpec, idempotency_key: str) -> EnqueueResult: ...

    async def aclose(self) -> None:
        return None


class ImmediateJobBackend(BaseJobBackend):
    """Runs jobs in-process as they are submitted; keys are remembered for the process lifetime."""

    def __init__(self, runner: JobRunner):
        self.runner = runner
        self._keys: dict[str, str] = {}
        self._lock = threading.Lock()

    async def enqueue(self, spec: EnrichmentJobSpec, idempotency_key: str) -> EnqueueResult:
        with self._lock:
            existing = self._keys.get(idempotency_key)
            if existing is None:
                self._keys[idempotency_key] = spec.job_id
        if existing is not None:
            return EnqueueResult(job_id=existing, duplicate=True)
        try:
            await self.runner(spec)
        except Exception:
            with self._lock:
                self._keys.pop(idempotency_key, None)
            raise
        return EnqueueResult(job_id=spec.job_id)


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue, connection: Redis, *, ttl_seconds: int):
        self.queue = queue
        self.connection = connection
        self.ttl_seconds = ttl_seconds

    async def enqueue(self, spec: EnrichmentJobSpec, idempotency_key: str) -> EnqueueResult:  # pragma: no cover - exercised via worker
        from reelsync.workers.tasks import run_enrichment_job

        def _submit() -> EnqueueResult:
            marker = f"reelsync:idempotency:{idempotency_key}"
            if not self.connection.set(marker, spec.job_id, nx=True, ex=self.ttl_seconds):
                existing = self.connection.get(marker)
                job_id = existing.decode("utf-8") if isinstance(existing, bytes) else str(existing)
                return EnqueueResult(job_id=job_id, duplicate=True)
            self.queue.enqueue(run_enrichment_job, spec.to_payload(), job_id=spec.job_id)
            return EnqueueResult(job_id=spec.job_id)

        return await asyncio.to_thread(_submit)


class WorkflowJobBackend(BaseJobBackend):
    """Managed HTTP queue: publishes the job to the worker route with a deduplication id."""

    def __init__(self, api_url: str, token: str, worker_url: str, *, retries: int = 3, timeout_s: float = 10.0,
                 client: httpx.AsyncClient | None = None):
        self.api_url = api_url.rstrip("/")
        self.worker_url = worker_url
        self.retries = retries
        self.client = client or httpx.AsyncClient(timeout=timeout_s, headers={"Authorization": f"Bearer {token}"})
        self.logger = get_logger(component="workflow_backend")

    async def enqueue(self, spec: EnrichmentJobSpec, idempotency_key: str) -> EnqueueResult:
        try:
            response = await self.client.post(
                f"{self.api_url}/v2/publish/{self.worker_url}",
                json=spec.to_payload(),
                headers={
                    "Upstash-Deduplication-Id": idempotency_key,
                    "Upstash-Retries": str(self.retries),
                },
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(provider="workflow") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"workflow_publish_failed:{exc}") from exc
        body = response.json()
        duplicate = bool(body.get("deduplicated"))
        self.logger.info("workflow_job_published", job_id=spec.job_id, message_id=body.get("messageId"), duplicate=duplicate)
        return EnqueueResult(job_id=spec.job_id, duplicate=duplicate)

    async def aclose(self) -> None:
        await self.client.aclose()


def get_job_backend(settings: Settings, runner: JobRunner) -> BaseJobBackend:
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend(runner)
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue(QUEUE_NAME, connection=connection), connection, ttl_seconds=settings.idempotency_ttl_seconds)
    if backend == "workflow":
        return WorkflowJobBackend(
            settings.workflow_api_url,
            settings.secrets.workflow_token,
            f"{settings.public_base_url.rstrip('/')}/v1/workers/enrichment",
            retries=settings.workflow_retries,
            timeout_s=settings.http_timeout_s,
        )
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = [
    "BaseJobBackend",
    "ImmediateJobBackend",
    "RQJobBackend",
    "WorkflowJobBackend",
    "EnrichmentJobSpec",
    "EnqueueResult",
    "JobRunner",
    "get_job_backend",
]
