from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from reelsync.core.config import Settings, get_settings
from reelsync.core.errors import EnrichmentFailed, TranscriptUnavailable, UpstreamError, UpstreamTimeout
from reelsync.core.jobs import EnrichmentJobSpec
from reelsync.core.logging import configure_logging, get_logger
from reelsync.services.text_generator import TextGenerator, get_text_generator
from reelsync.services.transcripts import TranscriptFetcher
from reelsync.webhooks.events import ENRICHMENT_COMPLETED
from reelsync.webhooks.signatures import sign_workflow_payload


async def execute_enrichment(
    spec: EnrichmentJobSpec,
    fetcher: TranscriptFetcher,
    generator: TextGenerator,
) -> dict[str, Any]:
    """Produce the completion envelope for one job. Failures are reported, never retried here."""
    logger = get_logger(job_id=spec.job_id, kind=spec.kind.value, external_asset_id=spec.external_asset_id)
    data: dict[str, Any] = {
        "job_id": spec.job_id,
        "external_asset_id": spec.external_asset_id,
        "kind": spec.kind.value,
        "result_text": None,
        "error": None,
    }
    try:
        transcript = await fetcher.fetch(spec.transcript_url)
        data["result_text"] = await generator.generate(spec.kind, transcript)
        logger.info("enrichment_job_succeeded")
    except (TranscriptUnavailable, EnrichmentFailed, UpstreamError, UpstreamTimeout) as exc:
        logger.warning("enrichment_job_failed", error=exc.reason)
        data["error"] = exc.reason
    return {"type": ENRICHMENT_COMPLETED, "data": data}


def encode_completion(envelope: dict[str, Any]) -> bytes:
    return json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode("utf-8")


def sign_completion(body: bytes, spec: EnrichmentJobSpec, settings: Settings) -> dict[str, str]:
    headers = sign_workflow_payload(
        body,
        settings.secrets.workflow_current_signing_key,
        subject=spec.callback_url,
        jti=spec.job_id,
    )
    headers["Content-Type"] = "application/json"
    return headers


async def deliver_callback(spec: EnrichmentJobSpec, envelope: dict[str, Any], settings: Settings) -> None:
    body = encode_completion(envelope)
    headers = sign_completion(body, spec, settings)
    async with httpx.AsyncClient(timeout=settings.http_timeout_s) as client:
        response = await client.post(spec.callback_url, content=body, headers=headers)
        response.raise_for_status()


async def process_enrichment_job(spec: EnrichmentJobSpec, settings: Settings, generator: TextGenerator | None = None) -> None:
    fetcher = TranscriptFetcher(timeout_s=settings.http_timeout_s, max_chars=settings.transcript_max_chars)
    try:
        envelope = await execute_enrichment(spec, fetcher, generator or get_text_generator(settings))
    finally:
        await fetcher.aclose()
    await deliver_callback(spec, envelope, settings)


class InProcessEnrichmentRunner:
    """Job runner for the immediate backend: executes the job and hands the signed callback to ``deliver``.

    ``deliver`` is bound after construction because the callback handler itself depends on the
    job backend this runner feeds.
    """

    def __init__(self, settings: Settings, fetcher: TranscriptFetcher, generator: TextGenerator):
        self.settings = settings
        self.fetcher = fetcher
        self.generator = generator
        self.deliver: Optional[Callable[[bytes, Mapping[str, str]], Awaitable[Any]]] = None

    async def __call__(self, spec: EnrichmentJobSpec) -> None:
        if self.deliver is None:
            raise RuntimeError("callback_delivery_not_bound")
        envelope = await execute_enrichment(spec, self.fetcher, self.generator)
        body = encode_completion(envelope)
        await self.deliver(body, sign_completion(body, spec, self.settings))


def run_enrichment_job(payload: dict[str, Any]) -> None:
    """Entry-point executed by the RQ worker."""

    settings = get_settings()
    configure_logging(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    asyncio.run(process_enrichment_job(EnrichmentJobSpec.from_payload(payload), settings))


__all__ = [
    "execute_enrichment",
    "encode_completion",
    "sign_completion",
    "deliver_callback",
    "process_enrichment_job",
    "run_enrichment_job",
    "InProcessEnrichmentRunner",
]
