"""Lifecycle state machine for video records driven by provider events.

``decide`` is a pure function of (persisted snapshot, event). It is re-run on
every compare-and-set conflict, so a delivery always acts on the freshest
state, and replaying an event from the state it produced is a no-op.

States only move forward::

    waiting_upload -> processing -> ready
           \\              \\         \\
            +--------------+---------+--> errored (terminal)

Slow side effects (copying thumbnails into storage) run after the transition is
committed. The commit carries a pending marker so exactly one delivery performs
them; a redelivery may take the marker over once its lease has expired or its
holder released it after a failure.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from reelsync.core.errors import StaleOrRegressiveEvent, UpstreamError, UpstreamTimeout
from reelsync.core.logging import get_logger
from reelsync.core.media import MediaProvider
from reelsync.db.models import EnrichmentKind, PendingEffect, ProcessingState
from reelsync.services.enrichment import EnrichmentTrigger
from reelsync.services.replacement import SYSTEM, AssetReplacementCoordinator, VideoMediaSlot
from reelsync.services.video_store import VideoRecordStore, VideoSnapshot
from reelsync.webhooks.events import (
    AssetCreated,
    AssetErrored,
    AssetReady,
    EnrichmentCompleted,
    LifecycleEvent,
    TranscriptReady,
)

_RANK = {
    ProcessingState.waiting_upload: 0,
    ProcessingState.processing: 1,
    ProcessingState.ready: 2,
}
_FIELD_LIMITS = {EnrichmentKind.title: 255, EnrichmentKind.description: 5000}


class Outcome(str, enum.Enum):
    applied = "applied"
    noop = "noop"
    anomaly = "anomaly"
    unknown_asset = "unknown_asset"


class Effect(str, enum.Enum):
    derive_media = "derive_media"
    enqueue_enrichment = "enqueue_enrichment"


@dataclass(frozen=True)
class Transition:
    outcome: Outcome
    note: str
    changes: Optional[dict[str, Any]] = None
    effects: tuple[Effect, ...] = ()


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    note: str
    video_id: Optional[str] = None
    state: Optional[ProcessingState] = None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _claim(playback_id: str, now: datetime) -> dict[str, Any]:
    return {
        "pending_effect": PendingEffect.derive_media,
        "pending_playback_id": playback_id,
        "pending_since": now,
    }


def _claimable(current: VideoSnapshot, playback_id: str, now: datetime, lease: timedelta) -> bool:
    if current.pending_effect != PendingEffect.derive_media or current.pending_playback_id != playback_id:
        return False
    since = _aware(current.pending_since)
    return since is None or now - since >= lease


def _duration_ms(duration: Optional[float], fallback: int) -> int:
    return int(round(duration * 1000)) if duration is not None else fallback


def decide(current: VideoSnapshot, event: LifecycleEvent, *, now: datetime, lease: timedelta) -> Transition:
    state = current.processing_state
    if state == ProcessingState.errored:
        return Transition(Outcome.anomaly, "terminal_state")

    ext = event.external_asset_id
    if current.external_asset_id and current.external_asset_id != ext:
        return Transition(Outcome.anomaly, "external_asset_id_mismatch")
    bind_asset = {} if current.external_asset_id else {"external_asset_id": ext}

    if isinstance(event, AssetCreated):
        if state == ProcessingState.waiting_upload:
            return Transition(Outcome.applied, "asset_created", {"processing_state": ProcessingState.processing, **bind_asset})
        if state == ProcessingState.processing:
            return Transition(Outcome.noop, "duplicate_created")
        return Transition(Outcome.anomaly, "regressive_created")

    if isinstance(event, AssetReady):
        if _RANK[state] < _RANK[ProcessingState.ready]:
            changes = {
                "processing_state": ProcessingState.ready,
                "playback_id": event.playback_id,
                "duration_ms": _duration_ms(event.duration, current.duration_ms),
                **bind_asset,
                **_claim(event.playback_id, now),
            }
            effects = (Effect.derive_media,)
            if current.transcript_track_id:
                effects += (Effect.enqueue_enrichment,)
            return Transition(Outcome.applied, "asset_ready", changes, effects)
        if current.playback_id == event.playback_id:
            if _claimable(current, event.playback_id, now, lease):
                effects = (Effect.derive_media,)
                if current.transcript_track_id:
                    effects += (Effect.enqueue_enrichment,)
                return Transition(Outcome.applied, "resume_pending_media", {"pending_since": now}, effects)
            return Transition(Outcome.noop, "duplicate_ready")
        changes = {
            "playback_id": event.playback_id,
            "duration_ms": _duration_ms(event.duration, current.duration_ms),
            **_claim(event.playback_id, now),
        }
        return Transition(Outcome.applied, "reingest", changes, (Effect.derive_media,))

    if isinstance(event, AssetErrored):
        changes = {
            "processing_state": ProcessingState.errored,
            "error_reason": event.reason,
            "pending_effect": None,
            "pending_playback_id": None,
            "pending_since": None,
            **bind_asset,
        }
        return Transition(Outcome.applied, "asset_errored", changes)

    if isinstance(event, TranscriptReady):
        changes = None
        if current.transcript_track_id != event.track_id:
            changes = {"transcript_track_id": event.track_id, **bind_asset}
        return Transition(Outcome.applied, "transcript_ready", changes, (Effect.enqueue_enrichment,))

    if isinstance(event, EnrichmentCompleted):
        if not event.succeeded:
            return Transition(Outcome.noop, "enrichment_failed")
        field = event.kind.value
        value = (event.result_text or "").strip()[: _FIELD_LIMITS[event.kind]]
        if getattr(current, field) == value:
            return Transition(Outcome.noop, "enrichment_unchanged")
        return Transition(Outcome.applied, f"enrichment_{field}", {field: value})

    return Transition(Outcome.anomaly, "unsupported_event")  # pragma: no cover - closed union


class LifecycleReconciler:
    def __init__(
        self,
        store: VideoRecordStore,
        coordinator: AssetReplacementCoordinator,
        trigger: EnrichmentTrigger,
        media: MediaProvider,
        *,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.coordinator = coordinator
        self.trigger = trigger
        self.media = media
        self.lease = timedelta(seconds=lease_seconds)
        self.clock = clock
        self.logger = get_logger(component="lifecycle_reconciler")

    async def apply(self, event: LifecycleEvent) -> ReconcileResult:
        upload_id = getattr(event, "upload_id", None)
        located = await self.store.find_for_event(event.external_asset_id, upload_id)
        event_name = type(event).__name__
        log = self.logger.bind(event_type=event_name, external_asset_id=event.external_asset_id)

        if isinstance(event, EnrichmentCompleted):
            await self.trigger.record_completion(event.job_id, result_text=event.result_text, error=event.error)
            if not event.succeeded:
                log.warning("enrichment_result_discarded", kind=event.kind.value, error=event.error)

        if located is None:
            log.warning("lifecycle_unknown_asset", upload_id=upload_id)
            return ReconcileResult(Outcome.unknown_asset, "record_not_found")

        decision: dict[str, Transition] = {}

        def _decide(current: VideoSnapshot) -> Optional[dict[str, Any]]:
            transition = decide(current, event, now=self.clock(), lease=self.lease)
            decision["transition"] = transition
            return transition.changes if transition.outcome == Outcome.applied else None

        snapshot, written = await self.store.update_by_id(located.id, _decide)
        if snapshot is None:
            log.warning("lifecycle_unknown_asset", video_id=located.id)
            return ReconcileResult(Outcome.unknown_asset, "record_vanished")

        transition = decision["transition"]
        log = log.bind(video_id=snapshot.id, state=snapshot.processing_state.value, note=transition.note)
        if transition.outcome == Outcome.anomaly:
            log.warning("lifecycle_anomaly")
            return ReconcileResult(Outcome.anomaly, transition.note, snapshot.id, snapshot.processing_state)
        if transition.outcome == Outcome.noop:
            log.info("lifecycle_noop")
            return ReconcileResult(Outcome.noop, transition.note, snapshot.id, snapshot.processing_state)

        log.info("lifecycle_transition", written=written)
        derive = Effect.derive_media in transition.effects and written
        # enqueue before deriving so a failed derivation cannot drop the jobs
        if Effect.enqueue_enrichment in transition.effects:
            track_id = event.track_id if isinstance(event, TranscriptReady) else snapshot.transcript_track_id
            explicit = event.transcript_url if isinstance(event, TranscriptReady) else None
            try:
                await self._enqueue_enrichment(snapshot, track_id, explicit)
            except (UpstreamTimeout, UpstreamError):
                if derive and snapshot.playback_id:
                    await self._settle_claim(snapshot.id, snapshot.playback_id, release_only=True)
                raise
        if derive:
            await self._derive_media(snapshot)

        outcome = Outcome.applied if written or transition.effects else Outcome.noop
        return ReconcileResult(outcome, transition.note, snapshot.id, snapshot.processing_state)

    async def _derive_media(self, snapshot: VideoSnapshot) -> None:
        playback_id = snapshot.playback_id
        log = self.logger.bind(video_id=snapshot.id, playback_id=playback_id)
        if playback_id is None:
            log.warning("lifecycle_anomaly", note="derive_media_without_playback")
            return
        sources = (
            ("thumbnail", self.media.thumbnail_url(playback_id), f"{snapshot.id}-thumbnail.jpg"),
            ("preview", self.media.preview_url(playback_id), f"{snapshot.id}-preview.gif"),
        )
        try:
            for field, source, filename in sources:
                slot = VideoMediaSlot(self.store, snapshot, field, expected_playback_id=playback_id)
                await self.coordinator.replace(slot, source, SYSTEM, filename=filename)
        except StaleOrRegressiveEvent as exc:
            log.warning("lifecycle_anomaly", note="derive_media_superseded", reason=exc.reason)
            return
        except (UpstreamTimeout, UpstreamError) as exc:
            log.warning("derive_media_failed", reason=exc.reason)
            await self._settle_claim(snapshot.id, playback_id, release_only=True)
            raise
        await self._settle_claim(snapshot.id, playback_id)
        log.info("derive_media_completed")

    async def _settle_claim(self, video_id: str, playback_id: str, *, release_only: bool = False) -> None:
        def _decide(current: VideoSnapshot) -> Optional[dict[str, Any]]:
            if current.pending_effect != PendingEffect.derive_media or current.pending_playback_id != playback_id:
                return None
            if release_only:
                return {"pending_since": None} if current.pending_since is not None else None
            return {"pending_effect": None, "pending_playback_id": None, "pending_since": None}

        await self.store.update_by_id(video_id, _decide)

    async def _enqueue_enrichment(self, snapshot: VideoSnapshot, track_id: Optional[str], explicit_url: Optional[str]) -> None:
        external_asset_id = snapshot.external_asset_id
        locator = explicit_url
        if not locator and track_id and snapshot.playback_id:
            locator = self.media.transcript_url(snapshot.playback_id, track_id)
        if not locator or not external_asset_id:
            self.logger.info("enrichment_deferred", video_id=snapshot.id, reason="no_transcript_locator")
            return
        for kind in (EnrichmentKind.title, EnrichmentKind.description):
            await self.trigger.enqueue(external_asset_id, kind, locator)

    async def resume_pending(self, video_id: str) -> ReconcileResult:
        """Take over an abandoned media derivation for ``video_id`` if its lease has run out."""
        snapshot = await self.store.get(video_id)
        if snapshot is None or snapshot.playback_id is None or snapshot.external_asset_id is None:
            return ReconcileResult(Outcome.unknown_asset, "record_not_found")
        return await self.apply(AssetReady(external_asset_id=snapshot.external_asset_id, playback_id=snapshot.playback_id))


__all__ = ["LifecycleReconciler", "Outcome", "Effect", "Transition", "ReconcileResult", "decide"]
