from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reelsync.core.errors import UnrecognizedEvent
from reelsync.db.models import EnrichmentKind

ASSET_CREATED = "video.asset.created"
ASSET_READY = "video.asset.ready"
ASSET_ERRORED = "video.asset.errored"
TRACK_READY = "video.asset.track.ready"
ENRICHMENT_COMPLETED = "enrichment.completed"


@dataclass(frozen=True)
class AssetCreated:
    external_asset_id: str
    upload_id: Optional[str] = None


@dataclass(frozen=True)
class AssetReady:
    external_asset_id: str
    playback_id: str
    duration: Optional[float] = None
    static_renditions_ready: bool = False
    upload_id: Optional[str] = None


@dataclass(frozen=True)
class AssetErrored:
    external_asset_id: str
    reason: str
    upload_id: Optional[str] = None


@dataclass(frozen=True)
class TranscriptReady:
    external_asset_id: str
    track_id: str
    transcript_url: Optional[str] = None


@dataclass(frozen=True)
class EnrichmentCompleted:
    external_asset_id: str
    kind: EnrichmentKind
    result_text: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.result_text and self.result_text.strip())


@dataclass(frozen=True)
class Unrecognized:
    event_type: str
    reason: str


LifecycleEvent = Union[AssetCreated, AssetReady, AssetErrored, TranscriptReady, EnrichmentCompleted]


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    data: dict[str, Any]


class _PlaybackId(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    policy: Optional[str] = None


class _StaticRenditions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None


class _AssetData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    upload_id: Optional[str] = None
    status: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0)
    playback_ids: List[_PlaybackId] = Field(default_factory=list)
    static_renditions: Optional[_StaticRenditions] = None


class _AssetErrors(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    messages: List[str] = Field(default_factory=list)


class _ErroredData(_AssetData):
    errors: Optional[_AssetErrors] = None


class _TrackData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    asset_id: str = Field(min_length=1)
    type: str
    status: Optional[str] = None
    text_type: Optional[str] = None
    transcript_url: Optional[str] = None


class _EnrichmentData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    external_asset_id: str = Field(min_length=1)
    kind: EnrichmentKind
    result_text: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = None


def parse_envelope(payload: Any) -> tuple[str, dict[str, Any]] | Unrecognized:
    """Split a provider body into ``(type, data)``; malformed envelopes are unrecognized."""
    try:
        envelope = _Envelope.model_validate(payload)
    except ValidationError:
        event_type = payload.get("type") if isinstance(payload, dict) else None
        return Unrecognized(str(event_type or "unknown"), "malformed_envelope")
    return envelope.type, envelope.data


def normalize(provider_event_type: str, payload: dict[str, Any]) -> LifecycleEvent | Unrecognized:
    try:
        if provider_event_type == ASSET_CREATED:
            data = _AssetData.model_validate(payload)
            return AssetCreated(external_asset_id=data.id, upload_id=data.upload_id)

        if provider_event_type == ASSET_READY:
            data = _AssetData.model_validate(payload)
            if not data.playback_ids:
                raise UnrecognizedEvent("missing_playback_id")
            renditions = data.static_renditions
            return AssetReady(
                external_asset_id=data.id,
                playback_id=data.playback_ids[0].id,
                duration=data.duration,
                static_renditions_ready=bool(renditions and renditions.status == "ready"),
                upload_id=data.upload_id,
            )

        if provider_event_type == ASSET_ERRORED:
            errored = _ErroredData.model_validate(payload)
            messages = errored.errors.messages if errored.errors else []
            reason = "; ".join(messages) or (errored.errors.type if errored.errors and errored.errors.type else "unknown_error")
            return AssetErrored(external_asset_id=errored.id, reason=reason, upload_id=errored.upload_id)

        if provider_event_type == TRACK_READY:
            track = _TrackData.model_validate(payload)
            if track.type != "text":
                raise UnrecognizedEvent("non_text_track")
            return TranscriptReady(
                external_asset_id=track.asset_id,
                track_id=track.id,
                transcript_url=track.transcript_url,
            )

        if provider_event_type == ENRICHMENT_COMPLETED:
            result = _EnrichmentData.model_validate(payload)
            return EnrichmentCompleted(
                external_asset_id=result.external_asset_id,
                kind=result.kind,
                result_text=result.result_text,
                error=result.error,
                job_id=result.job_id,
            )

        raise UnrecognizedEvent("unknown_event_type")
    except ValidationError as exc:
        return Unrecognized(provider_event_type, f"invalid_payload:{exc.error_count()}")
    except UnrecognizedEvent as exc:
        return Unrecognized(provider_event_type, exc.reason)


__all__ = [
    "AssetCreated",
    "AssetReady",
    "AssetErrored",
    "TranscriptReady",
    "EnrichmentCompleted",
    "Unrecognized",
    "LifecycleEvent",
    "parse_envelope",
    "normalize",
    "ASSET_CREATED",
    "ASSET_READY",
    "ASSET_ERRORED",
    "TRACK_READY",
    "ENRICHMENT_COMPLETED",
]
