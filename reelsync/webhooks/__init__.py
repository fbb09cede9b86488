"""Inbound webhook verification and event normalisation."""

from .events import (
    AssetCreated,
    AssetErrored,
    AssetReady,
    EnrichmentCompleted,
    LifecycleEvent,
    TranscriptReady,
    Unrecognized,
    normalize,
    parse_envelope,
)
from .signatures import Rejected, Verified, verify_identity_signature, verify_media_signature, verify_workflow_signature

__all__ = [
    "AssetCreated",
    "AssetErrored",
    "AssetReady",
    "EnrichmentCompleted",
    "LifecycleEvent",
    "TranscriptReady",
    "Unrecognized",
    "normalize",
    "parse_envelope",
    "Rejected",
    "Verified",
    "verify_identity_signature",
    "verify_media_signature",
    "verify_workflow_signature",
]
