from __future__ import annotations


class ReelsyncError(Exception):
    """Base class for errors raised by the reconciliation core."""

    code = "reelsync_error"

    def __init__(self, reason: str = "", **details: object) -> None:
        super().__init__(reason or self.code)
        self.reason = reason or self.code
        self.details = details


class SignatureInvalid(ReelsyncError):
    code = "invalid_signature"


class UnrecognizedEvent(ReelsyncError):
    code = "unrecognized_event"


class StaleOrRegressiveEvent(ReelsyncError):
    code = "stale_event"


class OwnershipViolation(ReelsyncError):
    code = "ownership_violation"


class UpstreamTimeout(ReelsyncError):
    code = "upstream_timeout"

    def __init__(self, reason: str = "timeout", **details: object) -> None:
        super().__init__(reason, **details)


class UpstreamError(ReelsyncError):
    code = "upstream_error"


class PartialReplacementLeak(ReelsyncError):
    code = "partial_replacement_leak"


class TerminalAssetError(ReelsyncError):
    code = "terminal_asset_error"


class ConcurrentUpdateError(ReelsyncError):
    code = "concurrent_update"


class RecordNotFound(ReelsyncError):
    code = "not_found"


class InvalidRequest(ReelsyncError):
    code = "invalid_request"


class TranscriptUnavailable(ReelsyncError):
    code = "transcript_unavailable"


class EnrichmentFailed(ReelsyncError):
    code = "enrichment_failed"


class RateLimited(ReelsyncError):
    code = "rate_limited"

    def __init__(self, retry_after: int, **details: object) -> None:
        super().__init__(self.code, **details)
        self.retry_after = retry_after


__all__ = [
    "ReelsyncError",
    "SignatureInvalid",
    "UnrecognizedEvent",
    "StaleOrRegressiveEvent",
    "OwnershipViolation",
    "UpstreamTimeout",
    "UpstreamError",
    "PartialReplacementLeak",
    "TerminalAssetError",
    "ConcurrentUpdateError",
    "RecordNotFound",
    "InvalidRequest",
    "TranscriptUnavailable",
    "EnrichmentFailed",
    "RateLimited",
]
