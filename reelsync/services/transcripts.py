from __future__ import annotations

import httpx

from reelsync.core.errors import TranscriptUnavailable, UpstreamError, UpstreamTimeout


class TranscriptFetcher:
    """Fetch transcript text by the provider-supplied URL; a 404 is recoverable."""

    def __init__(self, *, timeout_s: float = 10.0, max_chars: int = 12_000, client: httpx.AsyncClient | None = None):
        self.client = client or httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)
        self.max_chars = max_chars

    async def fetch(self, url: str) -> str:
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(provider="transcript") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"transcript_fetch_failed:{exc}") from exc
        if response.status_code == 404:
            raise TranscriptUnavailable("transcript_not_found", url=url)
        if response.is_error:
            raise UpstreamError(f"transcript_fetch_status:{response.status_code}")
        text = response.text.strip()
        if not text:
            raise TranscriptUnavailable("transcript_empty", url=url)
        return text[: self.max_chars]

    async def aclose(self) -> None:
        await self.client.aclose()


__all__ = ["TranscriptFetcher"]
