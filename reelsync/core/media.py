from __future__ import annotations

from dataclasses import dataclass

import httpx

from .config import Settings
from .errors import UpstreamError, UpstreamTimeout
from .logging import get_logger


@dataclass(frozen=True, slots=True)
class UploadSession:
    upload_id: str
    upload_url: str


class MediaProvider:
    """Thin client for the managed video provider: direct uploads and public CDN URLs."""

    def __init__(
        self,
        api_url: str,
        image_url: str,
        stream_url: str,
        *,
        token_id: str,
        token_secret: str,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.image_url = image_url.rstrip("/")
        self.stream_url = stream_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout_s, auth=(token_id, token_secret))
        self.logger = get_logger(component="media_provider")

    async def create_upload(self, *, owner_id: str, cors_origin: str = "*") -> UploadSession:
        body = {
            "cors_origin": cors_origin,
            "new_asset_settings": {
                "passthrough": owner_id,
                "playback_policy": ["public"],
                "input": [{"generated_subtitles": [{"language_code": "en", "name": "English"}]}],
                "static_renditions": [{"resolution": "highest"}, {"resolution": "audio-only"}],
            },
        }
        try:
            response = await self.client.post(f"{self.api_url}/video/v1/uploads", json=body)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(provider="media") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"media_upload_failed:{exc}") from exc
        data = response.json()["data"]
        self.logger.info("media_upload_created", upload_id=data["id"], owner_id=owner_id)
        return UploadSession(upload_id=data["id"], upload_url=data["url"])

    def thumbnail_url(self, playback_id: str) -> str:
        return f"{self.image_url}/{playback_id}/thumbnail.jpg"

    def preview_url(self, playback_id: str) -> str:
        return f"{self.image_url}/{playback_id}/animated.gif"

    def transcript_url(self, playback_id: str, track_id: str) -> str:
        return f"{self.stream_url}/{playback_id}/text/{track_id}.txt"

    async def aclose(self) -> None:
        await self.client.aclose()


def get_media_provider(settings: Settings) -> MediaProvider:
    return MediaProvider(
        settings.media_api_url,
        settings.media_image_url,
        settings.media_stream_url,
        token_id=settings.secrets.media_token_id,
        token_secret=settings.secrets.media_token_secret,
        timeout_s=settings.http_timeout_s,
    )


__all__ = ["MediaProvider", "UploadSession", "get_media_provider"]
