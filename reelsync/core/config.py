from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_SECRET = "change-me"


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="REELSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default=_DEFAULT_SECRET, description="Signing secret for bearer JWT validation.")
    media_webhook_secret: str = Field(default=_DEFAULT_SECRET, description="Shared secret for media provider webhooks.")
    identity_webhook_secret: str = Field(
        default="whsec_Y2hhbmdlLW1l",
        description="Identity provider signing secret (whsec_ prefixed base64 key).",
    )
    workflow_current_signing_key: str = Field(default=_DEFAULT_SECRET, description="Current workflow callback key.")
    workflow_next_signing_key: str = Field(default="", description="Next workflow callback key during rotation.")
    workflow_token: str = Field(default="", description="Bearer token for publishing to the workflow queue.")
    media_token_id: str = Field(default="", description="Media provider API token id.")
    media_token_secret: str = Field(default="", description="Media provider API token secret.")
    upload_api_key: str = Field(default="", description="Managed upload service API key.")
    openai_api_key: str = Field(default="", description="Key for the text generation API.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the Reelsync API."""

    model_config = SettingsConfigDict(
        env_prefix="REELSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Reelsync API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")
    public_base_url: str = Field(default="http://localhost:8000", description="Externally reachable base URL.")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelsync.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for background jobs and rate limiting.",
    )

    storage_backend: Literal["local", "uploadthing"] = Field(default="local", description="Active storage implementation.")
    local_storage_base_path: Path = Field(default_factory=lambda: Path("uploads"), description="Root for local storage.")
    local_storage_base_url: str = Field(
        default="http://localhost:8000/files",
        description="Public URL prefix for objects written by local storage.",
    )
    upload_api_url: str = Field(default="https://api.uploadthing.com", description="Managed upload service endpoint.")
    max_image_upload_bytes: int = Field(default=4 * 1024 * 1024, description="Limit for thumbnail/banner uploads.")
    allowed_image_content_types: tuple[str, ...] = Field(default=("image/jpeg", "image/png", "image/webp", "image/gif"))

    media_api_url: str = Field(default="https://api.mux.com", description="Media provider API endpoint.")
    media_image_url: str = Field(default="https://image.mux.com", description="Media provider image CDN.")
    media_stream_url: str = Field(default="https://stream.mux.com", description="Media provider stream CDN.")
    media_cors_origin: str = Field(default="*", description="CORS origin passed to direct uploads.")

    webhook_tolerance_seconds: int = Field(default=300, description="Accepted clock skew for signed webhooks.")
    storage_timeout_s: float = Field(default=15.0, description="Bound for storage upload/delete calls.")
    http_timeout_s: float = Field(default=10.0, description="Bound for outbound HTTP calls.")
    side_effect_lease_seconds: int = Field(default=300, description="Age after which a pending side effect may be re-claimed.")
    store_cas_max_attempts: int = Field(default=5, description="Retries for compare-and-set conflicts.")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    idempotency_ttl_seconds: int = Field(default=24 * 3600, description="TTL for stored idempotency keys.")

    job_queue_backend: Literal["immediate", "inline", "rq", "workflow"] = Field(
        default="immediate",
        description="Backend for enrichment jobs (inline executes in-process; rq schedules via Redis).",
    )
    workflow_api_url: str = Field(default="https://qstash.upstash.io", description="Managed workflow queue endpoint.")
    workflow_retries: int = Field(default=3, description="Delivery retries requested from the workflow queue.")

    openai_model: str = Field(default="gpt-4o-mini", description="Model used for title/description generation.")
    transcript_max_chars: int = Field(default=12_000, description="Transcript characters sent to the generator.")

    rate_limit_backend: Literal["noop", "redis"] = Field(default="noop", description="Rate limit policy at request boundary.")
    rate_limit_requests: int = Field(default=60, description="Requests per window for the redis policy.")
    rate_limit_window_seconds: int = Field(default=60, description="Window length for the redis policy.")

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    @property
    def workflow_callback_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/v1/webhooks/workflow"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "REELSYNC_ENV": "REELSYNC_ENVIRONMENT",
        "REELSYNC_DB_URL": "REELSYNC_DATABASE_URL",
        "REELSYNC_JOB_BACKEND": "REELSYNC_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production":
        defaults = [
            name
            for name in ("jwt_secret", "media_webhook_secret", "workflow_current_signing_key")
            if getattr(secrets, name) == _DEFAULT_SECRET
        ]
        if defaults:
            raise ValueError(f"Production environment must not use default secrets: {', '.join(defaults)}")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
