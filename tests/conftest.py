import asyncio
import base64
import json
import threading
import time
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient

from reelsync.core.config import get_settings
from reelsync.core.db import Base, create_engine
from reelsync.core.errors import EnrichmentFailed, TranscriptUnavailable
from reelsync.core.media import MediaProvider, UploadSession
from reelsync.core.storage import Storage, StoredObject
from reelsync.db.models import EnrichmentKind
from reelsync.main import create_app
from reelsync.services.container import build_collaborators
from reelsync.services.text_generator import TextGenerator
from reelsync.services.transcripts import TranscriptFetcher
from reelsync.webhooks.signatures import sign_identity_payload, sign_media_payload, sign_workflow_payload

JWT_SECRET = "test-secret"
JWT_ISSUER = "reelsync-test"
JWT_AUDIENCE = "reelsync"
MEDIA_SECRET = "media-test-secret"
IDENTITY_SECRET = "whsec_" + base64.b64encode(b"identity-test-secret").decode("ascii")
WORKFLOW_KEY = "workflow-current-key"
WORKFLOW_NEXT_KEY = "workflow-next-key"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Reelsync environment bootstrap fixture for tests that manage their own env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield None
        get_settings.cache_clear()
        return
    db_path = tmp_path / "reelsync_test.db"

    monkeypatch.setenv("REELSYNC_ENV", "test")
    monkeypatch.setenv("REELSYNC_LOG_LEVEL", "debug")
    monkeypatch.setenv("REELSYNC_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("REELSYNC_STORAGE_BACKEND", "local")
    monkeypatch.setenv("REELSYNC_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "uploads"))
    monkeypatch.setenv("REELSYNC_JOB_BACKEND", "inline")
    monkeypatch.setenv("REELSYNC_RATE_LIMIT_BACKEND", "noop")
    monkeypatch.setenv("REELSYNC_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("REELSYNC_JWT_ISSUER", JWT_ISSUER)
    monkeypatch.setenv("REELSYNC_JWT_AUDIENCE", JWT_AUDIENCE)
    monkeypatch.setenv("REELSYNC_MEDIA_WEBHOOK_SECRET", MEDIA_SECRET)
    monkeypatch.setenv("REELSYNC_IDENTITY_WEBHOOK_SECRET", IDENTITY_SECRET)
    monkeypatch.setenv("REELSYNC_WORKFLOW_CURRENT_SIGNING_KEY", WORKFLOW_KEY)
    monkeypatch.setenv("REELSYNC_WORKFLOW_NEXT_SIGNING_KEY", WORKFLOW_NEXT_KEY)

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_setup())

    yield settings

    get_settings.cache_clear()


class FakeStorage(Storage):
    """In-memory storage; URL sources are stored as their URL bytes so tests can tell them apart."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.deleted: list[str] = []
        self.fail_upload: Optional[Exception] = None
        self.fail_delete = False
        self.upload_delay = 0.0
        self._lock = threading.Lock()

    def upload_bytes(self, payload, *, filename, content_type=None):
        if self.upload_delay:
            time.sleep(self.upload_delay)
        if self.fail_upload is not None:
            raise self.fail_upload
        key = f"{uuid4().hex}-{filename}"
        with self._lock:
            self.objects[key] = payload
            self.uploads.append(key)
        return StoredObject(url=f"https://files.test/{key}", key=key)

    def upload_from_url(self, source_url, *, filename=None):
        return self.upload_bytes(source_url.encode("utf-8"), filename=filename or "asset.bin")

    def delete(self, key):
        if self.fail_delete:
            raise OSError("storage delete unavailable")
        with self._lock:
            self.deleted.append(key)
            return self.objects.pop(key, None) is not None

    def exists(self, key):
        return key in self.objects


class FakeMediaProvider(MediaProvider):
    def __init__(self):
        self.api_url = "https://api.media.test"
        self.image_url = "https://image.media.test"
        self.stream_url = "https://stream.media.test"
        self.created: list[str] = []

    async def create_upload(self, *, owner_id, cors_origin="*"):
        self.created.append(owner_id)
        upload_id = f"upload-{len(self.created)}"
        return UploadSession(upload_id=upload_id, upload_url=f"https://upload.media.test/{upload_id}")

    async def aclose(self):
        return None


class FakeTextGenerator(TextGenerator):
    def __init__(self):
        self.calls: list[tuple[EnrichmentKind, str]] = []
        self.fail = False

    async def generate(self, kind, transcript):
        self.calls.append((kind, transcript))
        if self.fail:
            raise EnrichmentFailed("generator_error:FakeError")
        return f"Generated {kind.value}: {transcript}"


class FakeTranscriptFetcher(TranscriptFetcher):
    def __init__(self, text: str = "a walk along the harbour"):
        self.text = text
        self.missing: set[str] = set()
        self.fetched: list[str] = []

    async def fetch(self, url):
        self.fetched.append(url)
        if url in self.missing:
            raise TranscriptUnavailable("transcript_not_found", url=url)
        return self.text

    async def aclose(self):
        return None


@pytest.fixture()
def fake_storage():
    return FakeStorage()


@pytest.fixture()
def fake_media():
    return FakeMediaProvider()


@pytest.fixture()
def fake_generator():
    return FakeTextGenerator()


@pytest.fixture()
def fake_fetcher():
    return FakeTranscriptFetcher()


@pytest.fixture()
def fakes(fake_storage, fake_media, fake_generator, fake_fetcher):
    return {"storage": fake_storage, "media": fake_media, "generator": fake_generator, "fetcher": fake_fetcher}


@pytest.fixture()
def make_services(configure_environment, fakes):
    """Async context manager building the collaborator graph over the fakes; use inside ``asyncio.run``."""

    @asynccontextmanager
    async def _make(**overrides):
        services = build_collaborators(configure_environment, **{**fakes, **overrides})
        try:
            yield services
        finally:
            await services.aclose()

    return _make


@pytest.fixture()
def client(configure_environment, fakes):
    app = create_app(configure_environment, **fakes)
    with TestClient(app) as client:
        yield client


def build_token(user_id: str, *, scopes: list[str] | None = None) -> str:
    payload = {"sub": user_id, "iss": JWT_ISSUER, "aud": JWT_AUDIENCE}
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token(user_id)}"}


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def media_delivery(payload: dict) -> tuple[bytes, dict[str, str]]:
    body = encode(payload)
    return body, {"Content-Type": "application/json", **sign_media_payload(body, MEDIA_SECRET)}


def identity_delivery(payload: dict, *, msg_id: str = "msg_test") -> tuple[bytes, dict[str, str]]:
    body = encode(payload)
    return body, {"Content-Type": "application/json", **sign_identity_payload(body, IDENTITY_SECRET, msg_id=msg_id)}


def workflow_delivery(payload: dict, *, key: str = WORKFLOW_KEY) -> tuple[bytes, dict[str, str]]:
    body = encode(payload)
    return body, {"Content-Type": "application/json", **sign_workflow_payload(body, key, subject="http://test/callback")}


def asset_payload(
    event_type: str,
    asset_id: str,
    *,
    upload_id: Optional[str] = None,
    playback_id: Optional[str] = None,
    duration: Optional[float] = None,
    messages: Optional[list[str]] = None,
) -> dict:
    data: dict = {"id": asset_id}
    if upload_id:
        data["upload_id"] = upload_id
    if playback_id:
        data["playback_ids"] = [{"id": playback_id, "policy": "public"}]
    if duration is not None:
        data["duration"] = duration
    if messages is not None:
        data["errors"] = {"type": "invalid_input", "messages": messages}
    return {"type": event_type, "data": data}


def track_payload(asset_id: str, track_id: str, *, track_type: str = "text") -> dict:
    return {
        "type": "video.asset.track.ready",
        "data": {"id": track_id, "asset_id": asset_id, "type": track_type, "text_type": "subtitles"},
    }
