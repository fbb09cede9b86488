from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

import httpx

from .config import Settings
from .logging import get_logger


@dataclass(frozen=True, slots=True)
class StoredObject:
    url: str
    key: str


class Storage(ABC):
    """Upload/delete contract for application-owned binary objects.

    ``delete`` of an absent key is a success; it returns ``False`` so callers can log it.
    """

    @abstractmethod
    def upload_bytes(self, payload: bytes, *, filename: str, content_type: str | None = None) -> StoredObject: ...

    @abstractmethod
    def upload_from_url(self, source_url: str, *, filename: str | None = None) -> StoredObject: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...


def _fetch(source_url: str, timeout_s: float) -> tuple[bytes, str | None]:
    response = httpx.get(source_url, timeout=timeout_s, follow_redirects=True)
    response.raise_for_status()
    return response.content, response.headers.get("content-type")


def _filename_for(source_url: str, fallback: str = "asset.bin") -> str:
    name = Path(urlparse(source_url).path).name
    return name or fallback


class LocalStorage(Storage):
    """Filesystem-backed storage suitable for development."""

    def __init__(self, base_path: Path, base_url: str, *, timeout_s: float = 10.0):
        self.base_path = base_path
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if self.base_path.resolve() not in target.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return target

    def upload_bytes(self, payload: bytes, *, filename: str, content_type: str | None = None) -> StoredObject:
        key = f"{uuid4().hex}-{Path(filename).name}"
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return StoredObject(url=f"{self.base_url}/{key}", key=key)

    def upload_from_url(self, source_url: str, *, filename: str | None = None) -> StoredObject:
        payload, content_type = _fetch(source_url, self.timeout_s)
        return self.upload_bytes(payload, filename=filename or _filename_for(source_url), content_type=content_type)

    def delete(self, key: str) -> bool:
        path = self._resolve(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def exists(self, key: str) -> bool:
        return self._resolve(key).exists()


class UploadThingStorage(Storage):
    """Managed upload service client (presigned POST upload, key-based delete)."""

    def __init__(self, api_url: str, api_key: str, *, timeout_s: float = 10.0, client: httpx.Client | None = None):
        if not api_key:
            raise ValueError("upload_api_key is required for the uploadthing storage backend")
        self.api_url = api_url.rstrip("/")
        self.timeout_s = timeout_s
        self.client = client or httpx.Client(
            timeout=timeout_s,
            headers={"x-uploadthing-api-key": api_key, "x-uploadthing-version": "6.4.0"},
        )
        self.logger = get_logger(component="uploadthing_storage")

    def upload_bytes(self, payload: bytes, *, filename: str, content_type: str | None = None) -> StoredObject:
        file_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        response = self.client.post(
            f"{self.api_url}/v6/uploadFiles",
            json={"files": [{"name": filename, "size": len(payload), "type": file_type}], "contentDisposition": "inline"},
        )
        response.raise_for_status()
        slot = response.json()["data"][0]
        presigned = httpx.post(
            slot["url"],
            data=slot.get("fields") or {},
            files={"file": (filename, payload, file_type)},
            timeout=self.timeout_s,
        )
        presigned.raise_for_status()
        self.logger.info("storage_upload_completed", key=slot["key"], size=len(payload))
        return StoredObject(url=slot["fileUrl"], key=slot["key"])

    def upload_from_url(self, source_url: str, *, filename: str | None = None) -> StoredObject:
        payload, content_type = _fetch(source_url, self.timeout_s)
        return self.upload_bytes(payload, filename=filename or _filename_for(source_url), content_type=content_type)

    def delete(self, key: str) -> bool:
        response = self.client.post(f"{self.api_url}/v6/deleteFiles", json={"fileKeys": [key]})
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return bool(response.json().get("deletedCount", 0))

    def exists(self, key: str) -> bool:
        response = self.client.post(f"{self.api_url}/v6/listFiles", json={"keys": [key]})
        response.raise_for_status()
        return any(item.get("key") == key for item in response.json().get("files", []))


def get_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "local":
        return LocalStorage(
            base_path=Path(settings.local_storage_base_path),
            base_url=settings.local_storage_base_url,
            timeout_s=settings.http_timeout_s,
        )
    if settings.storage_backend == "uploadthing":
        return UploadThingStorage(
            settings.upload_api_url,
            settings.secrets.upload_api_key,
            timeout_s=settings.storage_timeout_s,
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "Storage",
    "StoredObject",
    "LocalStorage",
    "UploadThingStorage",
    "get_storage",
]
