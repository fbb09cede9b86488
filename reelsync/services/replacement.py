"""Replace-then-cleanup for binary assets attached to a video or a user.

Order of operations is upload, persist pointer, delete previous object. The
owning entity always points at a working object: if the upload fails nothing
changes, and if deleting the old object fails afterwards the new pointer stays
and the old object is left for an offline sweep.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import httpx

from reelsync.core.errors import (
    OwnershipViolation,
    PartialReplacementLeak,
    StaleOrRegressiveEvent,
    UpstreamError,
    UpstreamTimeout,
)
from reelsync.core.logging import get_logger
from reelsync.core.storage import Storage, StoredObject
from reelsync.services.users import UserStore
from reelsync.services.video_store import VideoRecordStore, VideoSnapshot

T = TypeVar("T")


@dataclass(frozen=True)
class Caller:
    user_id: Optional[str]
    system: bool = False


SYSTEM = Caller(user_id=None, system=True)


class AssetSlot(ABC):
    """A ``{url, key}`` pointer on an owning record."""

    name: str
    owner_id: str

    @abstractmethod
    async def persist(self, stored: StoredObject) -> Optional[str]:
        """Point the slot at ``stored`` and return the key it replaced."""


class VideoMediaSlot(AssetSlot):
    def __init__(
        self,
        store: VideoRecordStore,
        video: VideoSnapshot,
        field: str,
        *,
        expected_playback_id: Optional[str] = None,
    ):
        if field not in {"thumbnail", "preview"}:
            raise ValueError(f"unknown_video_slot:{field}")
        self.store = store
        self.video_id = video.id
        self.owner_id = video.owner_id
        self.field = field
        self.name = f"video.{field}"
        self.expected_playback_id = expected_playback_id

    async def persist(self, stored: StoredObject) -> Optional[str]:
        replaced: dict[str, Optional[str]] = {}
        superseded = False

        def decide(current: VideoSnapshot) -> Optional[dict[str, Any]]:
            nonlocal superseded
            if self.expected_playback_id and current.playback_id != self.expected_playback_id:
                superseded = True
                return None
            replaced["key"] = getattr(current, f"{self.field}_key")
            return {f"{self.field}_url": stored.url, f"{self.field}_key": stored.key}

        snapshot, written = await self.store.update_by_id(self.video_id, decide)
        if snapshot is None:
            raise StaleOrRegressiveEvent("video_missing", video_id=self.video_id)
        if superseded or not written:
            raise StaleOrRegressiveEvent("playback_superseded", video_id=self.video_id)
        return replaced.get("key")


class UserBannerSlot(AssetSlot):
    name = "user.banner"

    def __init__(self, users: UserStore, user_id: str, *, max_attempts: int = 5):
        self.users = users
        self.owner_id = user_id
        self.max_attempts = max_attempts

    async def persist(self, stored: StoredObject) -> Optional[str]:
        for _ in range(self.max_attempts):
            user = await self.users.get(self.owner_id)
            if user is None:
                raise StaleOrRegressiveEvent("user_missing", user_id=self.owner_id)
            previous = user.banner_key
            if await self.users.swap_banner(self.owner_id, expected_key=previous, url=stored.url, key=stored.key):
                return previous
        raise StaleOrRegressiveEvent("banner_contended", user_id=self.owner_id)


class AssetReplacementCoordinator:
    def __init__(self, storage: Storage, *, timeout_s: float = 15.0):
        self.storage = storage
        self.timeout_s = timeout_s
        self.logger = get_logger(component="asset_replacement")

    async def replace(
        self,
        slot: AssetSlot,
        source: bytes | str,
        caller: Caller,
        *,
        filename: str,
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """Upload ``source`` (bytes or a URL to copy from) into ``slot`` and clean up the old object."""
        self._authorize(slot, caller)

        try:
            if isinstance(source, bytes):
                stored = await self._bounded(self.storage.upload_bytes, source, filename=filename, content_type=content_type)
            else:
                stored = await self._bounded(self.storage.upload_from_url, source, filename=filename)
        except UpstreamTimeout:
            # the worker thread may still finish the upload; the object would then be unreferenced
            self.logger.warning("replacement_upload_abandoned", slot=slot.name, owner_id=slot.owner_id, filename=filename)
            raise

        try:
            previous = await slot.persist(stored)
        except Exception:
            await self._discard(stored.key, slot)
            raise

        self.logger.info("asset_replaced", slot=slot.name, owner_id=slot.owner_id, key=stored.key, previous_key=previous)
        if previous and previous != stored.key:
            try:
                await self._cleanup(previous)
            except PartialReplacementLeak as leak:
                self.logger.warning(leak.code, slot=slot.name, owner_id=slot.owner_id, **leak.details)
        return stored

    def _authorize(self, slot: AssetSlot, caller: Caller) -> None:
        if caller.system:
            return
        if not caller.user_id or caller.user_id != slot.owner_id:
            self.logger.warning("asset_ownership_violation", slot=slot.name, caller_id=caller.user_id)
            raise OwnershipViolation("not_owner", slot=slot.name)

    async def _bounded(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout(operation=getattr(func, "__name__", "storage")) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise UpstreamError(f"storage_failed:{exc}") from exc

    async def _cleanup(self, key: str) -> None:
        try:
            deleted = await self._bounded(self.storage.delete, key)
        except Exception as exc:
            raise PartialReplacementLeak("previous_object_not_deleted", key=key, error=str(exc)) from exc
        if not deleted:
            self.logger.debug("previous_asset_already_absent", key=key)

    async def _discard(self, key: str, slot: AssetSlot) -> None:
        try:
            await self._bounded(self.storage.delete, key)
        except Exception as exc:
            self.logger.warning("replacement_rollback_leak", slot=slot.name, key=key, error=str(exc))


__all__ = [
    "Caller",
    "SYSTEM",
    "AssetSlot",
    "VideoMediaSlot",
    "UserBannerSlot",
    "AssetReplacementCoordinator",
]
