from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

import redis.asyncio as redis

from .config import Settings
from .logging import get_logger


@dataclass(frozen=True)
class Allowed:
    remaining: Optional[int] = None


@dataclass(frozen=True)
class Denied:
    retry_after: int


Decision = Union[Allowed, Denied]


class RateLimitPolicy(ABC):
    """Per-caller request budget checked at the request-handler boundary."""

    @abstractmethod
    async def allow(self, caller_id: str) -> Decision: ...

    async def aclose(self) -> None:
        return None


class NoopRateLimit(RateLimitPolicy):
    async def allow(self, caller_id: str) -> Decision:
        return Allowed()


class RedisRateLimit(RateLimitPolicy):
    """Fixed-window counter per caller: ``INCR`` then ``EXPIRE`` on the first hit."""

    def __init__(self, client: redis.Redis, *, limit: int, window_seconds: int, prefix: str = "reelsync:rate"):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self.logger = get_logger(component="rate_limit")

    async def allow(self, caller_id: str) -> Decision:
        key = f"{self.prefix}:{caller_id}"
        current = await self.client.incr(key)
        if current == 1:
            await self.client.expire(key, self.window_seconds)
        if current <= self.limit:
            return Allowed(remaining=self.limit - current)
        ttl = await self.client.ttl(key)
        retry_after = ttl if ttl and ttl > 0 else self.window_seconds
        self.logger.info("rate_limited", caller_id=caller_id, retry_after=retry_after)
        return Denied(retry_after=retry_after)

    async def aclose(self) -> None:
        await self.client.aclose()


def get_rate_limiter(settings: Settings) -> RateLimitPolicy:
    if settings.rate_limit_backend == "redis":
        client = redis.from_url(settings.redis_url, decode_responses=True)
        return RedisRateLimit(
            client,
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return NoopRateLimit()


__all__ = ["Allowed", "Denied", "RateLimitPolicy", "NoopRateLimit", "RedisRateLimit", "get_rate_limiter"]
