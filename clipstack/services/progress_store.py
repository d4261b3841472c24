"""Shared, TTL'd key/value store for render progress and job leases.

Progress lives here rather than in any client connection, so a client that
reconnects can be sent the last known state. Keys are namespaced by job id
(``job:<id>``, ``lease:<id>``), so concurrent jobs never contend.

Two backends:
- MemoryProgressStore: per-process only (development, tests, single instance)
- RedisProgressStore: shared across API and worker instances
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from clipstack.config import Settings
from clipstack.exceptions import TransientInfraError

logger = logging.getLogger(__name__)


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def lease_key(job_id: str) -> str:
    return f"lease:{job_id}"


class ProgressStore(ABC):
    """Keyed JSON values with per-key expiry."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None: ...

    @abstractmethod
    async def acquire(self, key: str, value: dict[str, Any], ttl_seconds: int) -> bool:
        """Set ``key`` only if absent. Returns True when this call set it."""

    @abstractmethod
    async def extend(self, key: str, ttl_seconds: int) -> bool:
        """Reset the expiry of a live key. Returns False when it has expired."""

    @abstractmethod
    async def release(self, key: str) -> None: ...

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    value: dict[str, Any]
    expires_at: float


class MemoryProgressStore(ProgressStore):
    """Thread-safe in-memory store with TTL-based expiration."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._store[key]
                return None
            return dict(entry.value)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._cleanup_expired()
            self._store[key] = _Entry(value=dict(value), expires_at=self._clock() + ttl_seconds)

    async def acquire(self, key: str, value: dict[str, Any], ttl_seconds: int) -> bool:
        with self._lock:
            self._cleanup_expired()
            if key in self._store:
                return False
            self._store[key] = _Entry(value=dict(value), expires_at=self._clock() + ttl_seconds)
            return True

    async def extend(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            self._cleanup_expired()
            entry = self._store.get(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl_seconds
            return True

    async def release(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def _cleanup_expired(self) -> None:
        """Remove expired entries (called under lock)."""
        now = self._clock()
        expired = [k for k, v in self._store.items() if now >= v.expires_at]
        for k in expired:
            del self._store[k]


class RedisProgressStore(ProgressStore):
    """Redis-backed store; every Redis failure surfaces as TransientInfraError."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisProgressStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            raise TransientInfraError(f"Progress store read failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[PROGRESS] Ignoring malformed value at {key}")
            return None

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl_seconds)
        except RedisError as e:
            raise TransientInfraError(f"Progress store write failed: {e}") from e

    async def acquire(self, key: str, value: dict[str, Any], ttl_seconds: int) -> bool:
        try:
            return bool(await self._client.set(key, json.dumps(value), ex=ttl_seconds, nx=True))
        except RedisError as e:
            raise TransientInfraError(f"Progress store lease failed: {e}") from e

    async def extend(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(await self._client.expire(key, ttl_seconds))
        except RedisError as e:
            raise TransientInfraError(f"Progress store expire failed: {e}") from e

    async def release(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise TransientInfraError(f"Progress store delete failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


def create_progress_store(settings: Settings) -> ProgressStore:
    """Redis when REDIS_URL is configured, otherwise an in-process store."""
    if settings.redis_url:
        logger.info("[PROGRESS] Using Redis progress store")
        return RedisProgressStore.from_url(settings.redis_url)
    logger.info("[PROGRESS] REDIS_URL not set, using in-memory progress store")
    return MemoryProgressStore()
