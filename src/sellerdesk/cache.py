"""Key-value cache used by the keyword and listing pipelines.

The cache is an optimisation, never a dependency: :class:`Cache` converts every
backend failure into a logged miss (reads) or a logged no-op (writes), so a
request never fails because the cache is unavailable.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx

from .config import Settings
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

CacheStatus = Literal["hit", "miss", "error"]


class CacheBackend(Protocol):
    """Minimal storage contract; implementations may raise on failure."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def delete(self, *keys: str) -> None: ...

    def keys(self, pattern: str) -> list[str]: ...


@dataclass(slots=True)
class CacheLookup:
    """Outcome of a cache read; ``error`` is treated exactly like ``miss``."""

    status: CacheStatus
    value: Any = None
    error: str | None = None

    @property
    def hit(self) -> bool:
        return self.status == "hit"


class MemoryCacheBackend:
    """Process-local backend with per-key expiry."""

    def __init__(self, *, clock=time.monotonic) -> None:
        self._items: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                self._items.pop(key, None)
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._items[key] = (value, expires_at)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._items.pop(key, None)

    def keys(self, pattern: str) -> list[str]:
        now = self._clock()
        with self._lock:
            return [
                key
                for key, (_, expires_at) in self._items.items()
                if (expires_at is None or expires_at > now) and fnmatch.fnmatchcase(key, pattern)
            ]


class UpstashCacheBackend:
    """Upstash Redis accessed through its REST API (one command per request)."""

    def __init__(self, base_url: str, token: str, *, timeout: float = 2.0) -> None:
        if not base_url or not token:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN are required")
        self._url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._timeout = timeout

    def _command(self, *args: object) -> Any:
        response = httpx.post(
            self._url,
            json=[str(arg) for arg in args],
            headers=self._headers,
            timeout=self._timeout,
        )
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict) and data.get("error"):
            raise RuntimeError(f"Upstash error: {data['error']}")
        return data.get("result") if isinstance(data, dict) else None

    def get(self, key: str) -> str | None:
        result = self._command("GET", key)
        return None if result is None else str(result)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds:
            self._command("SETEX", key, int(ttl_seconds), value)
        else:
            self._command("SET", key, value)

    def delete(self, *keys: str) -> None:
        if keys:
            self._command("DEL", *keys)

    def keys(self, pattern: str) -> list[str]:
        result = self._command("KEYS", pattern)
        return [str(item) for item in result or []]


class Cache:
    """JSON-serialising facade over a backend that never raises to callers."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._backend = backend
        self._metrics = metrics

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def lookup(self, key: str) -> CacheLookup:
        try:
            raw = self._backend.get(key)
        except Exception as exc:
            logger.warning("cache.get.failed key=%s error=%s", key, exc)
            self._count("cache.errors", operation="get")
            return CacheLookup(status="error", error=str(exc))
        if raw is None:
            self._count("cache.misses")
            return CacheLookup(status="miss")
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("cache.get.decode_failed key=%s error=%s", key, exc)
            self._count("cache.errors", operation="decode")
            return CacheLookup(status="error", error=str(exc))
        self._count("cache.hits")
        return CacheLookup(status="hit", value=value)

    def get(self, key: str) -> Any:
        """Return the cached value, or ``None`` on a miss or any failure."""

        return self.lookup(key).value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        try:
            serialized = json.dumps(value)
            self._backend.set(key, serialized, ttl_seconds or None)
        except Exception as exc:
            logger.warning("cache.set.failed key=%s error=%s", key, exc)
            self._count("cache.errors", operation="set")
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._backend.delete(key)
        except Exception as exc:
            logger.warning("cache.delete.failed key=%s error=%s", key, exc)
            self._count("cache.errors", operation="delete")
            return False
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number removed."""

        try:
            keys = self._backend.keys(pattern)
            if keys:
                self._backend.delete(*keys)
        except Exception as exc:
            logger.warning("cache.invalidate.failed pattern=%s error=%s", pattern, exc)
            self._count("cache.errors", operation="invalidate")
            return 0
        return len(keys)

    def _count(self, metric: str, **tags: Any) -> None:
        if self._metrics:
            self._metrics.increment(metric, **tags)


def build_cache(settings: Settings, *, metrics: MetricsRecorder | None = None) -> Cache:
    """Create the cache configured by ``CACHE_BACKEND``."""

    if settings.is_upstash_cache_backend:
        backend: CacheBackend = UpstashCacheBackend(
            settings.upstash_redis_rest_url or "",
            settings.upstash_redis_rest_token or "",
            timeout=settings.cache_timeout,
        )
        logger.info("cache.backend_ready backend=upstash url=%s", settings.upstash_redis_rest_url)
    else:
        backend = MemoryCacheBackend()
        logger.info("cache.backend_ready backend=memory")
    return Cache(backend, metrics=metrics)


__all__ = [
    "Cache",
    "CacheBackend",
    "CacheLookup",
    "MemoryCacheBackend",
    "UpstashCacheBackend",
    "build_cache",
]
