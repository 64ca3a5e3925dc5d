"""Namespaced JSON cache kept in process, optionally mirrored to Redis."""

from __future__ import annotations

import enum
import hashlib
import json
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, TypeVar

import redis
from loguru import logger

T = TypeVar("T")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value)!r} is not JSON serializable")


def build_cache_key(**components: Any) -> str:
    """Stable digest of keyword components, independent of their order."""

    payload = json.dumps(components, sort_keys=True, default=_json_default)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@dataclass
class _Entry:
    payload: str
    expires_at: float | None


@dataclass
class CacheMetrics:
    """Counters describing cache effectiveness."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float | None:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


class CacheBackend:
    """Keyed JSON cache with per-entry TTLs.

    Entries always live in process memory. When ``redis_url`` is given every
    operation is mirrored to Redis as well; the first Redis error disables
    the mirror and the cache carries on locally.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._now = time_source
        self._redis: redis.Redis | None = None
        self.metrics = CacheMetrics()
        if redis_url:
            self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

    @staticmethod
    def _full_key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    @property
    def mirrored(self) -> bool:
        return self._redis is not None

    def _mirror(self, operation: str, call: Callable[[redis.Redis], T]) -> T | None:
        client = self._redis
        if client is None:
            return None
        try:
            return call(client)
        except redis.RedisError as exc:
            logger.warning(
                "Redis mirror disabled",
                operation=operation,
                error=type(exc).__name__,
            )
            self._redis = None
            return None

    def _read_local(self, full_key: str) -> str | None:
        entry = self._entries.get(full_key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._now():
            del self._entries[full_key]
            self.metrics.expirations += 1
            return None
        return entry.payload

    def get(self, namespace: str, key: str) -> Any | None:
        full_key = self._full_key(namespace, key)
        payload = self._mirror("get", lambda client: client.get(full_key))
        with self._lock:
            if payload is None:
                payload = self._read_local(full_key)
            if payload is None:
                self.metrics.misses += 1
                return None
            self.metrics.hits += 1
        return json.loads(payload)

    def set(self, namespace: str, key: str, value: Any, ttl_seconds: int) -> None:
        full_key = self._full_key(namespace, key)
        payload = json.dumps(value, default=_json_default)
        self._mirror("set", lambda client: client.set(full_key, payload, ex=ttl_seconds or None))
        expires_at = self._now() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[full_key] = _Entry(payload=payload, expires_at=expires_at)
            self.metrics.sets += 1

    def invalidate(self, namespace: str, *, key: str | None = None, prefix: str | None = None) -> None:
        """Drop one ``key`` or every key starting with ``prefix``."""

        if key is not None:
            full_key = self._full_key(namespace, key)
            self._mirror("invalidate", lambda client: client.delete(full_key))
            with self._lock:
                self._entries.pop(full_key, None)
                self.metrics.invalidations += 1
            return
        if prefix is None:
            return

        stem = self._full_key(namespace, prefix)

        def drop_remote(client: redis.Redis) -> int:
            doomed = list(client.scan_iter(match=f"{stem}*"))
            return client.delete(*doomed) if doomed else 0

        self._mirror("invalidate", drop_remote)
        with self._lock:
            for full_key in [name for name in self._entries if name.startswith(stem)]:
                del self._entries[full_key]
            self.metrics.invalidations += 1

    def clear(self, *, include_redis: bool = False) -> None:
        """Forget every local entry and reset the counters."""

        with self._lock:
            self._entries.clear()
            self.metrics = CacheMetrics()
        if include_redis:
            self._mirror("clear", lambda client: client.flushdb())


__all__ = ["CacheBackend", "CacheMetrics", "build_cache_key"]
