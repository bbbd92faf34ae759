"""
Key/value cache backends.

Two interchangeable backends expose the same small surface
(`get`, `set`, `delete`) with JSON values and optional expiry:

- InMemoryCache: process-local dict, used in development and tests
- RedisCache: shared across API workers and Celery workers
"""
import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

from app.core.logging_config import log_info


class InMemoryCache:
    """Thread-safe in-process cache with per-key expiry."""

    def __init__(self):
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ex if ex else None
        with self._lock:
            self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)


class RedisCache:
    """Redis-backed cache storing JSON-encoded values."""

    def __init__(self, redis_url: str):
        self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        raw = self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        self._redis.set(key, json.dumps(value), ex=ex)

    def delete(self, key: str) -> None:
        self._redis.delete(key)


def create_cache(redis_url: Optional[str] = None):
    """Create a Redis cache when REDIS_URL is configured, else an in-memory one."""
    if redis_url:
        log_info("Using Redis cache backend")
        return RedisCache(redis_url)
    log_info("Using in-memory cache backend")
    return InMemoryCache()
