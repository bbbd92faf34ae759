"""
Shared cache utilities for scoped, namespaced caches.

Provides a thin wrapper to standardize key construction and TTL handling
across cache implementations.
"""
import logging
from typing import Any, Optional

from app.core.cache import create_cache
from app.core.config import settings
from app.core.logging_config import LogCategory

logger = logging.getLogger(LogCategory.APP)


class ScopedCache:
    """
    Base class for cache wrappers with namespaced keys.

    Each cache entry is keyed as: "{namespace}:{cache_type}:{scope_id}".

    Backend failures are logged and re-raised: callers store data here that
    has no other copy (queued location points), so a failed write must not
    look like a success.
    """

    def __init__(self, namespace: str, cache_backend=None, log: Optional[logging.Logger] = None):
        self._namespace = namespace
        self._cache = cache_backend or create_cache(settings.redis_url)
        self._logger = log or logger

    @property
    def namespace(self) -> str:
        return self._namespace

    def _make_key(self, scope_id: str, cache_type: str) -> str:
        """
        Generate a namespaced cache key.

        Raises:
            ValueError: If scope_id or cache_type contains ':' character
        """
        if ':' in cache_type:
            raise ValueError(f"cache_type must not contain ':' character, got: {cache_type}")
        if ':' in scope_id:
            raise ValueError(f"scope_id must not contain ':' character, got: {scope_id}")
        return f"{self._namespace}:{cache_type}:{scope_id}"

    def get(self, scope_id: str, cache_type: str) -> Optional[Any]:
        """Fetch a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            return self._cache.get(key)
        except Exception as e:
            self._logger.error(
                f"Cache get operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            raise

    def set(self, scope_id: str, cache_type: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            self._cache.set(key, value, ex=ttl_seconds)
        except Exception as e:
            self._logger.error(
                f"Cache set operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            raise

    def delete(self, scope_id: str, cache_type: str) -> None:
        """Delete a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            self._cache.delete(key)
        except Exception as e:
            self._logger.error(
                f"Cache delete operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            raise

