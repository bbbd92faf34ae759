"""
Unit tests for ScopedCache base class.

Tests cache key generation, validation, and basic cache operations.
"""
import pytest
from unittest.mock import MagicMock, patch

from app.core.cache import InMemoryCache, create_cache
from app.core.scoped_cache import ScopedCache


class TestScopedCacheKeyGeneration:
    """Test cache key generation and validation."""

    def test_make_key_basic(self):
        """Test basic key generation."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        key = cache._make_key("scope-123", "validation")

        assert key == "test_namespace:validation:scope-123"

    def test_make_key_different_scopes(self):
        """Test that different scope_ids produce different keys."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        key1 = cache._make_key("scope-1", "validation")
        key2 = cache._make_key("scope-2", "validation")

        assert key1 != key2
        assert key1 == "test_namespace:validation:scope-1"
        assert key2 == "test_namespace:validation:scope-2"

    def test_make_key_different_cache_types(self):
        """Test that different cache_types produce different keys."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        key1 = cache._make_key("scope-123", "validation")
        key2 = cache._make_key("scope-123", "info")

        assert key1 != key2
        assert key1 == "test_namespace:validation:scope-123"
        assert key2 == "test_namespace:info:scope-123"

    def test_make_key_rejects_colon_in_cache_type(self):
        """Test that cache_type with colon raises ValueError."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        with pytest.raises(ValueError, match="cache_type must not contain ':'"):
            cache._make_key("scope-123", "validation:extra")

    def test_make_key_rejects_colon_in_scope_id(self):
        """Test that scope_id with colon raises ValueError."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        with pytest.raises(ValueError, match="scope_id must not contain ':'"):
            cache._make_key("scope:123", "validation")

    def test_make_key_rejects_colon_in_both(self):
        """Test that both parameters with colons raise ValueError (cache_type first)."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        with pytest.raises(ValueError, match="cache_type must not contain ':'"):
            cache._make_key("scope:123", "validation:extra")

    def test_make_key_allows_other_special_chars(self):
        """Test that other special characters are allowed."""
        cache = ScopedCache("test_namespace", cache_backend=MagicMock())

        key = cache._make_key("scope-123_abc", "validation-type")

        assert key == "test_namespace:validation-type:scope-123_abc"


class TestScopedCacheOperations:
    """Test basic cache operations."""

    def test_get(self):
        """Test get operation."""
        mock_cache = MagicMock()
        mock_cache.get.return_value = {"data": "test"}
        cache = ScopedCache("test_namespace", cache_backend=mock_cache)

        result = cache.get("scope-123", "validation")

        assert result == {"data": "test"}
        mock_cache.get.assert_called_once_with("test_namespace:validation:scope-123")

    def test_set(self):
        """Test set operation."""
        mock_cache = MagicMock()
        cache = ScopedCache("test_namespace", cache_backend=mock_cache)

        cache.set("scope-123", "validation", {"data": "test"}, ttl_seconds=3600)

        mock_cache.set.assert_called_once_with("test_namespace:validation:scope-123", {"data": "test"}, ex=3600)

    def test_delete(self):
        """Test delete operation."""
        mock_cache = MagicMock()
        cache = ScopedCache("test_namespace", cache_backend=mock_cache)

        cache.delete("scope-123", "validation")

        mock_cache.delete.assert_called_once_with("test_namespace:validation:scope-123")

    def test_backend_failure_is_reraised(self):
        """Test that a failed write is logged and surfaces to the caller."""
        mock_cache = MagicMock()
        mock_cache.set.side_effect = ConnectionError("redis down")
        mock_logger = MagicMock()
        cache = ScopedCache("test_namespace", cache_backend=mock_cache, log=mock_logger)

        with pytest.raises(ConnectionError):
            cache.set("scope-123", "validation", {"data": "test"})

        mock_logger.error.assert_called_once()

    def test_get_failure_is_reraised(self):
        """Test that a failed read is not mistaken for a cache miss."""
        mock_cache = MagicMock()
        mock_cache.get.side_effect = ConnectionError("redis down")
        cache = ScopedCache("test_namespace", cache_backend=mock_cache, log=MagicMock())

        with pytest.raises(ConnectionError):
            cache.get("scope-123", "validation")


class TestInMemoryBackend:
    """Test ScopedCache on the in-process backend."""

    def test_roundtrip_and_delete(self):
        cache = ScopedCache("location", cache_backend=InMemoryCache())

        cache.set("user-1", "pending_points", [{"latitude": 1.0}])
        assert cache.get("user-1", "pending_points") == [{"latitude": 1.0}]
        assert cache.get("user-2", "pending_points") is None

        cache.delete("user-1", "pending_points")
        assert cache.get("user-1", "pending_points") is None

    def test_expired_entries_are_dropped(self):
        backend = InMemoryCache()
        with patch("app.core.cache.time.monotonic", return_value=1000.0):
            backend.set("key", "value", ex=10)
        with patch("app.core.cache.time.monotonic", return_value=1011.0):
            assert backend.get("key") is None
        assert "key" not in backend._store

    def test_create_cache_without_redis_url_is_in_memory(self):
        assert isinstance(create_cache(None), InMemoryCache)
