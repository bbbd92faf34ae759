"""
Unit tests for per-(user, provider) lock serialization.
"""
import asyncio

import pytest

from app.integrations.locks import KeyedLockRegistry
from app.models.integration import IntegrationProvider


class TestKeyedLockRegistry:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        registry = KeyedLockRegistry()
        order = []

        async def worker(name):
            async with registry.acquire("user-1", "strava"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        registry = KeyedLockRegistry()
        order = []

        async def worker(name, user_id):
            async with registry.acquire(user_id, "strava"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a", "user-1"), worker("b", "user-2"))

        assert order.index("b-start") < order.index("a-end")

    @pytest.mark.asyncio
    async def test_enum_and_value_share_a_lock(self):
        registry = KeyedLockRegistry()

        async with registry.acquire("user-1", IntegrationProvider.STRAVA):
            assert registry.is_locked("user-1", "strava")
            assert not registry.is_locked("user-1", "spotify")

    @pytest.mark.asyncio
    async def test_unused_locks_are_dropped(self):
        registry = KeyedLockRegistry()

        async with registry.acquire("user-1", "strava"):
            assert len(registry) == 1

        assert len(registry) == 0
        assert not registry.is_locked("user-1", "strava")

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        registry = KeyedLockRegistry()

        with pytest.raises(RuntimeError):
            async with registry.acquire("user-1", "strava"):
                raise RuntimeError("boom")

        assert len(registry) == 0
        async with registry.acquire("user-1", "strava"):
            assert registry.is_locked("user-1", "strava")
