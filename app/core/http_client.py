"""
Shared HTTP client for provider adapters.

Provides a singleton httpx.AsyncClient for connection pooling. Every provider
call goes through a client with a bounded timeout so a stuck upstream cannot
hold a sync open indefinitely.
"""
import asyncio
from typing import Optional
from contextlib import asynccontextmanager

import httpx
from app.core.config import settings
from app.core.logging_config import log_info

_client: Optional[httpx.AsyncClient] = None
_client_lock: Optional[asyncio.Lock] = None


def _get_lock() -> asyncio.Lock:
    """Get or create the client lock."""
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


def build_timeout() -> httpx.Timeout:
    """Per-request timeout derived from HTTP_TIMEOUT_SECONDS."""
    total = settings.http_timeout_seconds
    return httpx.Timeout(total, connect=min(5.0, total))


async def get_http_client() -> httpx.AsyncClient:
    """
    Get the shared AsyncClient instance.

    Creates a new instance if one doesn't exist or is closed. Cleanup is
    handled by the app's lifespan handler.
    """
    global _client
    if _client is None or _client.is_closed:
        async with _get_lock():
            if _client is None or _client.is_closed:
                _client = httpx.AsyncClient(
                    timeout=build_timeout(),
                    limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                    follow_redirects=True,
                )
                log_info("HTTP client created", timeout=settings.http_timeout_seconds)
    return _client


async def close_http_client():
    """Close the shared client if it exists."""
    global _client
    async with _get_lock():
        if _client and not _client.is_closed:
            await _client.aclose()
            _client = None
            log_info("HTTP client closed")


@asynccontextmanager
async def http_client_context():
    """
    Context manager that yields the shared client.
    Does NOT close the client on exit (it's shared).
    """
    client = await get_http_client()
    yield client
