"""
Mapping of provider HTTP failures onto the integration error taxonomy.

    401/403            -> InvalidTokenError
    429                -> RateLimitError (Retry-After honoured)
    5xx                -> ProviderAPIError
    transport/timeout  -> ProviderAPIError
    anything else      -> DataSyncError
    IntegrationException subclasses pass through untouched
"""
from typing import Optional

import httpx
from dateutil import parser as date_parser

from app.core.exceptions import (
    DataSyncError,
    IntegrationException,
    InvalidTokenError,
    ProviderAPIError,
    RateLimitError,
    RefreshTokenError,
)
from app.core.time_utils import utc_now


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        retry_at = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if retry_at.tzinfo is None:
        return None
    return max(0, int((retry_at - utc_now()).total_seconds()))


def _response_summary(response: httpx.Response) -> str:
    try:
        body = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        body = ""
    return f"HTTP {response.status_code}: {body[:200]}" if body else f"HTTP {response.status_code}"


def map_http_status(provider: str, response: httpx.Response) -> IntegrationException:
    status = response.status_code
    if status in (401, 403):
        return InvalidTokenError(provider)
    if status == 429:
        return RateLimitError(provider, retry_after=parse_retry_after(response.headers.get("Retry-After")))
    if status >= 500:
        return ProviderAPIError(provider, f"{provider} API error", details=_response_summary(response))
    return DataSyncError(provider, f"{provider} request failed: {_response_summary(response)}")


def map_provider_error(provider: str, error: BaseException) -> IntegrationException:
    """Translate any failure raised while talking to a provider."""
    if isinstance(error, IntegrationException):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        return map_http_status(provider, error.response)
    if isinstance(error, httpx.TransportError):
        return ProviderAPIError(provider, f"{provider} API unreachable", details=type(error).__name__)
    return DataSyncError(provider, str(error) or type(error).__name__)


def map_refresh_error(provider: str, error: BaseException) -> IntegrationException:
    """Refresh has its own mapping: a rejected refresh grant means reconnect."""
    if isinstance(error, IntegrationException):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (400, 401):
            return RefreshTokenError(provider)
        if status == 429:
            return RateLimitError(
                provider, retry_after=parse_retry_after(error.response.headers.get("Retry-After"))
            )
        return ProviderAPIError(provider, f"{provider} token refresh failed", details=_response_summary(error.response))
    if isinstance(error, httpx.TransportError):
        return ProviderAPIError(provider, f"{provider} token endpoint unreachable", details=type(error).__name__)
    return RefreshTokenError(provider, f"Failed to refresh access token for {provider}: {error}")
