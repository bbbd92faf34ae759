"""
Custom application exceptions.

Integration errors carry everything needed to build the structured error
payload returned to HTTP callers:

    {statusCode, message, error: "Integration Error", provider, errorCode, timestamp}
"""
from typing import Any, Dict, Optional

from app.core.time_utils import utc_now


class AppException(Exception):
    """Base exception for the integration hub."""
    pass


class IntegrationException(AppException):
    """Base class for every provider-facing failure."""

    status_code: int = 500
    error_code: str = "INTEGRATION_ERROR"
    default_message: str = "Integration error"

    def __init__(self, provider: Optional[str] = None, message: Optional[str] = None):
        self.provider = str(getattr(provider, "value", provider)) if provider is not None else None
        self.message = message or self._default_message()
        super().__init__(self.message)

    def _default_message(self) -> str:
        return self.default_message

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the error payload shape surfaced to API clients."""
        return {
            "statusCode": self.status_code,
            "message": self.message,
            "error": "Integration Error",
            "provider": self.provider,
            "errorCode": self.error_code,
            "timestamp": utc_now().isoformat(),
        }


class ProviderNotFoundError(IntegrationException):
    """Raised when no adapter is registered for a provider name."""
    status_code = 404
    error_code = "PROVIDER_NOT_FOUND"

    def _default_message(self) -> str:
        return f"Integration provider '{self.provider}' is not supported"


class ProviderNotConnectedError(IntegrationException):
    """Raised when an operation needs a connected provider."""
    status_code = 412
    error_code = "PROVIDER_NOT_CONNECTED"

    def _default_message(self) -> str:
        return f"Not connected to {self.provider}. Please connect first."


class OAuthAuthenticationError(IntegrationException):
    """Raised when the identity/code exchange with the provider fails."""
    status_code = 401
    error_code = "OAUTH_AUTH_FAILED"
    default_message = "OAuth authentication failed"


class InvalidTokenError(IntegrationException):
    """Raised when the stored credential is missing, expired, or rejected."""
    status_code = 401
    error_code = "INVALID_TOKEN"

    def _default_message(self) -> str:
        return f"Invalid or expired credentials for {self.provider}. Please reconnect."


class RefreshTokenError(IntegrationException):
    """Raised when the refresh exchange itself fails."""
    status_code = 401
    error_code = "REFRESH_TOKEN_FAILED"

    def _default_message(self) -> str:
        return f"Failed to refresh access token for {self.provider}. Please reconnect."


class ProviderAPIError(IntegrationException):
    """Raised for transient upstream failures (5xx, timeouts)."""
    status_code = 502
    error_code = "PROVIDER_API_ERROR"

    def __init__(self, provider: Optional[str] = None, message: Optional[str] = None, details: Optional[str] = None):
        self.details = details
        if message and details:
            message = f"{message} ({details})"
        super().__init__(provider, message)

    def _default_message(self) -> str:
        return f"{self.provider} API error"


class DataSyncError(IntegrationException):
    """Raised when a sync fails for a reason outside the other categories."""
    status_code = 500
    error_code = "DATA_SYNC_FAILED"

    def _default_message(self) -> str:
        return f"Failed to sync data from {self.provider}"


class ConfigurationError(IntegrationException):
    """Raised when required provider configuration is missing."""
    status_code = 500
    error_code = "MISSING_CONFIGURATION"

    def _default_message(self) -> str:
        return f"{self.provider} is not configured"


class InvalidCallbackError(IntegrationException):
    """Raised when a callback payload is malformed or its state token is invalid."""
    status_code = 400
    error_code = "INVALID_CALLBACK"
    default_message = "Invalid callback payload"


class RateLimitError(IntegrationException):
    """Raised when the provider throttles us."""
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, provider: Optional[str] = None, retry_after: Optional[int] = None, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(provider, message)

    def _default_message(self) -> str:
        if self.retry_after is not None:
            return f"Rate limit exceeded for {self.provider}. Retry after {self.retry_after} seconds."
        return f"Rate limit exceeded for {self.provider}. Please try again later."

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class UserDataNotFoundError(IntegrationException):
    """Raised when no data exists for the user at the provider."""
    status_code = 404
    error_code = "USER_DATA_NOT_FOUND"

    def _default_message(self) -> str:
        return f"No data found for this user at {self.provider}"


class InsufficientPermissionsError(IntegrationException):
    """Raised when the granted scopes do not cover the request."""
    status_code = 403
    error_code = "INSUFFICIENT_PERMISSIONS"

    def _default_message(self) -> str:
        return f"Insufficient permissions for {self.provider}"


class InvalidUploadTokenError(IntegrationException):
    """Raised when a device upload token does not match or has expired."""
    status_code = 401
    error_code = "INVALID_UPLOAD_TOKEN"
    default_message = "Invalid or expired upload token"


class DataValidationError(IntegrationException):
    """Raised when submitted data is malformed or unsupported."""
    status_code = 400
    error_code = "DATA_VALIDATION_FAILED"
    default_message = "Data validation failed"
