"""
Application configuration using pydantic-settings.
"""
import logging
import secrets
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Insecure default that should never be used in production
_INSECURE_DEFAULT_SECRET = "your-super-secret-key-change-in-production"
DEFAULT_SQLITE_URL = "sqlite:///./connect_hub.db"
DEFAULT_APPLE_MUSIC_CALLBACK_URL = "myapp://integrations/apple_music/callback"
PLAID_ENVIRONMENTS = ("sandbox", "development", "production")

# Define the project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.resolve()


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Connect Hub"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_v1_prefix: str = "/api/v1"
    enable_cors: bool = False
    cors_origins: Optional[List[str]] = None

    # Database
    database_url: str = DEFAULT_SQLITE_URL

    # Security
    secret_key: str = ""  # Must be set via environment variable
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Redis (location data store, Celery broker default)
    redis_url: Optional[str] = None

    # Celery Configuration
    celery_broker_url: Optional[str] = Field(default=None, validate_default=True)
    celery_result_backend: Optional[str] = Field(default=None, validate_default=True)
    celery_task_serializer: str = "json"
    celery_result_serializer: str = "json"
    celery_accept_content: List[str] = ["json"]
    celery_timezone: str = "UTC"
    celery_enable_utc: bool = True

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    # Outbound HTTP and sync behaviour
    http_timeout_seconds: float = 10.0
    sync_max_pages: int = 50
    integration_sync_interval_hours: int = 0  # 0 disables the beat schedule

    # State token hardening
    state_token_signing: bool = False
    state_token_max_age_seconds: Optional[int] = None

    # ------------------------------------------------------------------
    # Provider credentials
    # ------------------------------------------------------------------
    strava_client_id: Optional[str] = None
    strava_client_secret: Optional[str] = None
    strava_redirect_uri: Optional[str] = None
    strava_default_days: int = 90

    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: Optional[str] = None
    spotify_default_days: int = 30

    plaid_client_id: Optional[str] = None
    plaid_secret: Optional[str] = None
    plaid_env: str = "sandbox"
    plaid_redirect_uri: Optional[str] = None
    plaid_default_days: int = 30

    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_redirect_uri: Optional[str] = None
    gmail_default_days: int = 90
    email_scraper_enabled: bool = True

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None

    apple_health_upload_endpoint: Optional[str] = None
    apple_health_default_days: int = 30
    apple_health_upload_token_ttl_seconds: int = 3600

    apple_music_team_id: Optional[str] = None
    apple_music_key_id: Optional[str] = None
    apple_music_private_key: Optional[str] = None
    apple_music_default_days: int = 30
    apple_music_use_mock_data: bool = False
    apple_music_callback_url: str = DEFAULT_APPLE_MUSIC_CALLBACK_URL

    google_maps_api_key: Optional[str] = None

    goodreads_user_agent: str = "Mozilla/5.0 (compatible; ConnectHub/0.1)"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        """Validate SECRET_KEY is set and secure."""
        if not v:
            env = info.data.get('environment', 'development')
            if env == 'production':
                raise ValueError(
                    "SECRET_KEY must be set in production! "
                    "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )
            logger.warning(
                "SECRET_KEY not set! Using auto-generated key for development. "
                "Stored credentials will not survive a restart. Set SECRET_KEY in .env for persistence."
            )
            return secrets.token_urlsafe(32)

        if v == _INSECURE_DEFAULT_SECRET:
            logger.warning(
                "Using insecure default SECRET_KEY! "
                "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        elif len(v) < 32:
            logger.warning(
                f"SECRET_KEY is only {len(v)} characters long. "
                "Recommend at least 32 characters for security."
            )

        return v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if v is None:
            return []

        if isinstance(v, str):
            if not v.strip():
                return []
            return [origin.strip() for origin in v.split(',') if origin.strip()]

        if isinstance(v, list):
            return v

        return []

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Fall back to SQLite when DATABASE_URL is blank."""
        if not v or not v.strip():
            logger.info(
                "DATABASE_URL not provided; defaulting to SQLite at %s", DEFAULT_SQLITE_URL
            )
            return DEFAULT_SQLITE_URL
        return v.strip()

    @field_validator('plaid_env')
    @classmethod
    def validate_plaid_env(cls, v: str) -> str:
        """Validate PLAID_ENV names a real Plaid environment."""
        v = (v or "sandbox").lower().strip()
        if v not in PLAID_ENVIRONMENTS:
            raise ValueError(
                f"PLAID_ENV must be one of {', '.join(PLAID_ENVIRONMENTS)}. Got: {v}"
            )
        return v

    @field_validator(
        'strava_default_days', 'spotify_default_days', 'plaid_default_days',
        'gmail_default_days', 'apple_health_default_days', 'apple_music_default_days',
    )
    @classmethod
    def validate_default_days(cls, v: int) -> int:
        """Sync windows must be a positive number of days."""
        if v <= 0:
            raise ValueError("Default sync window must be at least 1 day")
        if v > 3650:
            raise ValueError("Default sync window cannot exceed 3650 days")
        return v

    @field_validator('http_timeout_seconds')
    @classmethod
    def validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be positive")
        if v > 300:
            raise ValueError("HTTP_TIMEOUT_SECONDS cannot exceed 300 seconds")
        return v

    @field_validator('sync_max_pages')
    @classmethod
    def validate_sync_max_pages(cls, v: int) -> int:
        if v < 1:
            raise ValueError("SYNC_MAX_PAGES must be at least 1")
        return v

    @field_validator('state_token_max_age_seconds')
    @classmethod
    def validate_state_token_max_age(cls, v: Optional[int]) -> Optional[int]:
        """Zero or negative disables the age check."""
        if v is not None and v <= 0:
            return None
        return v

    @field_validator('celery_broker_url', 'celery_result_backend')
    @classmethod
    def validate_celery_urls(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Auto-configure Celery from redis_url if not explicitly set."""
        if v:
            return v

        redis_url = info.data.get('redis_url')
        if redis_url:
            logger.info(
                f"{info.field_name.upper()} not set. Defaulting to REDIS_URL"
            )
            return redis_url

        return v

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'Settings':
        """Production validation."""
        if self.environment != "production":
            return self

        errors = []
        warnings = []

        if self.debug:
            errors.append("DEBUG must be False in production.")

        if self.enable_cors and not self.cors_origins:
            errors.append("CORS_ORIGINS must be configured when CORS is enabled.")

        if not self.state_token_signing:
            warnings.append(
                "STATE_TOKEN_SIGNING is disabled. OAuth state tokens can be forged by anyone who knows a user id."
            )

        if self.plaid_env == "sandbox" and self.plaid_client_id:
            warnings.append("PLAID_ENV is 'sandbox' in production.")

        if self.integration_sync_interval_hours and not self.celery_broker_url:
            warnings.append(
                "INTEGRATION_SYNC_INTERVAL_HOURS is set but CELERY_BROKER_URL is not configured."
            )

        for warning in warnings:
            logger.warning(f"Production configuration warning: {warning}")

        if errors:
            error_message = "Production configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)

        return self

    def provider_config(self, provider):
        """Build the typed configuration object for one provider."""
        # local import to break circular dependency
        from app.integrations.config import build_provider_config
        return build_provider_config(self, provider)


# Create settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance."""
    return settings
