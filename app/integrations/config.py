"""
Typed per-provider configuration.

Adapters receive one of these objects at construction instead of reading
Settings directly, so tests can build a fully configured (or deliberately
incomplete) adapter without touching the environment.

Each config reports which required fields are absent via `missing_fields()`;
`create_connection` turns a non-empty result into ConfigurationError.
"""
from typing import ClassVar, List, Optional, Tuple

from pydantic import BaseModel, Field

from app.models.integration import IntegrationProvider


class ProviderConfig(BaseModel):
    """Common fields for every provider."""

    default_days: int = Field(default=30, ge=1)
    required_fields: ClassVar[Tuple[str, ...]] = ()

    def missing_fields(self) -> List[str]:
        """Names of required fields that are unset or blank."""
        missing = []
        for field_name in self.required_fields:
            value = getattr(self, field_name, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(field_name)
        return missing


class OAuthProviderConfig(ProviderConfig):
    """Authorization-code OAuth providers (Strava, Spotify, Google)."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    enabled: bool = True
    required_fields: ClassVar[Tuple[str, ...]] = ("client_id", "client_secret", "redirect_uri")


class PlaidConfig(ProviderConfig):
    client_id: Optional[str] = None
    secret: Optional[str] = None
    environment: str = "sandbox"
    redirect_uri: Optional[str] = None
    required_fields: ClassVar[Tuple[str, ...]] = ("client_id", "secret")

    @property
    def base_url(self) -> str:
        return f"https://{self.environment}.plaid.com"


class AppleHealthConfig(ProviderConfig):
    upload_endpoint: Optional[str] = None
    upload_token_ttl_seconds: int = Field(default=3600, ge=60)
    required_fields: ClassVar[Tuple[str, ...]] = ("upload_endpoint",)


class AppleMusicConfig(ProviderConfig):
    team_id: Optional[str] = None
    key_id: Optional[str] = None
    private_key: Optional[str] = None
    use_mock_data: bool = False
    callback_url: str = "myapp://integrations/apple_music/callback"
    required_fields: ClassVar[Tuple[str, ...]] = ("team_id", "key_id", "private_key")


class LocationConfig(ProviderConfig):
    google_maps_api_key: Optional[str] = None
    required_fields: ClassVar[Tuple[str, ...]] = ("google_maps_api_key",)


class GoodreadsConfig(ProviderConfig):
    user_agent: str = "Mozilla/5.0 (compatible; ConnectHub/0.1)"


def build_provider_config(settings, provider) -> ProviderConfig:
    """Build the typed config object for `provider` from flat Settings fields."""
    provider = IntegrationProvider(getattr(provider, "value", provider))

    if provider == IntegrationProvider.STRAVA:
        return OAuthProviderConfig(
            client_id=settings.strava_client_id,
            client_secret=settings.strava_client_secret,
            redirect_uri=settings.strava_redirect_uri,
            default_days=settings.strava_default_days,
        )
    if provider == IntegrationProvider.SPOTIFY:
        return OAuthProviderConfig(
            client_id=settings.spotify_client_id,
            client_secret=settings.spotify_client_secret,
            redirect_uri=settings.spotify_redirect_uri,
            default_days=settings.spotify_default_days,
        )
    if provider == IntegrationProvider.EMAIL_SCRAPER:
        return OAuthProviderConfig(
            client_id=settings.gmail_client_id,
            client_secret=settings.gmail_client_secret,
            redirect_uri=settings.gmail_redirect_uri,
            default_days=settings.gmail_default_days,
            enabled=settings.email_scraper_enabled,
        )
    if provider == IntegrationProvider.CONTACT_LIST:
        return OAuthProviderConfig(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )
    if provider == IntegrationProvider.PLAID:
        return PlaidConfig(
            client_id=settings.plaid_client_id,
            secret=settings.plaid_secret,
            environment=settings.plaid_env,
            redirect_uri=settings.plaid_redirect_uri,
            default_days=settings.plaid_default_days,
        )
    if provider == IntegrationProvider.APPLE_HEALTH:
        return AppleHealthConfig(
            upload_endpoint=settings.apple_health_upload_endpoint,
            upload_token_ttl_seconds=settings.apple_health_upload_token_ttl_seconds,
            default_days=settings.apple_health_default_days,
        )
    if provider == IntegrationProvider.APPLE_MUSIC:
        return AppleMusicConfig(
            team_id=settings.apple_music_team_id,
            key_id=settings.apple_music_key_id,
            private_key=settings.apple_music_private_key,
            use_mock_data=settings.apple_music_use_mock_data,
            callback_url=settings.apple_music_callback_url,
            default_days=settings.apple_music_default_days,
        )
    if provider == IntegrationProvider.LOCATION_SERVICES:
        return LocationConfig(google_maps_api_key=settings.google_maps_api_key)
    if provider == IntegrationProvider.GOODREADS:
        return GoodreadsConfig(user_agent=settings.goodreads_user_agent)

    raise ValueError(f"No configuration builder for provider: {provider}")
