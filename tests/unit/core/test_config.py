"""
Unit tests for app.core.config: validation and per-provider configuration.
"""
import pytest
from pydantic import ValidationError

from app.core.config import DEFAULT_SQLITE_URL, Settings
from app.integrations.config import (
    AppleMusicConfig,
    GoodreadsConfig,
    LocationConfig,
    OAuthProviderConfig,
    PlaidConfig,
)
from app.models.integration import IntegrationProvider

SECRET = "test-secret-key-for-testing-only-32-chars"


def make_settings(**kwargs):
    """Create Settings without loading values from .env."""
    kwargs.setdefault("secret_key", SECRET)
    return Settings(_env_file=None, **kwargs)


class TestCoreSettings:

    def test_blank_database_url_falls_back_to_sqlite(self):
        settings = make_settings(database_url="   ")
        assert settings.database_url == DEFAULT_SQLITE_URL

    def test_missing_secret_key_is_generated_outside_production(self):
        settings = make_settings(secret_key="", environment="development")
        assert len(settings.secret_key) >= 32

    def test_missing_secret_key_rejected_in_production(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(secret_key="", environment="production")
        assert "SECRET_KEY must be set in production" in str(exc_info.value)

    def test_cors_origins_parsed_from_comma_separated_string(self):
        settings = make_settings(cors_origins="https://a.example.com, https://b.example.com,")
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]

    def test_celery_urls_default_to_redis_url(self):
        settings = make_settings(redis_url="redis://localhost:6379/0")
        assert settings.celery_broker_url == "redis://localhost:6379/0"
        assert settings.celery_result_backend == "redis://localhost:6379/0"

    def test_explicit_celery_broker_wins(self):
        settings = make_settings(
            redis_url="redis://localhost:6379/0",
            celery_broker_url="redis://broker:6379/1",
        )
        assert settings.celery_broker_url == "redis://broker:6379/1"

    def test_http_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(http_timeout_seconds=0)

    def test_sync_max_pages_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(sync_max_pages=0)


class TestSyncWindowSettings:

    @pytest.mark.parametrize("field", [
        "strava_default_days",
        "spotify_default_days",
        "plaid_default_days",
        "gmail_default_days",
        "apple_health_default_days",
        "apple_music_default_days",
    ])
    def test_default_days_rejects_zero(self, field):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(**{field: 0})
        assert "at least 1 day" in str(exc_info.value)

    def test_default_days_rejects_more_than_ten_years(self):
        with pytest.raises(ValidationError):
            make_settings(strava_default_days=4000)

    def test_provider_defaults(self):
        settings = make_settings()
        assert settings.strava_default_days == 90
        assert settings.spotify_default_days == 30
        assert settings.gmail_default_days == 90


class TestStateTokenSettings:

    def test_signing_disabled_by_default(self):
        settings = make_settings()
        assert settings.state_token_signing is False
        assert settings.state_token_max_age_seconds is None

    def test_non_positive_max_age_disables_check(self):
        assert make_settings(state_token_max_age_seconds=0).state_token_max_age_seconds is None
        assert make_settings(state_token_max_age_seconds=-5).state_token_max_age_seconds is None
        assert make_settings(state_token_max_age_seconds=600).state_token_max_age_seconds == 600


class TestPlaidEnvironment:

    @pytest.mark.parametrize("value", ["sandbox", "development", "production", " Production "])
    def test_accepts_known_environments(self, value):
        settings = make_settings(plaid_env=value)
        assert settings.plaid_env == value.strip().lower()

    def test_rejects_unknown_environment(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(plaid_env="staging")
        assert "PLAID_ENV must be one of" in str(exc_info.value)


class TestProductionValidation:

    def test_debug_rejected_in_production(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(environment="production", debug=True)
        assert "DEBUG must be False in production" in str(exc_info.value)

    def test_cors_without_origins_rejected_in_production(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(environment="production", enable_cors=True)
        assert "CORS_ORIGINS must be configured" in str(exc_info.value)

    def test_unsigned_state_tokens_only_warn(self, caplog):
        settings = make_settings(environment="production")
        assert settings.environment == "production"
        assert "STATE_TOKEN_SIGNING is disabled" in caplog.text


class TestProviderConfig:

    def test_strava_config_from_settings(self):
        settings = make_settings(
            strava_client_id="cid",
            strava_client_secret="secret",
            strava_redirect_uri="https://app.example.com/callback",
        )
        config = settings.provider_config(IntegrationProvider.STRAVA)

        assert isinstance(config, OAuthProviderConfig)
        assert config.client_id == "cid"
        assert config.default_days == 90
        assert config.missing_fields() == []

    def test_missing_fields_reports_blank_values(self):
        settings = make_settings(spotify_client_id="cid", spotify_client_secret="  ")
        config = settings.provider_config("spotify")

        assert config.missing_fields() == ["client_secret", "redirect_uri"]

    def test_email_scraper_carries_enabled_flag(self):
        settings = make_settings(email_scraper_enabled=False)
        config = settings.provider_config(IntegrationProvider.EMAIL_SCRAPER)
        assert config.enabled is False

    def test_plaid_base_url_follows_environment(self):
        settings = make_settings(plaid_client_id="cid", plaid_secret="secret", plaid_env="development")
        config = settings.provider_config(IntegrationProvider.PLAID)

        assert isinstance(config, PlaidConfig)
        assert config.base_url == "https://development.plaid.com"

    def test_apple_music_requires_signing_material(self):
        config = make_settings(apple_music_use_mock_data=True).provider_config(IntegrationProvider.APPLE_MUSIC)

        assert isinstance(config, AppleMusicConfig)
        assert config.use_mock_data is True
        assert config.missing_fields() == ["team_id", "key_id", "private_key"]

    def test_location_and_goodreads(self):
        settings = make_settings(google_maps_api_key="maps-key")

        location = settings.provider_config(IntegrationProvider.LOCATION_SERVICES)
        goodreads = settings.provider_config(IntegrationProvider.GOODREADS)

        assert isinstance(location, LocationConfig)
        assert location.missing_fields() == []
        assert isinstance(goodreads, GoodreadsConfig)
        assert goodreads.missing_fields() == []

    def test_every_provider_has_a_config(self):
        settings = make_settings()
        for provider in IntegrationProvider:
            assert settings.provider_config(provider) is not None
