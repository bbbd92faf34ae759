"""
Unit tests for callback payload parsing.
"""
import pytest

from app.core.exceptions import InvalidCallbackError, OAuthAuthenticationError
from app.integrations.callbacks import parse_callback
from app.integrations.schemas import (
    AppleHealthCallback,
    AppleMusicCallback,
    GoodreadsCallback,
    LocationCallback,
    OAuthCallback,
    PlaidCallback,
)
from app.models.integration import IntegrationProvider


class TestOAuthCallbacks:

    @pytest.mark.parametrize("provider", ["strava", "spotify", "email_scraper", "contact_list"])
    def test_code_and_state(self, provider):
        payload = parse_callback(provider, {"code": "auth-code", "state": "s-1", "scope": "read"})

        assert isinstance(payload, OAuthCallback)
        assert payload.code == "auth-code"
        assert payload.state == "s-1"
        assert payload.scope == "read"

    def test_enum_provider_accepted(self):
        payload = parse_callback(IntegrationProvider.STRAVA, {"code": "c", "state": "s"})
        assert payload.provider == "strava"

    def test_provider_error_is_authentication_failure(self):
        with pytest.raises(OAuthAuthenticationError) as exc_info:
            parse_callback("strava", {"error": "access_denied", "error_description": "User denied access"})

        assert exc_info.value.message == "Authorization failed: User denied access"
        assert exc_info.value.status_code == 401

    def test_provider_error_without_description(self):
        with pytest.raises(OAuthAuthenticationError, match="access_denied"):
            parse_callback("spotify", {"error": "access_denied", "state": "s"})

    def test_missing_code(self):
        with pytest.raises(InvalidCallbackError) as exc_info:
            parse_callback("strava", {"state": "s"})

        assert exc_info.value.message == "Missing required callback fields: code"

    def test_empty_body_lists_every_missing_field(self):
        with pytest.raises(InvalidCallbackError) as exc_info:
            parse_callback("strava", None)

        assert exc_info.value.message == "Missing required callback fields: code, state"

    def test_blank_state_is_invalid(self):
        with pytest.raises(InvalidCallbackError, match="Invalid callback fields: state"):
            parse_callback("strava", {"code": "c", "state": ""})

    def test_provider_in_body_cannot_switch_variant(self):
        payload = parse_callback("plaid", {"provider": "strava", "code": "c", "state": "s", "public_token": "p"})
        assert isinstance(payload, PlaidCallback)


class TestDeviceAndSdkCallbacks:

    def test_plaid_accepts_camel_case(self):
        payload = parse_callback("plaid", {"publicToken": "public-sandbox-1", "state": "s"})

        assert isinstance(payload, PlaidCallback)
        assert payload.public_token == "public-sandbox-1"

    def test_apple_health(self):
        payload = parse_callback("apple_health", {
            "state": "s",
            "uploadToken": "ah_user_1",
            "healthData": {"steps": [{"date": "2024-01-01", "stepCount": 100}]},
        })

        assert isinstance(payload, AppleHealthCallback)
        assert payload.upload_token == "ah_user_1"
        assert payload.health_data["steps"][0]["stepCount"] == 100

    def test_apple_music(self):
        payload = parse_callback("apple_music", {"state": "s", "musicUserToken": "mut"})

        assert isinstance(payload, AppleMusicCallback)
        assert payload.music_user_token == "mut"

    def test_location_permissions_optional(self):
        payload = parse_callback("location_services", {"state": "s"})

        assert isinstance(payload, LocationCallback)
        assert payload.permissions is None

    def test_goodreads_feed_url(self):
        payload = parse_callback("goodreads", {"state": "s", "rssFeedUrl": " https://www.goodreads.com/review/list_rss/1 "})

        assert isinstance(payload, GoodreadsCallback)
        assert payload.rss_feed_url == "https://www.goodreads.com/review/list_rss/1"

    def test_goodreads_rejects_non_http_url(self):
        with pytest.raises(InvalidCallbackError, match="Invalid callback fields: rss_feed_url"):
            parse_callback("goodreads", {"state": "s", "rss_feed_url": "ftp://example.com/feed"})

    @pytest.mark.parametrize("url", [
        "http://169.254.169.254/latest/meta-data/",
        "http://localhost:8000/admin",
        "https://goodreads.com.attacker.test/review/list_rss/1",
        "https://www.goodreads.com@10.0.0.5/review/list_rss/1",
        "https://notgoodreads.com/review/list_rss/1",
    ])
    def test_goodreads_rejects_other_hosts(self, url):
        with pytest.raises(InvalidCallbackError, match="Invalid callback fields: rss_feed_url"):
            parse_callback("goodreads", {"state": "s", "rss_feed_url": url})

    def test_goodreads_accepts_bare_domain(self):
        payload = parse_callback("goodreads", {"state": "s", "rss_feed_url": "https://goodreads.com/review/list_rss/1"})
        assert payload.rss_feed_url == "https://goodreads.com/review/list_rss/1"

    def test_unknown_provider(self):
        with pytest.raises(InvalidCallbackError):
            parse_callback("myspace", {"state": "s", "code": "c"})
