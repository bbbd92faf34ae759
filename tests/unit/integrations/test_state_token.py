"""
Unit tests for the OAuth state token codec.
"""
import pytest

from app.core.exceptions import InvalidCallbackError
from app.integrations.state_token import (
    MAX_CLOCK_SKEW_MS,
    decode_state,
    encode_state,
    state_prefix_for,
)
from app.models.integration import IntegrationProvider

SECRET = "test-secret-key-for-testing-only-32-chars"
ISSUED_MS = 1_700_000_000_000


class TestStatePrefixes:

    def test_every_provider_has_a_prefix(self):
        for provider in IntegrationProvider:
            assert state_prefix_for(provider)

    def test_prefix_lookup_accepts_enum_and_value(self):
        assert state_prefix_for(IntegrationProvider.APPLE_HEALTH) == "apple-health"
        assert state_prefix_for("apple_health") == "apple-health"
        assert state_prefix_for("email_scraper") == "email"
        assert state_prefix_for("contact_list") == "contacts"


class TestUnsignedState:

    def test_format(self):
        assert encode_state("strava", "user-1", now_ms=ISSUED_MS) == f"strava-user-1-{ISSUED_MS}"

    def test_roundtrip_keeps_hyphenated_user_id(self):
        user_id = "3f2b9c1e-4d5a-4e6f-8a7b-9c0d1e2f3a4b"
        token = encode_state("apple-health", user_id)

        assert decode_state("apple-health", token) == user_id

    def test_wrong_prefix_rejected(self):
        token = encode_state("strava", "user-1")

        with pytest.raises(InvalidCallbackError, match="unexpected prefix"):
            decode_state("spotify", token, provider="spotify")

    def test_missing_timestamp_rejected(self):
        with pytest.raises(InvalidCallbackError, match="missing timestamp"):
            decode_state("strava", "strava-user")

    def test_non_numeric_timestamp_rejected(self):
        with pytest.raises(InvalidCallbackError, match="missing timestamp"):
            decode_state("strava", "strava-user-abc")

    def test_missing_user_id_rejected(self):
        with pytest.raises(InvalidCallbackError, match="missing user id"):
            decode_state("strava", f"strava--{ISSUED_MS}")

    def test_empty_token_rejected(self):
        with pytest.raises(InvalidCallbackError, match="missing"):
            decode_state("strava", "")
        with pytest.raises(InvalidCallbackError):
            decode_state("strava", None)

    @pytest.mark.parametrize("user_id", ["", "-leading-hyphen"])
    def test_encode_rejects_unusable_user_ids(self, user_id):
        with pytest.raises(ValueError):
            encode_state("strava", user_id)

    def test_rejection_is_a_400(self):
        with pytest.raises(InvalidCallbackError) as exc_info:
            decode_state("strava", "garbage", provider="strava")

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "INVALID_CALLBACK"
        assert exc_info.value.provider == "strava"


class TestSignedState:

    def test_roundtrip(self):
        token = encode_state("spotify", "user-1", secret=SECRET)

        assert "." in token
        assert decode_state("spotify", token, secret=SECRET) == "user-1"

    def test_tampered_user_id_rejected(self):
        token = encode_state("spotify", "user-1", secret=SECRET, now_ms=ISSUED_MS)
        forged = token.replace("user-1", "user-2")

        with pytest.raises(InvalidCallbackError, match="signature mismatch"):
            decode_state("spotify", forged, secret=SECRET)

    def test_unsigned_token_rejected_when_signing_enabled(self):
        token = encode_state("spotify", "user-1")

        with pytest.raises(InvalidCallbackError, match="missing signature"):
            decode_state("spotify", token, secret=SECRET)

    def test_signed_token_unreadable_without_secret(self):
        token = encode_state("spotify", "user-1", secret=SECRET)

        with pytest.raises(InvalidCallbackError):
            decode_state("spotify", token)


class TestStateExpiry:

    def test_within_max_age(self):
        token = encode_state("strava", "user-1", now_ms=ISSUED_MS)

        user_id = decode_state("strava", token, max_age_seconds=600, now_ms=ISSUED_MS + 599_000)

        assert user_id == "user-1"

    def test_expired(self):
        token = encode_state("strava", "user-1", now_ms=ISSUED_MS)

        with pytest.raises(InvalidCallbackError, match="expired"):
            decode_state("strava", token, max_age_seconds=600, now_ms=ISSUED_MS + 601_000)

    def test_small_clock_skew_tolerated(self):
        token = encode_state("strava", "user-1", now_ms=ISSUED_MS + 60_000)

        assert decode_state("strava", token, max_age_seconds=600, now_ms=ISSUED_MS) == "user-1"

    def test_future_token_rejected(self):
        token = encode_state("strava", "user-1", now_ms=ISSUED_MS + MAX_CLOCK_SKEW_MS + 1)

        with pytest.raises(InvalidCallbackError, match="issued in the future"):
            decode_state("strava", token, max_age_seconds=600, now_ms=ISSUED_MS)

    def test_age_not_checked_without_max_age(self):
        token = encode_state("strava", "user-1", now_ms=1)

        assert decode_state("strava", token, now_ms=ISSUED_MS) == "user-1"
