"""
OAuth state token codec.

Format:
    {prefix}-{userId}-{epochMillis}            (unsigned)
    {prefix}-{userId}-{epochMillis}.{sig}      (STATE_TOKEN_SIGNING enabled)

User ids may themselves contain hyphens, so decoding strips the prefix and
splits on the LAST hyphen: everything before it is the user id, everything
after it must be the numeric timestamp.
"""
import time
from typing import Optional

from app.core.exceptions import InvalidCallbackError
from app.core.signing import generate_state_signature, verify_state_signature
from app.models.integration import IntegrationProvider

# Tokens minted slightly "in the future" by a skewed clock are still accepted
MAX_CLOCK_SKEW_MS = 5 * 60 * 1000

STATE_PREFIXES = {
    IntegrationProvider.STRAVA: "strava",
    IntegrationProvider.SPOTIFY: "spotify",
    IntegrationProvider.PLAID: "plaid",
    IntegrationProvider.APPLE_HEALTH: "apple-health",
    IntegrationProvider.APPLE_MUSIC: "apple-music",
    IntegrationProvider.EMAIL_SCRAPER: "email",
    IntegrationProvider.LOCATION_SERVICES: "location",
    IntegrationProvider.CONTACT_LIST: "contacts",
    IntegrationProvider.GOODREADS: "goodreads",
}


def state_prefix_for(provider) -> str:
    return STATE_PREFIXES[IntegrationProvider(getattr(provider, "value", provider))]


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_state(prefix: str, user_id: str, *, secret: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    """
    Mint a state token for `user_id`.

    When `secret` is given the token is signed.
    """
    if not user_id or user_id.startswith("-"):
        raise ValueError("user_id must be non-empty and must not start with '-'")

    token = f"{prefix}-{user_id}-{now_ms if now_ms is not None else _now_ms()}"
    if secret:
        token = f"{token}.{generate_state_signature(token, secret)}"
    return token


def decode_state(
    prefix: str,
    token: str,
    *,
    secret: Optional[str] = None,
    max_age_seconds: Optional[int] = None,
    provider: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> str:
    """
    Recover the user id from a state token.

    Raises:
        InvalidCallbackError: malformed, foreign-prefixed, badly signed,
            or expired token
    """
    def reject(reason: str):
        return InvalidCallbackError(provider, f"Invalid state token: {reason}")

    if not token or not isinstance(token, str):
        raise reject("missing")

    body = token
    if secret:
        body, dot, signature = token.rpartition(".")
        if not dot or not body:
            raise reject("missing signature")
        if not verify_state_signature(body, signature, secret):
            raise reject("signature mismatch")

    head = f"{prefix}-"
    if not body.startswith(head):
        raise reject("unexpected prefix")

    rest = body[len(head):]
    user_id, hyphen, timestamp = rest.rpartition("-")
    if not hyphen or not timestamp.isdigit():
        raise reject("missing timestamp")
    if not user_id or user_id.startswith("-"):
        raise reject("missing user id")

    if max_age_seconds:
        issued_ms = int(timestamp)
        current_ms = now_ms if now_ms is not None else _now_ms()
        if current_ms - issued_ms > max_age_seconds * 1000:
            raise reject("expired")
        if issued_ms - current_ms > MAX_CLOCK_SKEW_MS:
            raise reject("issued in the future")

    return user_id
