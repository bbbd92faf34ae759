"""
HMAC-SHA256 signing for OAuth state tokens.

An unsigned state token only proves that somebody knew a user id. When
STATE_TOKEN_SIGNING is enabled the token carries a truncated HMAC over its
canonical form, keyed by SECRET_KEY, so a callback can only be completed with
a token this service minted.

Canonical message:
    HUB-STATE-V1
    <STATE_TOKEN_WITHOUT_SIGNATURE>
"""

import hmac
import hashlib

SIGNATURE_HEX_LENGTH = 32


def generate_state_signature(token: str, secret: str) -> str:
    """
    Sign an unsigned state token.

    Args:
        token: The unsigned token, e.g. "strava-user-42-1700000000000"
        secret: Signing secret (SECRET_KEY)

    Returns:
        Truncated hex-encoded HMAC-SHA256 signature

    Raises:
        ValueError: If the token contains newline characters
    """
    if '\n' in token or '\r' in token:
        raise ValueError(
            f"State token contains invalid newline characters: {repr(token)}"
        )
    if not secret:
        raise ValueError("A signing secret is required")

    canonical_message = f"HUB-STATE-V1\n{token}"
    signature = hmac.new(
        secret.encode('utf-8'),
        canonical_message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()
    return signature[:SIGNATURE_HEX_LENGTH]


def verify_state_signature(token: str, signature: str, secret: str) -> bool:
    """Constant-time check of a state token signature."""
    try:
        expected = generate_state_signature(token, secret)
    except ValueError:
        return False
    return hmac.compare_digest(expected, signature or "")
