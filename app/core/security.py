"""
Access token helpers.

The hub does not manage accounts itself; callers present a JWT signed with
SECRET_KEY whose ``sub`` claim is the user id.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.core.config import settings
from app.core.time_utils import utc_now


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue an access token for ``user_id``."""
    expire = utc_now() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {"sub": str(user_id), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    """
    Decode and validate a token.

    Raises:
        JWTError: signature, expiry or token type is invalid
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    if payload.get("type") != expected_type:
        raise JWTError(f"Expected a {expected_type} token")
    return payload
