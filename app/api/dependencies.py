"""
Shared API dependencies.
"""
import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError

from app.core.security import verify_token
from app.middleware.request_logging import request_id_ctx

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def get_request_id() -> str:
    """
    Dependency to get the current request ID from context.

    Returns:
        The current request ID, or 'unknown' if not in a request context.
    """
    return request_id_ctx.get()


async def get_current_user_id(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
) -> str:
    """
    Dependency resolving the authenticated user id from the bearer token.

    Raises HTTPException with status 401 if the token is missing or invalid.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    try:
        payload = verify_token(token, "access")
    except ExpiredSignatureError:
        logger.info("Expired token presented")
        raise credentials_exception
    except JWTError as e:
        logger.warning("JWT error during token validation", extra={"error": str(e)})
        raise credentials_exception

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise credentials_exception
    return user_id
