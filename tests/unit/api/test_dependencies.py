from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from app.api import dependencies
from app.core.config import settings
from app.core.security import create_access_token
from app.middleware.request_logging import request_id_ctx


@pytest.mark.asyncio
async def test_get_current_user_id_from_valid_token():
    token = create_access_token("user-42")

    assert await dependencies.get_current_user_id(token=token) == "user-42"


@pytest.mark.asyncio
async def test_get_current_user_id_missing_token():
    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_id(token=None)

    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_get_current_user_id_expired_token():
    token = create_access_token("user-42", expires_delta=timedelta(seconds=-10))

    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_id(token=token)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_other_token_types():
    token = jwt.encode({"sub": "user-42", "type": "refresh"}, settings.secret_key, algorithm=settings.algorithm)

    with pytest.raises(HTTPException):
        await dependencies.get_current_user_id(token=token)


@pytest.mark.asyncio
async def test_get_current_user_id_wrong_signature():
    token = jwt.encode({"sub": "user-42", "type": "access"}, "another-secret-key-that-is-32-chars!", algorithm="HS256")

    with pytest.raises(HTTPException):
        await dependencies.get_current_user_id(token=token)


@pytest.mark.asyncio
async def test_get_current_user_id_without_subject():
    token = jwt.encode({"type": "access"}, settings.secret_key, algorithm=settings.algorithm)

    with pytest.raises(HTTPException):
        await dependencies.get_current_user_id(token=token)


def test_get_request_id_reads_context():
    reset_token = request_id_ctx.set("req-1")
    try:
        assert dependencies.get_request_id() == "req-1"
    finally:
        request_id_ctx.reset(reset_token)

    assert dependencies.get_request_id() == "unknown"
