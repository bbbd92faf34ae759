"""
Provider credential storage.

Two stores implement the same contract (`get`, `set`, `delete`):

- InMemoryCredentialStore: for tests and single-process development
- DatabaseCredentialStore: IntegrationCredential rows, tokens Fernet-encrypted
"""
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, field_validator
from sqlmodel import select

from app.core.encryption import decrypt_optional, decrypt_token, encrypt_optional, encrypt_token
from app.core.logging_config import log_debug
from app.core.time_utils import utc_now
from app.integrations.persistence import (
    _commit,
    _delete,
    _exec,
    default_session_factory,
    session_scope,
)
from app.models.integration import IntegrationCredential


class Credential(BaseModel):
    """Decrypted credential tuple for one (user, provider)."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # epoch seconds
    scope: Optional[str] = None
    provider_user_id: Optional[str] = None

    @field_validator("access_token")
    @classmethod
    def validate_access_token(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("access_token must not be empty")
        return v

    def expires_within(self, seconds: int, now: Optional[int] = None) -> bool:
        """True when the token expires within `seconds` (never, if no expiry is known)."""
        if self.expires_at is None:
            return False
        current = now if now is not None else int(utc_now().timestamp())
        return self.expires_at <= current + seconds


def _provider_key(provider) -> str:
    return str(getattr(provider, "value", provider))


class CredentialStore:
    """Contract shared by the credential stores."""

    async def get(self, user_id: str, provider) -> Optional[Credential]:
        raise NotImplementedError

    async def set(self, user_id: str, provider, credential: Credential) -> None:
        raise NotImplementedError

    async def delete(self, user_id: str, provider) -> None:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):

    def __init__(self):
        self._records: Dict[Tuple[str, str], Credential] = {}

    async def get(self, user_id: str, provider) -> Optional[Credential]:
        record = self._records.get((user_id, _provider_key(provider)))
        return record.model_copy() if record else None

    async def set(self, user_id: str, provider, credential: Credential) -> None:
        self._records[(user_id, _provider_key(provider))] = credential.model_copy()

    async def delete(self, user_id: str, provider) -> None:
        self._records.pop((user_id, _provider_key(provider)), None)


class DatabaseCredentialStore(CredentialStore):
    """
    Credentials persisted in `integration_credential`.

    Access and refresh tokens are encrypted with Fernet before storage and
    decrypted on read.
    """

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self._session_factory = session_factory or default_session_factory

    @staticmethod
    def _query(user_id: str, provider: str):
        return select(IntegrationCredential).where(
            IntegrationCredential.user_id == user_id,
            IntegrationCredential.provider == provider,
        )

    async def get(self, user_id: str, provider) -> Optional[Credential]:
        async with session_scope(self._session_factory) as session:
            row = (await _exec(session, self._query(user_id, _provider_key(provider)))).first()
            if row is None:
                return None
            return Credential(
                access_token=decrypt_token(row.access_token_encrypted),
                refresh_token=decrypt_optional(row.refresh_token_encrypted),
                expires_at=row.expires_at,
                scope=row.scope,
                provider_user_id=row.provider_user_id,
            )

    async def set(self, user_id: str, provider, credential: Credential) -> None:
        provider = _provider_key(provider)
        async with session_scope(self._session_factory) as session:
            row = (await _exec(session, self._query(user_id, provider))).first()
            if row is None:
                row = IntegrationCredential(
                    user_id=user_id,
                    provider=provider,
                    access_token_encrypted=encrypt_token(credential.access_token),
                )
            else:
                row.access_token_encrypted = encrypt_token(credential.access_token)
                row.touch()

            row.refresh_token_encrypted = encrypt_optional(credential.refresh_token)
            row.expires_at = credential.expires_at
            row.scope = credential.scope
            row.provider_user_id = credential.provider_user_id
            session.add(row)
            await _commit(session)
            log_debug("Credential stored", provider=provider, user_id=user_id)

    async def delete(self, user_id: str, provider) -> None:
        provider = _provider_key(provider)
        async with session_scope(self._session_factory) as session:
            row = (await _exec(session, self._query(user_id, provider))).first()
            if row is None:
                return
            await _delete(session, row)
            await _commit(session)
            log_debug("Credential deleted", provider=provider, user_id=user_id)
