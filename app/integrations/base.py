"""
Provider adapter contract and the shared OAuth implementation.

Every provider exposes the same six operations:

    name, create_connection, handle_callback, sync, status, disconnect

ProviderAdapter implements the parts that are identical everywhere (state
tokens, link bookkeeping, the status policy, best-effort disconnect, the
post-callback sync). OAuthProvider adds the authorization-code flow and the
refresh-token lifecycle. Concrete adapters supply URLs, streams and the
provider-specific exchange.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from app.core.exceptions import (
    ConfigurationError,
    InvalidTokenError,
    OAuthAuthenticationError,
    ProviderAPIError,
    RateLimitError,
)
from app.core.http_client import get_http_client
from app.core.logging_config import log_info, log_warning
from app.core.time_utils import ensure_utc, utc_now
from app.integrations.config import ProviderConfig
from app.integrations.credentials import Credential, CredentialStore
from app.integrations.errors import map_provider_error, map_refresh_error, parse_retry_after
from app.integrations.locks import KeyedLockRegistry, refresh_locks
from app.integrations.persistence import IntegrationPersistence
from app.integrations.schemas import ConnectResponse, StatusResult, SyncResult
from app.integrations.state_token import decode_state, encode_state, state_prefix_for
from app.integrations.sync_engine import SyncContext, SyncEngine, SyncStream
from app.models.integration import IntegrationProvider

# Tokens this close to expiry are refreshed before use
TOKEN_REFRESH_MARGIN_SECONDS = 60


class ProviderAdapter:
    """Base class for all provider adapters."""

    provider: IntegrationProvider
    display_name: str = ""
    list_name: str = "Other"
    requires_credential: bool = True
    sync_after_callback: bool = True

    def __init__(
        self,
        config: ProviderConfig,
        persistence: IntegrationPersistence,
        credentials: CredentialStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        engine: Optional[SyncEngine] = None,
        state_secret: Optional[str] = None,
        state_max_age_seconds: Optional[int] = None,
    ):
        self.config = config
        self.persistence = persistence
        self.credentials = credentials
        self._http_client = http_client
        self.engine = engine or SyncEngine(persistence)
        self._state_secret = state_secret
        self._state_max_age_seconds = state_max_age_seconds

    @property
    def name(self) -> str:
        return self.provider.value

    @property
    def default_days(self) -> int:
        return self.config.default_days

    async def get_client(self) -> httpx.AsyncClient:
        """Injected client (tests), else the shared process-wide client."""
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    # ----------------------------------------------------------------------------
    # Configuration and state
    # ----------------------------------------------------------------------------

    def check_configuration(self) -> None:
        missing = self.config.missing_fields()
        if missing:
            raise ConfigurationError(
                self.name,
                f"{self.display_name} is not configured. Missing: {', '.join(missing)}",
            )

    def mint_state(self, user_id: str) -> str:
        return encode_state(state_prefix_for(self.provider), user_id, secret=self._state_secret)

    def read_state(self, token: str) -> str:
        return decode_state(
            state_prefix_for(self.provider),
            token,
            secret=self._state_secret,
            max_age_seconds=self._state_max_age_seconds,
            provider=self.name,
        )

    async def _integration(self):
        return await self.persistence.ensure_integration(
            self.name, display_name=self.display_name, list_name=self.list_name
        )

    # ----------------------------------------------------------------------------
    # Contract
    # ----------------------------------------------------------------------------

    async def create_connection(self, user_id: str) -> ConnectResponse:
        """Validate configuration, mint state and return what the client needs to connect."""
        self.check_configuration()
        state = self.mint_state(user_id)
        integration = await self._integration()
        await self.persistence.ensure_user_integration(user_id, integration.id)

        response = await self._build_connection(user_id, state)
        log_info("Integration connection started", provider=self.name, user_id=user_id)
        return response

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        raise NotImplementedError

    async def handle_callback(self, payload) -> None:
        """
        Complete a connection from a typed callback payload.

        The post-connect sync is best effort: the connection stands even when
        that first sync fails.
        """
        user_id = self.read_state(payload.state)
        await self._complete_callback(user_id, payload)

        integration = await self._integration()
        await self.persistence.mark_connected(user_id, integration.id)
        log_info("Integration connected", provider=self.name, user_id=user_id)

        if not self.sync_after_callback:
            return
        try:
            await self.sync(user_id)
        except Exception as e:
            log_warning(
                "Initial sync after connect failed",
                provider=self.name, user_id=user_id, error=str(e),
            )

    async def _complete_callback(self, user_id: str, payload) -> None:
        raise NotImplementedError

    async def sync(self, user_id: str) -> SyncResult:
        return await self.engine.run(self, user_id)

    async def prepare_sync(self, user_id: str) -> Optional[Credential]:
        """Credentials for a sync run; absent credentials fail the run."""
        credential = await self.credentials.get(user_id, self.provider)
        if credential is None and self.requires_credential:
            raise InvalidTokenError(self.name)
        return credential

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return []

    async def status(self, user_id: str) -> StatusResult:
        """
        Connection status.

        Not connected (no link, link not CONNECTED, or credential missing) is
        reported as `connected: false`; anything else that goes wrong raises.
        """
        integration = await self._integration()
        details: Dict[str, Any] = {
            "integration_id": str(integration.id),
            "popularity": integration.popularity,
            "has_credential": False,
        }

        link = await self.persistence.get_link(user_id, integration.id)
        if link is None or not link.is_connected:
            return StatusResult(connected=False, details=details)

        credential = await self.credentials.get(user_id, self.provider)
        details["has_credential"] = credential is not None
        if credential is None and self.requires_credential:
            return StatusResult(connected=False, details=details)

        details.update(await self._status_details(user_id, credential))
        last_synced_at = ensure_utc(link.last_synced_at) if link.last_synced_at else None
        return StatusResult(connected=True, last_synced_at=last_synced_at, details=details)

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        return {}

    async def disconnect(self, user_id: str) -> None:
        """Revoke remotely where supported, then forget the credential and the link."""
        credential = await self.credentials.get(user_id, self.provider)
        if credential is not None:
            try:
                await self._revoke(credential)
            except Exception as e:
                log_warning("Remote revoke failed", provider=self.name, user_id=user_id, error=str(e))
            await self.credentials.delete(user_id, self.provider)

        integration = await self.persistence.get_integration(self.name)
        if integration is not None:
            await self.persistence.mark_disconnected(user_id, integration.id)
        log_info("Integration disconnected", provider=self.name, user_id=user_id)

    async def _revoke(self, credential: Credential) -> None:
        """Provider-side revocation; local-only by default."""
        return None


class OAuthProvider(ProviderAdapter):
    """Authorization-code OAuth with refresh tokens."""

    authorize_url: str = ""
    token_url: str = ""
    scopes: List[str] = []
    scope_separator: str = " "
    extra_authorize_params: Dict[str, str] = {}
    use_basic_auth: bool = False

    def __init__(self, *args, refresh_lock_registry: Optional[KeyedLockRegistry] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._refresh_locks = refresh_lock_registry if refresh_lock_registry is not None else refresh_locks

    def build_authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        params.update(self.extra_authorize_params)
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        return ConnectResponse(provider=self.name, redirect_url=self.build_authorize_url(state), state=state)

    # ----------------------------------------------------------------------------
    # Token endpoint
    # ----------------------------------------------------------------------------

    async def _post_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        client = await self.get_client()
        auth = None
        if self.use_basic_auth:
            auth = (self.config.client_id, self.config.client_secret)
        else:
            data = dict(data, client_id=self.config.client_id, client_secret=self.config.client_secret)
        response = await client.post(
            self.token_url,
            data=data,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        return response.json()

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for tokens."""
        try:
            return await self._post_token({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
            })
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                raise RateLimitError(self.name, retry_after=parse_retry_after(e.response.headers.get("Retry-After"))) from e
            if status >= 500:
                raise ProviderAPIError(self.name, f"{self.display_name} token endpoint error", details=f"HTTP {status}") from e
            raise OAuthAuthenticationError(
                self.name, f"{self.display_name} rejected the authorization code (HTTP {status})"
            ) from e
        except httpx.TransportError as e:
            raise ProviderAPIError(self.name, f"{self.display_name} token endpoint unreachable", details=type(e).__name__) from e

    def _provider_user_id(self, token_data: Dict[str, Any]) -> Optional[str]:
        return None

    def credential_from_token_response(
        self,
        token_data: Dict[str, Any],
        previous: Optional[Credential] = None,
    ) -> Credential:
        """
        Build a Credential from a token endpoint response.

        Refresh responses may omit the refresh token, scope or user id; those
        keep their previous values.
        """
        access_token = token_data.get("access_token")
        if not access_token:
            raise OAuthAuthenticationError(self.name, f"{self.display_name} returned no access token")

        expires_at = token_data.get("expires_at")
        if expires_at is None and token_data.get("expires_in") is not None:
            expires_at = int(utc_now().timestamp()) + int(token_data["expires_in"])

        provider_user_id = self._provider_user_id(token_data)
        return Credential(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=int(expires_at) if expires_at is not None else None,
            scope=token_data.get("scope") or (previous.scope if previous else None),
            provider_user_id=provider_user_id or (previous.provider_user_id if previous else None),
        )

    async def _complete_callback(self, user_id: str, payload) -> None:
        token_data = await self.exchange_code(payload.code)
        credential = self.credential_from_token_response(token_data)
        try:
            credential = await self._enrich_credential(credential)
        except httpx.HTTPError as e:
            raise map_provider_error(self.name, e) from e
        await self.credentials.set(user_id, self.provider, credential)

    async def _enrich_credential(self, credential: Credential) -> Credential:
        """Hook for providers that look up the account id after the exchange."""
        return credential

    # ----------------------------------------------------------------------------
    # Refresh lifecycle
    # ----------------------------------------------------------------------------

    async def ensure_valid_credential(self, user_id: str) -> Credential:
        async with self._refresh_locks.acquire(user_id, self.provider):
            credential = await self.credentials.get(user_id, self.provider)
            if credential is None:
                raise InvalidTokenError(self.name)

            if not credential.expires_within(TOKEN_REFRESH_MARGIN_SECONDS):
                return credential

            if not credential.refresh_token:
                raise InvalidTokenError(self.name)

            try:
                token_data = await self._post_token({
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                })
                refreshed = self.credential_from_token_response(token_data, previous=credential)
            except Exception as e:
                raise map_refresh_error(self.name, e) from e

            await self.credentials.set(user_id, self.provider, refreshed)
            log_info("Access token refreshed", provider=self.name, user_id=user_id)
            return refreshed

    async def ensure_valid_access_token(self, user_id: str) -> str:
        """A usable access token, refreshed first when it is within a minute of expiry."""
        credential = await self.ensure_valid_credential(user_id)
        return credential.access_token

    async def prepare_sync(self, user_id: str) -> Credential:
        return await self.ensure_valid_credential(user_id)

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        if credential is None:
            return {}
        return {
            "token_expires_at": credential.expires_at,
            "scope": credential.scope,
            "provider_user_id": credential.provider_user_id,
        }


# ================================================================================
# HTTP HELPERS
# ================================================================================

def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def get_json(client: httpx.AsyncClient, url: str, *, token: Optional[str] = None, **kwargs) -> Any:
    """GET and decode JSON, raising httpx.HTTPStatusError on non-2xx."""
    headers = dict(kwargs.pop("headers", None) or {})
    if token:
        headers.update(bearer(token))
    response = await client.get(url, headers=headers, **kwargs)
    response.raise_for_status()
    return response.json()


async def post_json(client: httpx.AsyncClient, url: str, *, token: Optional[str] = None, **kwargs) -> Any:
    headers = dict(kwargs.pop("headers", None) or {})
    if token:
        headers.update(bearer(token))
    response = await client.post(url, headers=headers, **kwargs)
    response.raise_for_status()
    if not response.content:
        return {}
    return response.json()
