"""
Integration service layer.

This module orchestrates integration operations across all providers.
It provides a unified interface for connecting, syncing, and querying integrations
regardless of the underlying provider.

Architecture:
- PROVIDER_REGISTRY (app/integrations/providers): provider enum → adapter class
- IntegrationsService: dispatch, combined status listing, mobile config,
  device uploads and data submission
- Adapters: provider-specific API calls, driven by the shared sync engine

Design Principles:
- Thin service layer → delegate to adapters
- Centralized error handling and logging
- Adapters are built once per service with their typed configuration

Extension Points:
- Add new providers to PROVIDER_REGISTRY
- No changes to service.py required for new providers
"""
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    DataSyncError,
    DataValidationError,
    IntegrationException,
    ProviderNotFoundError,
)
from app.core.logging_config import log_error, log_info, log_warning
from app.core.time_utils import serialize_datetime
from app.integrations.base import ProviderAdapter
from app.integrations.callbacks import parse_callback
from app.integrations.credentials import CredentialStore, DatabaseCredentialStore
from app.integrations.persistence import IntegrationPersistence
from app.integrations.providers import PROVIDER_REGISTRY
from app.integrations.schemas import ConnectResponse, StatusResult, SubmitDataRequest, SyncResult
from app.integrations.sync_engine import SyncEngine
from app.models.integration import IntegrationProvider

TOP_INTEGRATIONS_COUNT = 3

PROVIDER_LISTS = {
    IntegrationProvider.SPOTIFY: "Music",
    IntegrationProvider.APPLE_MUSIC: "Music",
    IntegrationProvider.STRAVA: "Activity",
    IntegrationProvider.PLAID: "Financial",
    IntegrationProvider.EMAIL_SCRAPER: "Email",
    IntegrationProvider.CONTACT_LIST: "Friends",
    IntegrationProvider.APPLE_HEALTH: "Health",
    IntegrationProvider.LOCATION_SERVICES: "Places",
    IntegrationProvider.GOODREADS: "Books",
}


def format_provider_name(provider: str) -> str:
    """'apple_health' -> 'Apple Health'."""
    provider = str(getattr(provider, "value", provider))
    return " ".join(word.capitalize() for word in provider.split("_"))


def map_provider_to_list(provider: str) -> str:
    try:
        return PROVIDER_LISTS.get(IntegrationProvider(str(getattr(provider, "value", provider))), "Other")
    except ValueError:
        return "Other"


def _serialize_item(item) -> Dict[str, Any]:
    return {
        "id": str(item.id),
        "title": item.title,
        "external_type": item.external_type,
        "external_id": item.external_id,
        "attributes": item.attributes or {},
        "occurred_at": serialize_datetime(item.occurred_at),
    }


class IntegrationsService:
    """Dispatches integration operations to provider adapters."""

    def __init__(
        self,
        persistence: Optional[IntegrationPersistence] = None,
        credentials: Optional[CredentialStore] = None,
        *,
        app_settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        adapters: Optional[Mapping[IntegrationProvider, ProviderAdapter]] = None,
    ):
        self.settings = app_settings or default_settings
        self.persistence = persistence or IntegrationPersistence()
        self.credentials = credentials or DatabaseCredentialStore()
        self.engine = SyncEngine(self.persistence)
        if adapters is not None:
            self.providers: Dict[IntegrationProvider, ProviderAdapter] = dict(adapters)
        else:
            self.providers = {
                provider: self._build_adapter(provider, http_client) for provider in PROVIDER_REGISTRY
            }

    def _build_adapter(self, provider: IntegrationProvider, http_client: Optional[httpx.AsyncClient]) -> ProviderAdapter:
        adapter_cls = PROVIDER_REGISTRY[provider]
        return adapter_cls(
            self.settings.provider_config(provider),
            self.persistence,
            self.credentials,
            http_client=http_client,
            engine=self.engine,
            state_secret=self.settings.secret_key if self.settings.state_token_signing else None,
            state_max_age_seconds=self.settings.state_token_max_age_seconds,
        )

    def get_provider_or_raise(self, name) -> ProviderAdapter:
        name = str(getattr(name, "value", name))
        try:
            provider = IntegrationProvider(name)
        except ValueError:
            raise ProviderNotFoundError(name) from None
        adapter = self.providers.get(provider)
        if adapter is None:
            raise ProviderNotFoundError(name)
        return adapter

    # ================================================================================
    # CONTRACT DISPATCH
    # ================================================================================

    async def create_connection(self, provider: str, user_id: str) -> ConnectResponse:
        log_info("Creating connection", provider=provider, user_id=user_id)
        return await self.get_provider_or_raise(provider).create_connection(user_id)

    async def handle_callback(self, provider: str, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Validate a raw callback into its typed payload and complete the connection."""
        adapter = self.get_provider_or_raise(provider)
        payload = parse_callback(adapter.name, raw)
        await adapter.handle_callback(payload)
        return {"ok": True, "provider": adapter.name, "message": "Integration connected successfully"}

    async def sync(self, provider: str, user_id: str) -> SyncResult:
        adapter = self.get_provider_or_raise(provider)
        try:
            result = await adapter.sync(user_id)
        except IntegrationException:
            raise
        except Exception as e:
            log_error(e, provider=adapter.name, user_id=user_id)
            raise DataSyncError(adapter.name, str(e)) from e

        if not result.ok:
            raise DataSyncError(adapter.name, (result.details or {}).get("error") or "Sync failed")
        return result

    async def status(self, provider: str, user_id: str) -> StatusResult:
        return await self.get_provider_or_raise(provider).status(user_id)

    async def disconnect(self, provider: str, user_id: str) -> Dict[str, Any]:
        adapter = self.get_provider_or_raise(provider)
        current = await adapter.status(user_id)
        # A CONNECTED link stays disconnectable after its credential is gone
        if not current.connected and not await self._link_is_connected(adapter.name, user_id):
            log_warning("Disconnect requested for unconnected provider", provider=adapter.name, user_id=user_id)
            return {
                "status_code": 400,
                "connection_status": "not_connected",
                "message": f"Not connected to {adapter.name}",
            }

        await adapter.disconnect(user_id)
        return {
            "status_code": 200,
            "connection_status": "disconnected",
            "message": f"Successfully disconnected from {adapter.name}",
        }

    async def _link_is_connected(self, provider: str, user_id: str) -> bool:
        integration = await self.persistence.get_integration(provider)
        if integration is None:
            return False
        link = await self.persistence.get_link(user_id, integration.id)
        return link is not None and link.is_connected

    # ================================================================================
    # COMBINED STATUS
    # ================================================================================

    async def all_statuses(self, user_id: str) -> Dict[str, Any]:
        """
        Status of every provider for one user.

        A provider whose status check fails is reported as not connected with
        its error; the others are unaffected. Results are ordered by
        popularity: the first three are `top_integrations`, the rest are
        grouped by their target list.
        """
        statuses: List[Dict[str, Any]] = []
        for provider, adapter in self.providers.items():
            entry = {
                "provider": provider.value,
                "provider_name": format_provider_name(provider.value),
            }
            try:
                result = await adapter.status(user_id)
                entry.update(
                    connected=result.connected,
                    last_synced_at=result.last_synced_at,
                    popularity=(result.details or {}).get("popularity"),
                    details=result.details,
                )
            except Exception as e:
                log_error(e, provider=provider.value, user_id=user_id)
                entry.update(
                    connected=False,
                    last_synced_at=None,
                    popularity=None,
                    error=str(e) or "Failed to retrieve status",
                )
            statuses.append(entry)

        statuses.sort(
            key=lambda s: s["popularity"] if s.get("popularity") is not None else float("-inf"),
            reverse=True,
        )

        integrations_by_list: Dict[str, List[Dict[str, Any]]] = {}
        for entry in statuses[TOP_INTEGRATIONS_COUNT:]:
            integrations_by_list.setdefault(map_provider_to_list(entry["provider"]), []).append(entry)

        return {
            "user_id": user_id,
            "top_integrations": statuses[:TOP_INTEGRATIONS_COUNT],
            "integrations_by_list": integrations_by_list,
            "total_integrations": len(statuses),
            "connected_integrations": sum(1 for s in statuses if s["connected"]),
        }

    # ================================================================================
    # MOBILE CLIENT SUPPORT
    # ================================================================================

    async def get_integration_config(self, provider: str, user_id: str) -> Dict[str, Any]:
        """Connection configuration a mobile client needs for one provider."""
        adapter = self.get_provider_or_raise(provider)
        current = await adapter.status(user_id)
        details = current.details or {}
        config: Dict[str, Any] = {
            "provider": adapter.name,
            "connected": current.connected,
            "last_synced_at": current.last_synced_at,
        }

        if adapter.provider == IntegrationProvider.APPLE_HEALTH:
            config.update(
                upload_endpoint=adapter.config.upload_endpoint or f"/integrations/{adapter.name}/upload",
                upload_token=details.get("upload_token"),
                supported_data_types=["workouts", "health_metrics", "steps", "heart_rate", "sleep"],
            )
        elif adapter.provider == IntegrationProvider.APPLE_MUSIC:
            config.update(
                authorization_url="https://authorize.music.apple.com/woa",
                supported_data_types=["recently_played", "library_songs", "playlists"],
                details=details,
            )
        elif adapter.provider == IntegrationProvider.STRAVA:
            config.update(
                authorization_url=adapter.authorize_url,
                supported_data_types=["activities"],
            )
        else:
            config["details"] = details
        return config

    async def handle_apple_health_upload(self, user_id: str, upload_token: str, health_data: Dict[str, Any]) -> SyncResult:
        adapter = self.get_provider_or_raise(IntegrationProvider.APPLE_HEALTH)
        if not hasattr(adapter, "handle_data_upload"):
            raise DataValidationError(adapter.name, "Apple Health provider does not support data upload")
        return await adapter.handle_data_upload(user_id, upload_token, health_data)

    async def submit_provider_data(self, provider: str, user_id: str, payload: SubmitDataRequest) -> Dict[str, Any]:
        """Device or import data: location points, or a Goodreads library export."""
        adapter = self.get_provider_or_raise(provider)

        if adapter.provider == IntegrationProvider.LOCATION_SERVICES:
            if payload.locations is None:
                raise DataValidationError(adapter.name, "Expected a list of locations")
            return await adapter.submit_locations(user_id, payload.locations)

        if adapter.provider == IntegrationProvider.GOODREADS:
            if not payload.csv:
                raise DataValidationError(adapter.name, "Expected a Goodreads CSV export")
            result = await adapter.import_csv(user_id, payload.csv)
            return {"ok": result.ok, "synced_at": result.synced_at, "details": result.details}

        raise DataValidationError(adapter.name, f"{format_provider_name(adapter.name)} does not accept submitted data")

    async def get_connected_user_data(self, provider: str, user_id: str, force_sync: bool = False) -> Dict[str, Any]:
        """Items a connected user has from one provider, optionally refreshed first."""
        adapter = self.get_provider_or_raise(provider)
        current = await adapter.status(user_id)
        if not current.connected:
            return {
                "ok": False,
                "connected": False,
                "message": f"User is not connected to {adapter.name}. Please connect first.",
                "data": None,
            }

        last_synced_at = current.last_synced_at
        if force_sync:
            try:
                result = await self.sync(adapter.name, user_id)
                last_synced_at = result.synced_at
            except IntegrationException as e:
                # Stored items are still returned when the refresh fails
                log_warning("Sync before data fetch failed", provider=adapter.name, user_id=user_id, error=e.message)

        items = await self.persistence.list_items(user_id, provider=adapter.name)
        return {
            "ok": True,
            "connected": True,
            "provider": adapter.name,
            "last_synced_at": last_synced_at,
            "data": {
                "items": [_serialize_item(item) for item in items],
                "total_items": len(items),
                "by_type": dict(Counter(item.external_type for item in items)),
            },
        }

    # ================================================================================
    # BACKGROUND SYNC
    # ================================================================================

    async def sync_all(self) -> Dict[str, Any]:
        """Sync every connected (user, provider) link; one failure does not stop the rest."""
        links = await self.persistence.list_connected_links()
        succeeded, failed = 0, []
        for user_id, provider in links:
            try:
                await self.sync(provider, user_id)
                succeeded += 1
            except IntegrationException as e:
                failed.append({"user_id": user_id, "provider": provider, "error": e.message})
        log_info("Scheduled sync finished", total=len(links), succeeded=succeeded, failed=len(failed))
        return {"total": len(links), "succeeded": succeeded, "failed": failed}


_service: Optional[IntegrationsService] = None


def get_integrations_service() -> IntegrationsService:
    """Process-wide service instance (FastAPI dependency, Celery tasks, CLI)."""
    global _service
    if _service is None:
        _service = IntegrationsService()
    return _service


def reset_integrations_service() -> None:
    global _service
    _service = None
