"""
FastAPI router for integration endpoints.

Endpoints:
- POST /integrations/{provider}/connect: Start a connection
- GET|POST /integrations/{provider}/callback: Complete a connection
- POST /integrations/{provider}/sync: Sync now (or enqueue with ?background=true)
- GET /integrations/{provider}/status: Connection status
- GET /integrations/status/all: Status of every provider
- POST /integrations/apple_health/upload: Device upload of HealthKit samples
- GET /integrations/{provider}/config: Connection config for mobile clients
- POST /integrations/{provider}/data: Connected user's synced items
- POST /integrations/{provider}/submit: Device or import data
- POST /integrations/{provider}/disconnect: Disconnect

Authentication:
- Every endpoint except the callback requires a valid JWT access token
- The callback identifies the user through its state token
- Users can only access their own integrations
"""
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from app.api.dependencies import get_current_user_id
from app.core.celery_app import celery_app
from app.core.logging_config import log_error, log_info
from app.integrations.schemas import (
    AppleHealthUploadRequest,
    ConnectResponse,
    ProviderDataRequest,
    StatusResult,
    SubmitDataRequest,
    SyncResult,
)
from app.integrations.service import IntegrationsService, get_integrations_service

router = APIRouter(prefix="/integrations", tags=["integrations"])

ServiceDep = Annotated[IntegrationsService, Depends(get_integrations_service)]
UserIdDep = Annotated[str, Depends(get_current_user_id)]


@router.get("/status/all", status_code=status.HTTP_200_OK)
async def get_all_statuses(user_id: UserIdDep, service: ServiceDep) -> Dict[str, Any]:
    """Status of every provider, most popular first."""
    return await service.all_statuses(user_id)


@router.post(
    "/apple_health/upload",
    response_model=SyncResult,
    responses={
        401: {"description": "Invalid or expired upload token"},
    }
)
async def upload_apple_health(
    request: AppleHealthUploadRequest,
    user_id: UserIdDep,
    service: ServiceDep,
) -> SyncResult:
    """Device upload of HealthKit samples, authorized by the upload token."""
    return await service.handle_apple_health_upload(user_id, request.upload_token, request.health_data)


@router.post(
    "/{provider}/connect",
    response_model=ConnectResponse,
    responses={
        404: {"description": "Unknown provider"},
        500: {"description": "Provider not configured"},
    }
)
async def connect(provider: str, user_id: UserIdDep, service: ServiceDep) -> ConnectResponse:
    """
    Start connecting a provider.

    Returns the redirect URL (OAuth), a link token (Plaid, Apple Music) or a
    device descriptor, plus the state token the callback must echo back.
    """
    return await service.create_connection(provider, user_id)


@router.get("/{provider}/callback")
async def callback_redirect(provider: str, request: Request, service: ServiceDep) -> Dict[str, Any]:
    """OAuth redirect target; artifacts arrive in the query string."""
    return await service.handle_callback(provider, dict(request.query_params))


@router.post("/{provider}/callback")
async def callback(
    provider: str,
    service: ServiceDep,
    payload: Annotated[Optional[Dict[str, Any]], Body()] = None,
) -> Dict[str, Any]:
    """Callback posted by a mobile client or SDK."""
    return await service.handle_callback(provider, payload)


@router.post(
    "/{provider}/sync",
    response_model=SyncResult,
    responses={
        202: {"description": "Sync queued"},
        429: {"description": "Provider rate limit"},
    }
)
async def trigger_sync(
    provider: str,
    user_id: UserIdDep,
    service: ServiceDep,
    background: bool = Query(False, description="Queue the sync on the worker instead of running it now"),
):
    """Sync one provider for the current user."""
    if background:
        adapter = service.get_provider_or_raise(provider)
        try:
            celery_app.send_task(
                "app.integrations.tasks.sync_provider_task",
                args=[user_id, adapter.name],
            )
        except Exception as e:
            log_error(e, provider=adapter.name, user_id=user_id)
            raise
        log_info("Scheduled sync", provider=adapter.name, user_id=user_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "accepted", "message": f"Sync started for {adapter.name}. Check status endpoint for results."},
        )
    return await service.sync(provider, user_id)


@router.get("/{provider}/status", response_model=StatusResult)
async def get_status(provider: str, user_id: UserIdDep, service: ServiceDep) -> StatusResult:
    return await service.status(provider, user_id)


@router.get("/{provider}/config")
async def get_config(provider: str, user_id: UserIdDep, service: ServiceDep) -> Dict[str, Any]:
    """Connection configuration for mobile clients."""
    return await service.get_integration_config(provider, user_id)


@router.post("/{provider}/data")
async def get_connected_user_data(
    provider: str,
    user_id: UserIdDep,
    service: ServiceDep,
    request: Optional[ProviderDataRequest] = None,
) -> Dict[str, Any]:
    force_sync = request.force_sync if request else False
    return await service.get_connected_user_data(provider, user_id, force_sync=force_sync)


@router.post("/{provider}/submit")
async def submit_data(
    provider: str,
    request: SubmitDataRequest,
    user_id: UserIdDep,
    service: ServiceDep,
) -> Dict[str, Any]:
    """Device or import data: location points, or a Goodreads CSV export."""
    return await service.submit_provider_data(provider, user_id, request)


@router.post("/{provider}/disconnect")
async def disconnect(provider: str, user_id: UserIdDep, service: ServiceDep) -> JSONResponse:
    result = await service.disconnect(provider, user_id)
    return JSONResponse(status_code=result["status_code"], content=result)
