"""
Background tasks for integration synchronization.

Architecture:
- sync_provider_task: Sync a specific provider for a user
- sync_all_providers_task: Sync every connected link (scheduled job)
- _run_async: Runs the async service call to completion inside the worker

Scheduling:
    Celery Beat runs sync_all_providers_task every
    INTEGRATION_SYNC_INTERVAL_HOURS hours (see app/core/celery_app.py).
"""
import asyncio
from typing import Any, Awaitable, Callable

from app.core.celery_app import celery_app
from app.core.exceptions import IntegrationException
from app.core.logging_config import log_error, log_info
from app.integrations.service import get_integrations_service
from app.models.integration import IntegrationProvider


def _run_async(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    log_info(f"Starting background task: {task_func.__name__}")
    try:
        result = asyncio.run(task_func(*args, **kwargs))
        log_info(f"Completed background task: {task_func.__name__}")
        return result
    except Exception as e:
        log_error(e, task_name=task_func.__name__)
        raise


async def _sync_provider_task(user_id: str, provider: IntegrationProvider) -> dict:
    """
    Sync one provider for one user.

    Failures are already recorded on the link (last_error) by the sync
    engine; the task reports them in its result instead of retrying.
    """
    service = get_integrations_service()
    log_info(f"Syncing {provider.value} for user {user_id}")
    try:
        result = await service.sync(provider.value, user_id)
    except IntegrationException as e:
        log_error(e, provider=provider.value, user_id=user_id)
        return {"ok": False, "provider": provider.value, "error_code": e.error_code, "error": e.message}
    log_info(f"Successfully synced {provider.value} for user {user_id}")
    return {"ok": True, "provider": provider.value, "details": result.details}


async def _sync_all_providers_task() -> dict:
    log_info("Starting scheduled sync for all connected integrations")
    return await get_integrations_service().sync_all()


@celery_app.task(name="app.integrations.tasks.sync_provider_task")
def sync_provider_task(user_id: str, provider: str) -> dict:
    try:
        provider_enum = IntegrationProvider(provider)
    except ValueError as e:
        log_error(e, provider=provider, user_id=user_id)
        return {"ok": False, "provider": provider, "error": f"Unknown provider: {provider}"}

    return _run_async(_sync_provider_task, user_id=user_id, provider=provider_enum)


@celery_app.task(name="app.integrations.tasks.sync_all_providers_task")
def sync_all_providers_task() -> dict:
    return _run_async(_sync_all_providers_task)
