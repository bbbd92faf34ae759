"""
Simple health check endpoint.
"""
from datetime import datetime, timezone
from typing import Any, Annotated, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from app.core.config import settings
from app.core.database import get_session
from app.core.logging_config import log_error
from app.integrations.providers import PROVIDER_REGISTRY

router = APIRouter(tags=["health"])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", response_model=Dict[str, Any])
async def health_check(session: Annotated[Session, Depends(get_session)]):
    """
    Health check with database status.

    Returns degraded status if database is unreachable but service is running.
    """
    db_status = "connected"
    try:
        session.exec(text("SELECT 1")).first()
    except SQLAlchemyError as e:
        log_error(e, request_id=None)
        db_status = f"disconnected: {str(e)}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "timestamp": _utc_now_iso(),
        "service": settings.app_name,
        "version": settings.app_version,
        "database": db_status,
        "providers": sorted(provider.value for provider in PROVIDER_REGISTRY),
    }
