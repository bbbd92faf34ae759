"""
Database models for provider connections.

Models:
- Integration: catalog row per provider (display name, target list, popularity)
- UserIntegration: one user's link to one provider, with sync bookkeeping
- IntegrationCredential: encrypted provider credentials per (user, provider)

All tokens are encrypted using Fernet before storage and decrypted on retrieval
(see app/integrations/credentials.py).
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlmodel import Field, Index

from app.models.base import BaseModel
from app.models.list_item import JSONType


class IntegrationProvider(str, Enum):
    """
    Supported integration providers.

    Each provider has an adapter module in app/integrations/providers/.
    """
    PLAID = "plaid"
    STRAVA = "strava"
    APPLE_HEALTH = "apple_health"
    APPLE_MUSIC = "apple_music"
    SPOTIFY = "spotify"
    EMAIL_SCRAPER = "email_scraper"
    LOCATION_SERVICES = "location_services"
    CONTACT_LIST = "contact_list"
    GOODREADS = "goodreads"


class LinkStatus(str, Enum):
    """Lifecycle of a user's link to a provider."""
    PENDING = "PENDING"  # row exists, callback not yet completed
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class Integration(BaseModel, table=True):
    """
    Catalog entry for a provider.

    `popularity` counts successful connects across all users and drives the
    ordering of the combined status listing.
    """
    __tablename__ = "integration"

    name: str = Field(
        sa_column=Column(String(50), nullable=False, unique=True, index=True),
        description="Provider name (IntegrationProvider value)"
    )
    display_name: Optional[str] = Field(default=None, max_length=100)
    list_name: Optional[str] = Field(
        default=None,
        max_length=100,
        description="List this provider's items land in by default"
    )
    popularity: int = Field(default=0, ge=0)


class UserIntegration(BaseModel, table=True):
    """
    A user's connection to a provider.

    Fields:
        status: PENDING until the callback succeeds, then CONNECTED;
            DISCONNECTED after an explicit disconnect
        last_synced_at: wall-clock time of the last successful sync
        sync_watermark: timestamp of the newest record written by any sync;
            only ever moves forward and seeds the next sync window
        sync_cursors: per-stream backfill state ("before": oldest record written,
            "reached": newest) for streams that stopped at their page cap while
            paging newest first
        last_error / last_error_at: most recent sync failure
    """
    __tablename__ = "user_integration"

    user_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    integration_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("integration.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    status: LinkStatus = Field(
        default=LinkStatus.PENDING,
        sa_column=Column(String(20), nullable=False, default=LinkStatus.PENDING.value),
    )
    connected_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    last_connected_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    last_synced_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    sync_watermark: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    sync_cursors: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSONType, nullable=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    last_error_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    __table_args__ = (
        # One link per user per provider
        UniqueConstraint("user_id", "integration_id", name="uq_user_integration"),
        # Scheduled sync scans connected links
        Index("idx_user_integration_status", "status"),
    )

    @property
    def is_connected(self) -> bool:
        return self.status == LinkStatus.CONNECTED


class IntegrationCredential(BaseModel, table=True):
    """
    Encrypted provider credentials.

    Security:
        - Tokens are encrypted using Fernet (core/encryption.py)
        - Changing SECRET_KEY invalidates all encrypted tokens
        - Never expose encrypted tokens in API responses
    """
    __tablename__ = "integration_credential"

    user_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    provider: str = Field(sa_column=Column(String(50), nullable=False, index=True))

    # Encrypted tokens (stored as text to accommodate variable-length encrypted data)
    access_token_encrypted: str = Field(sa_column=Column(Text, nullable=False))
    refresh_token_encrypted: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    expires_at: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, nullable=True),
        description="Access token expiry in epoch seconds"
    )
    scope: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    provider_user_id: Optional[str] = Field(default=None, max_length=255)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_credential_user_provider"),
    )
