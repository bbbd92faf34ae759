"""
Pydantic schemas for integration API requests and responses.

Callback Payloads:
- CallbackPayload: discriminated union keyed by `provider`; each variant
  names exactly the artifacts that provider's callback must carry

Request Schemas:
- AppleHealthUploadRequest, ProviderDataRequest, SubmitDataRequest

Response Schemas:
- ConnectResponse, SyncResult, StatusResult

Design Principles:
- Never expose credentials in responses
- Accept both snake_case and the camelCase names mobile clients send
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ================================================================================
# CALLBACK PAYLOADS
# ================================================================================

class _CallbackBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    state: str = Field(..., min_length=1, description="State token minted by create_connection")


class OAuthCallback(_CallbackBase):
    """Authorization-code redirect (Strava, Spotify, Gmail, Google Contacts)."""
    provider: Literal["strava", "spotify", "email_scraper", "contact_list"]
    code: str = Field(..., min_length=1)
    scope: Optional[str] = None


class PlaidCallback(_CallbackBase):
    """Plaid Link success: a public token to exchange for an access token."""
    provider: Literal["plaid"]
    public_token: str = Field(..., min_length=1, validation_alias=AliasChoices("public_token", "publicToken"))
    metadata: Optional[Dict[str, Any]] = None


class AppleHealthCallback(_CallbackBase):
    provider: Literal["apple_health"]
    upload_token: str = Field(..., min_length=1, validation_alias=AliasChoices("upload_token", "uploadToken"))
    health_data: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("health_data", "healthData")
    )


class AppleMusicCallback(_CallbackBase):
    provider: Literal["apple_music"]
    music_user_token: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("music_user_token", "musicUserToken")
    )


class LocationCallback(_CallbackBase):
    provider: Literal["location_services"]
    permissions: Optional[Dict[str, Any]] = None


GOODREADS_DOMAIN = "goodreads.com"


def is_goodreads_url(url: str) -> bool:
    """http(s) URL on goodreads.com or one of its subdomains."""
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    return host == GOODREADS_DOMAIN or host.endswith("." + GOODREADS_DOMAIN)


class GoodreadsCallback(_CallbackBase):
    provider: Literal["goodreads"]
    rss_feed_url: str = Field(..., min_length=1, validation_alias=AliasChoices("rss_feed_url", "rssFeedUrl"))

    @field_validator("rss_feed_url")
    @classmethod
    def validate_feed_url(cls, v: str) -> str:
        v = v.strip()
        if not is_goodreads_url(v):
            raise ValueError("rss_feed_url must be an http(s) URL on goodreads.com")
        return v


CallbackPayload = Annotated[
    Union[
        OAuthCallback,
        PlaidCallback,
        AppleHealthCallback,
        AppleMusicCallback,
        LocationCallback,
        GoodreadsCallback,
    ],
    Field(discriminator="provider"),
]


# ================================================================================
# REQUEST SCHEMAS
# ================================================================================

class AppleHealthUploadRequest(BaseModel):
    """Device upload of HealthKit samples."""
    model_config = ConfigDict(populate_by_name=True)

    upload_token: str = Field(..., min_length=1, validation_alias=AliasChoices("upload_token", "uploadToken"))
    health_data: Dict[str, Any] = Field(..., validation_alias=AliasChoices("health_data", "healthData"))


class ProviderDataRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_sync: bool = Field(default=False, validation_alias=AliasChoices("force_sync", "forceSync"))


class LocationPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None
    accuracy: Optional[float] = None


class SubmitDataRequest(BaseModel):
    """
    Device or import data pushed by the client.

    Location services submit `locations`; Goodreads submits `csv`
    (a Goodreads library export).
    """
    locations: Optional[List[LocationPoint]] = None
    csv: Optional[str] = None


# ================================================================================
# RESPONSE SCHEMAS
# ================================================================================

class ConnectResponse(BaseModel):
    """
    Result of starting a connection.

    OAuth providers return `redirect_url`; Plaid and Apple Music also return a
    `link_token` for their client SDKs.
    """
    provider: str
    redirect_url: Optional[str] = None
    link_token: Optional[str] = None
    state: str
    details: Optional[Dict[str, Any]] = None


class SyncResult(BaseModel):
    ok: bool = True
    synced_at: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class StatusResult(BaseModel):
    connected: bool
    last_synced_at: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)
