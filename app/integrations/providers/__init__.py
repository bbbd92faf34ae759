"""
Provider adapters.

PROVIDER_REGISTRY maps each IntegrationProvider to its adapter class; the
service builds one adapter per provider with its typed configuration.
"""
from typing import Dict, Type

from app.integrations.base import ProviderAdapter
from app.integrations.providers.apple_health import AppleHealthProvider
from app.integrations.providers.apple_music import AppleMusicProvider
from app.integrations.providers.contacts import ContactListProvider
from app.integrations.providers.email_scraper import EmailScraperProvider
from app.integrations.providers.goodreads import GoodreadsProvider
from app.integrations.providers.location import LocationServicesProvider
from app.integrations.providers.plaid import PlaidProvider
from app.integrations.providers.spotify import SpotifyProvider
from app.integrations.providers.strava import StravaProvider
from app.models.integration import IntegrationProvider

PROVIDER_REGISTRY: Dict[IntegrationProvider, Type[ProviderAdapter]] = {
    IntegrationProvider.PLAID: PlaidProvider,
    IntegrationProvider.STRAVA: StravaProvider,
    IntegrationProvider.APPLE_HEALTH: AppleHealthProvider,
    IntegrationProvider.APPLE_MUSIC: AppleMusicProvider,
    IntegrationProvider.SPOTIFY: SpotifyProvider,
    IntegrationProvider.EMAIL_SCRAPER: EmailScraperProvider,
    IntegrationProvider.LOCATION_SERVICES: LocationServicesProvider,
    IntegrationProvider.CONTACT_LIST: ContactListProvider,
    IntegrationProvider.GOODREADS: GoodreadsProvider,
}

__all__ = [
    "PROVIDER_REGISTRY",
    "AppleHealthProvider",
    "AppleMusicProvider",
    "ContactListProvider",
    "EmailScraperProvider",
    "GoodreadsProvider",
    "LocationServicesProvider",
    "PlaidProvider",
    "SpotifyProvider",
    "StravaProvider",
]
