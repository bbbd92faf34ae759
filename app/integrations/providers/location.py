"""
Location services adapter.

Devices submit raw GPS points; they are queued in the location data store
until the next sync, which reverse-geocodes each point (Google Geocoding
API) and files the resulting place under a list by place type.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from app.core.exceptions import ProviderAPIError, RateLimitError
from app.core.logging_config import log_info
from app.core.scoped_cache import ScopedCache
from app.core.time_utils import parse_datetime, serialize_datetime, utc_now
from app.integrations.base import ProviderAdapter, get_json
from app.integrations.config import LocationConfig
from app.integrations.credentials import Credential
from app.integrations.schemas import ConnectResponse, LocationPoint, SyncResult
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GEOCODE_BATCH_SIZE = 25
PENDING_POINTS = "pending_points"

# (Google result types, place type), first match wins
PLACE_TYPE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("restaurant",), "restaurant"),
    (("cafe",), "cafe"),
    (("park",), "park"),
    (("museum",), "museum"),
    (("shopping_mall", "store"), "shopping"),
    (("gym",), "gym"),
    (("airport",), "airport"),
    (("lodging", "hotel"), "hotel"),
    (("point_of_interest",), "point_of_interest"),
)

PLACE_CATEGORIES: Dict[str, Tuple[str, str]] = {
    "restaurant": ("Food", "Restaurants"),
    "cafe": ("Food", "Coffee Shops"),
    "park": ("Places", "Parks"),
    "museum": ("Places", "Museums"),
    "shopping": ("Places", "Shopping"),
    "gym": ("Places", "Gyms"),
    "airport": ("Travel", "Airport"),
    "hotel": ("Travel", "Accommodation"),
}
DEFAULT_PLACE_CATEGORY = ("Places", "Visited Location")


def place_type_for(result_types: Iterable[str]) -> str:
    result_types = set(result_types or [])
    for google_types, place_type in PLACE_TYPE_RULES:
        if result_types.intersection(google_types):
            return place_type
    return ""


def location_key(latitude: float, longitude: float) -> str:
    return f"location-{latitude:.4f}-{longitude:.4f}"


def parse_geocode_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Geocoding API result into the place fields we store."""
    place = {"name": "", "address": result.get("formatted_address") or "", "city": "", "state": "",
             "country": "", "postal_code": ""}
    for component in result.get("address_components") or []:
        types = component.get("types") or []
        if "locality" in types:
            place["city"] = component.get("long_name", "")
        elif "administrative_area_level_1" in types:
            place["state"] = component.get("short_name", "")
        elif "country" in types:
            place["country"] = component.get("long_name", "")
        elif "postal_code" in types:
            place["postal_code"] = component.get("long_name", "")
        elif "point_of_interest" in types or "establishment" in types:
            place["name"] = component.get("long_name", "")

    if not place["name"]:
        place["name"] = place["address"].split(",")[0]
    place["place_type"] = place_type_for(result.get("types"))
    return place


# ================================================================================
# PENDING POINT STORE
# ================================================================================

class LocationDataStore(ScopedCache):
    """Per-user queue of submitted location points awaiting the next sync."""

    def __init__(self, cache_backend=None):
        super().__init__(namespace="location", cache_backend=cache_backend)

    def get_points(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self.get(user_id, PENDING_POINTS) or [])

    def add_points(self, user_id: str, points: List[Dict[str, Any]]) -> int:
        """Append points to the queue; returns the queue length."""
        queued = self.get_points(user_id) + points
        self.set(user_id, PENDING_POINTS, queued)
        return len(queued)

    def discard(self, user_id: str, processed: List[Dict[str, Any]]) -> None:
        """Drop processed points, keeping anything submitted since they were read."""
        remaining = [point for point in self.get_points(user_id) if point not in processed]
        if remaining:
            self.set(user_id, PENDING_POINTS, remaining)
        else:
            self.delete(user_id, PENDING_POINTS)

    def clear(self, user_id: str) -> None:
        self.delete(user_id, PENDING_POINTS)


# ================================================================================
# STREAM
# ================================================================================

class PlacesStream(SyncStream):
    name = "places"

    def __init__(self, adapter: "LocationServicesProvider", points: List[Dict[str, Any]]):
        self._adapter = adapter
        self._points = points
        # Points handed to the engine; the rest stay queued past the page cap
        self.consumed: List[Dict[str, Any]] = []

    async def fetch(self, context: SyncContext):
        for start in range(0, len(self._points), GEOCODE_BATCH_SIZE):
            batch = []
            for point in self._points[start:start + GEOCODE_BATCH_SIZE]:
                place = await self._adapter.reverse_geocode(context.client, point["latitude"], point["longitude"])
                batch.append({"point": point, "place": place})
            self.consumed.extend(record["point"] for record in batch)
            yield batch

    def classify(self, record, context) -> Classification:
        place = record.get("place") or {}
        list_name, category_name = PLACE_CATEGORIES.get(place.get("place_type"), DEFAULT_PLACE_CATEGORY)
        return Classification(list_name=list_name, category_name=category_name)

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        place = record.get("place")
        if not place:
            return None
        point = record["point"]
        visited_at = parse_datetime(point.get("timestamp"))
        return NormalizedItem(
            title=f"{place['name']} | {classification.category_name}",
            external_id=location_key(point["latitude"], point["longitude"]),
            external_type="place",
            attributes={
                "name": place["name"],
                "address": place["address"],
                "city": place["city"],
                "state": place["state"],
                "country": place["country"],
                "postal_code": place["postal_code"],
                "place_type": place["place_type"],
                "latitude": point["latitude"],
                "longitude": point["longitude"],
                "visited_at": serialize_datetime(visited_at),
            },
            attribute_types={
                "latitude": "number",
                "longitude": "number",
                "visited_at": "datetime",
            },
            occurred_at=visited_at,
        )


# ================================================================================
# ADAPTER
# ================================================================================

class LocationServicesProvider(ProviderAdapter):
    provider = IntegrationProvider.LOCATION_SERVICES
    display_name = "Location Services"
    list_name = "Places"
    requires_credential = False
    sync_after_callback = False

    config: LocationConfig

    def __init__(self, *args, store: Optional[LocationDataStore] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.store = store or LocationDataStore()

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        # Device permission flow: nothing to redirect to
        return ConnectResponse(
            provider=self.name,
            state=state,
            details={
                "requires_device_permission": True,
                "submit_endpoint": f"/integrations/{self.name}/submit",
                "supported_place_types": sorted(PLACE_CATEGORIES),
            },
        )

    async def _complete_callback(self, user_id: str, payload) -> None:
        log_info(
            "Location permissions granted",
            provider=self.name, user_id=user_id, permissions=payload.permissions or {},
        )

    async def reverse_geocode(self, client: httpx.AsyncClient, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        """Place fields for a coordinate, or None when Google has no result."""
        try:
            data = await get_json(
                client,
                GEOCODE_URL,
                params={"latlng": f"{latitude},{longitude}", "key": self.config.google_maps_api_key},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 403:
                raise ProviderAPIError(
                    self.name, "Google Maps API access denied. Please check API key configuration."
                ) from e
            raise

        status = data.get("status")
        if status == "OVER_QUERY_LIMIT":
            raise RateLimitError(self.name)
        if status == "REQUEST_DENIED":
            raise ProviderAPIError(self.name, "Google Maps API access denied. Please check API key configuration.")
        if status == "INVALID_REQUEST":
            raise ProviderAPIError(self.name, "Invalid location coordinates provided.")
        if status != "OK" or not data.get("results"):
            return None
        return parse_geocode_result(data["results"][0])

    async def submit_locations(self, user_id: str, points: List[LocationPoint]) -> Dict[str, Any]:
        """Queue device points for the next sync."""
        if not points:
            return {"ok": True, "details": {"locations_stored": 0, "message": "No locations to store"}}

        submitted_at = serialize_datetime(utc_now())
        queued = [
            {
                "latitude": point.latitude,
                "longitude": point.longitude,
                "timestamp": serialize_datetime(point.timestamp) if point.timestamp else submitted_at,
                "accuracy": point.accuracy,
            }
            for point in points
        ]
        pending = self.store.add_points(user_id, queued)
        log_info("Location points queued", provider=self.name, user_id=user_id, count=len(queued), pending=pending)
        return {"ok": True, "details": {"locations_stored": len(queued), "pending": pending}}

    async def sync(self, user_id: str) -> SyncResult:
        points = self.store.get_points(user_id)
        if points:
            self.check_configuration()
        stream = PlacesStream(self, points)
        result = await self.engine.run(self, user_id, streams=[stream])
        self.store.discard(user_id, stream.consumed)
        return result

    async def disconnect(self, user_id: str) -> None:
        self.store.clear(user_id)
        await super().disconnect(user_id)

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        return {"pending_locations": len(self.store.get_points(user_id))}
