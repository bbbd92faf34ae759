"""
Unit tests for location services: point queueing, reverse geocoding and place filing.
"""
from datetime import datetime, timezone

import pytest

from app.core.cache import InMemoryCache
from app.core.exceptions import ConfigurationError, ProviderAPIError, RateLimitError
from app.integrations.callbacks import parse_callback
from app.integrations.config import LocationConfig
from app.integrations.locks import KeyedLockRegistry
from app.integrations.providers.location import (
    GEOCODE_BATCH_SIZE,
    GEOCODE_URL,
    LocationDataStore,
    LocationServicesProvider,
    location_key,
    parse_geocode_result,
    place_type_for,
)
from app.integrations.schemas import LocationPoint
from app.integrations.sync_engine import SyncEngine

CAFE_RESULT = {
    "formatted_address": "1 Main St, Springfield, IL 62701, USA",
    "types": ["cafe", "food", "point_of_interest", "establishment"],
    "address_components": [
        {"long_name": "Blue Bottle", "types": ["point_of_interest", "establishment"]},
        {"long_name": "Springfield", "types": ["locality", "political"]},
        {"long_name": "Illinois", "short_name": "IL", "types": ["administrative_area_level_1"]},
        {"long_name": "United States", "short_name": "US", "types": ["country"]},
        {"long_name": "62701", "types": ["postal_code"]},
    ],
}

STREET_RESULT = {
    "formatted_address": "42 Elm St, Springfield, IL 62701, USA",
    "types": ["street_address"],
    "address_components": [{"long_name": "Springfield", "types": ["locality"]}],
}


def make_location(persistence, credential_store, http_client, sync_engine, api_key="maps-key"):
    return LocationServicesProvider(
        LocationConfig(google_maps_api_key=api_key),
        persistence,
        credential_store,
        http_client=http_client,
        engine=sync_engine,
        store=LocationDataStore(cache_backend=InMemoryCache()),
    )


@pytest.fixture
def location(persistence, credential_store, http_client, sync_engine):
    return make_location(persistence, credential_store, http_client, sync_engine)


def _points(*coordinates):
    return [
        LocationPoint(latitude=lat, longitude=lon, timestamp=datetime(2024, 3, 1, 12, tzinfo=timezone.utc))
        for lat, lon in coordinates
    ]


class TestGeocodeParsing:

    def test_parse_cafe(self):
        place = parse_geocode_result(CAFE_RESULT)

        assert place["name"] == "Blue Bottle"
        assert place["city"] == "Springfield"
        assert place["state"] == "IL"
        assert place["country"] == "United States"
        assert place["postal_code"] == "62701"
        assert place["place_type"] == "cafe"

    def test_name_falls_back_to_address(self):
        place = parse_geocode_result(STREET_RESULT)

        assert place["name"] == "42 Elm St"
        assert place["place_type"] == ""

    @pytest.mark.parametrize("types, expected", [
        (["restaurant", "food"], "restaurant"),
        (["store", "clothing_store"], "shopping"),
        (["lodging"], "hotel"),
        (["tourist_attraction", "point_of_interest"], "point_of_interest"),
        ([], ""),
    ])
    def test_place_types(self, types, expected):
        assert place_type_for(types) == expected

    def test_location_key_rounds_to_four_places(self):
        assert location_key(37.774929, -122.419416) == "location-37.7749--122.4194"


class TestLocationSubmitAndSync:

    @pytest.mark.asyncio
    async def test_connect_and_callback(self, location, persistence):
        connection = await location.create_connection("user-1")
        assert connection.redirect_url is None
        assert connection.details["requires_device_permission"] is True

        await location.handle_callback(parse_callback("location_services", {
            "state": connection.state, "permissions": {"always": True},
        }))

        status = await location.status("user-1")
        assert status.connected is True
        assert status.details["pending_locations"] == 0

    @pytest.mark.asyncio
    async def test_submit_queues_points(self, location):
        result = await location.submit_locations("user-1", _points((1.0, 2.0), (3.0, 4.0)))

        assert result["details"] == {"locations_stored": 2, "pending": 2}
        assert len(location.store.get_points("user-1")) == 2

    @pytest.mark.asyncio
    async def test_submit_nothing(self, location):
        result = await location.submit_locations("user-1", [])
        assert result["details"]["locations_stored"] == 0

    @pytest.mark.asyncio
    async def test_sync_geocodes_and_files_places(self, location, routes, persistence):
        routes.add("GET", GEOCODE_URL, json={"status": "OK", "results": [CAFE_RESULT]})
        routes.add("GET", GEOCODE_URL, json={"status": "ZERO_RESULTS", "results": []})
        await location.submit_locations("user-1", _points((39.78, -89.65), (0.0, 0.0)))

        result = await location.sync("user-1")

        assert result.details["created"] == 1
        assert result.details["skipped"] == 1
        request = routes.calls("GET", GEOCODE_URL)[0]
        assert request.url.params["latlng"] == "39.78,-89.65"
        assert request.url.params["key"] == "maps-key"

        item = (await persistence.list_items("user-1", list_name="Food"))[0]
        assert item.title == "Blue Bottle | Coffee Shops"
        assert item.external_id == "location-39.7800--89.6500"
        assert item.attributes["visited_at"] == "2024-03-01T12:00:00Z"
        assert location.store.get_points("user-1") == []

    @pytest.mark.asyncio
    async def test_same_spot_is_one_place(self, location, routes, persistence):
        routes.add("GET", GEOCODE_URL, json={"status": "OK", "results": [STREET_RESULT]})
        await location.submit_locations("user-1", _points((39.78, -89.65), (39.78, -89.65)))

        result = await location.sync("user-1")

        assert result.details["created"] == 1
        assert result.details["unchanged"] == 1
        assert len(await persistence.list_items("user-1", list_name="Places")) == 1

    @pytest.mark.asyncio
    async def test_quota_exhausted_keeps_points(self, location, routes):
        routes.add("GET", GEOCODE_URL, json={"status": "OVER_QUERY_LIMIT"})
        await location.submit_locations("user-1", _points((1.0, 2.0)))

        with pytest.raises(RateLimitError):
            await location.sync("user-1")

        assert len(location.store.get_points("user-1")) == 1

    @pytest.mark.asyncio
    async def test_points_past_page_cap_stay_queued(self, persistence, credential_store, http_client, routes):
        engine = SyncEngine(persistence, locks=KeyedLockRegistry("test-location"), default_max_pages=1)
        location = make_location(persistence, credential_store, http_client, engine)
        routes.add("GET", GEOCODE_URL, json={"status": "OK", "results": [STREET_RESULT]})
        await location.submit_locations("user-1", _points(*[(float(i), float(i)) for i in range(30)]))

        first = await location.sync("user-1")

        assert first.details["fetched"] == GEOCODE_BATCH_SIZE
        pending = location.store.get_points("user-1")
        assert [point["latitude"] for point in pending] == [float(i) for i in range(25, 30)]

        second = await location.sync("user-1")

        assert second.details["fetched"] == 5
        assert location.store.get_points("user-1") == []
        assert len(routes.calls("GET", GEOCODE_URL)) == 30

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        {"status_code": 200, "json": {"status": "REQUEST_DENIED"}},
        {"status_code": 200, "json": {"status": "INVALID_REQUEST"}},
        {"status_code": 403, "json": {}},
    ])
    async def test_rejected_requests(self, location, routes, response):
        routes.add("GET", GEOCODE_URL, **response)
        await location.submit_locations("user-1", _points((1.0, 2.0)))

        with pytest.raises(ProviderAPIError):
            await location.sync("user-1")

    @pytest.mark.asyncio
    async def test_sync_without_points_needs_no_key(self, persistence, credential_store, http_client, sync_engine, routes):
        adapter = make_location(persistence, credential_store, http_client, sync_engine, api_key=None)

        result = await adapter.sync("user-1")

        assert result.details["fetched"] == 0
        assert routes.requests == []

    @pytest.mark.asyncio
    async def test_points_without_key(self, persistence, credential_store, http_client, sync_engine):
        adapter = make_location(persistence, credential_store, http_client, sync_engine, api_key=None)
        await adapter.submit_locations("user-1", _points((1.0, 2.0)))

        with pytest.raises(ConfigurationError):
            await adapter.sync("user-1")

    @pytest.mark.asyncio
    async def test_disconnect_drops_pending_points(self, location):
        await location.submit_locations("user-1", _points((1.0, 2.0)))

        await location.disconnect("user-1")

        assert location.store.get_points("user-1") == []


class TestLocationDataStore:

    def test_discard_keeps_points_submitted_meanwhile(self):
        store = LocationDataStore(cache_backend=InMemoryCache())
        first = {"latitude": 1.0, "longitude": 2.0}
        second = {"latitude": 3.0, "longitude": 4.0}
        store.add_points("user-1", [first])
        processed = store.get_points("user-1")
        store.add_points("user-1", [second])

        store.discard("user-1", processed)

        assert store.get_points("user-1") == [second]

    def test_users_are_isolated(self):
        store = LocationDataStore(cache_backend=InMemoryCache())
        store.add_points("user-1", [{"latitude": 1.0, "longitude": 2.0}])

        assert store.get_points("user-2") == []
