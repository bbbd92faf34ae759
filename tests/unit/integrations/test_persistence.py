"""
Unit tests for the integration persistence facade (catalog, links, lists, items).
"""
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from app.core.time_utils import ensure_utc
from app.integrations import persistence as persistence_module
from app.integrations.persistence import UpsertOutcome
from app.models.integration import LinkStatus
from app.models.list_item import ItemList, ListCategory, ListItem, UserList


async def _connected(persistence, user_id="user-1", provider="strava"):
    integration = await persistence.ensure_integration(provider, display_name=provider.title(), list_name="Activity")
    await persistence.ensure_user_integration(user_id, integration.id)
    await persistence.mark_connected(user_id, integration.id)
    return integration


# ================================================================================
# CATALOG
# ================================================================================

class TestCatalog:

    @pytest.mark.asyncio
    async def test_ensure_integration_is_idempotent(self, persistence):
        first = await persistence.ensure_integration("strava", display_name="Strava", list_name="Activity")
        second = await persistence.ensure_integration("strava")

        assert first.id == second.id
        assert second.display_name == "Strava"
        assert len(await persistence.list_integrations()) == 1

    @pytest.mark.asyncio
    async def test_unknown_integration(self, persistence):
        assert await persistence.get_integration("myspace") is None

    @pytest.mark.asyncio
    async def test_popularity_counts_connects(self, persistence):
        integration = await _connected(persistence, "user-1")
        await _connected(persistence, "user-2")

        refreshed = await persistence.get_integration("strava")
        assert refreshed.id == integration.id
        assert refreshed.popularity == 2


# ================================================================================
# LINKS
# ================================================================================

class TestLinks:

    @pytest.mark.asyncio
    async def test_new_link_is_pending(self, persistence):
        integration = await persistence.ensure_integration("spotify")

        link = await persistence.ensure_user_integration("user-1", integration.id)

        assert link.status == LinkStatus.PENDING
        assert not link.is_connected

    @pytest.mark.asyncio
    async def test_connected_at_kept_on_reconnect(self, persistence):
        integration = await _connected(persistence)
        first = await persistence.get_link("user-1", integration.id)

        await persistence.mark_disconnected("user-1", integration.id)
        await persistence.mark_connected("user-1", integration.id)
        second = await persistence.get_link("user-1", integration.id)

        assert second.status == LinkStatus.CONNECTED
        assert ensure_utc(second.connected_at) == ensure_utc(first.connected_at)
        assert ensure_utc(second.last_connected_at) >= ensure_utc(first.last_connected_at)

    @pytest.mark.asyncio
    async def test_mark_disconnected_without_link(self, persistence):
        integration = await persistence.ensure_integration("spotify")
        assert await persistence.mark_disconnected("user-1", integration.id) is False

    @pytest.mark.asyncio
    async def test_connect_clears_previous_error(self, persistence):
        integration = await _connected(persistence)
        await persistence.mark_sync_failed("user-1", integration.id, "boom")
        assert (await persistence.get_link("user-1", integration.id)).last_error == "boom"

        await persistence.mark_connected("user-1", integration.id)

        assert (await persistence.get_link("user-1", integration.id)).last_error is None

    @pytest.mark.asyncio
    async def test_watermark_only_moves_forward(self, persistence):
        integration = await _connected(persistence)
        link = await persistence.get_link("user-1", integration.id)
        later = datetime(2024, 6, 1, tzinfo=timezone.utc)
        earlier = later - timedelta(days=10)

        await persistence.mark_synced(link.id, watermark=later)
        await persistence.mark_synced(link.id, watermark=earlier)
        await persistence.mark_synced(link.id, watermark=None)

        assert await persistence.get_sync_watermark("user-1", integration.id) == later
        assert await persistence.get_last_synced_at("user-1", integration.id) is not None

    @pytest.mark.asyncio
    async def test_mark_synced_unknown_link(self, persistence):
        import uuid

        assert await persistence.mark_synced(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_connected_links_listing(self, persistence):
        strava = await _connected(persistence, "user-1", "strava")
        await _connected(persistence, "user-2", "spotify")
        await persistence.mark_disconnected("user-1", strava.id)

        assert await persistence.list_connected_links() == [("user-2", "spotify")]


# ================================================================================
# LISTS AND ITEMS
# ================================================================================

class TestListItems:

    @pytest.mark.asyncio
    async def test_list_and_category_resolution_is_stable(self, persistence):
        first = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Play History")
        second = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Play History")
        other_user = await persistence.ensure_list_and_category_for_user("user-2", "Music", "Play History")

        assert first.list.id == second.list.id == other_user.list.id
        assert first.user_list.id == second.user_list.id
        assert first.user_list.id != other_user.user_list.id
        assert first.category.id == other_user.category.id

    @pytest.mark.asyncio
    async def test_list_without_category(self, persistence):
        context = await persistence.ensure_list_and_category_for_user("user-1", "Books")
        assert context.category is None

    @pytest.mark.asyncio
    async def test_upsert_outcomes(self, persistence):
        context = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Saved Tracks")
        fields = dict(provider="spotify", external_type="saved_track", external_id="t1", attributes={"artist": "A"})

        item, outcome = await persistence.upsert_list_item(context, title="Song", **fields)
        assert outcome == UpsertOutcome.CREATED

        same, outcome = await persistence.upsert_list_item(context, title="Song", **fields)
        assert outcome == UpsertOutcome.UNCHANGED
        assert same.id == item.id

        updated, outcome = await persistence.upsert_list_item(context, title="Song (Remastered)", **fields)
        assert outcome == UpsertOutcome.UPDATED
        assert updated.id == item.id

        items = await persistence.list_items("user-1")
        assert [i.title for i in items] == ["Song (Remastered)"]

    @pytest.mark.asyncio
    async def test_item_exists_by_natural_key(self, persistence):
        context = await persistence.ensure_list_and_category_for_user("user-1", "Email", "shopping")
        await persistence.create_list_item(
            context, title="Your order", provider="email_scraper", external_type="email", external_id="m1",
        )

        assert await persistence.item_exists(context.user_list.id, "email_scraper", "email", "m1")
        assert not await persistence.item_exists(context.user_list.id, "email_scraper", "email", "m2")
        assert not await persistence.item_exists(context.user_list.id, "email_scraper", "other", "m1")

    @pytest.mark.asyncio
    async def test_list_items_filters_and_orders(self, persistence):
        music = await persistence.ensure_list_and_category_for_user("user-1", "Music")
        books = await persistence.ensure_list_and_category_for_user("user-1", "Books")
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)

        await persistence.create_list_item(
            music, title="Old", provider="spotify", external_type="play", external_id="1", occurred_at=base,
        )
        await persistence.create_list_item(
            music, title="New", provider="spotify", external_type="play", external_id="2",
            occurred_at=base + timedelta(days=1),
        )
        await persistence.create_list_item(
            books, title="Dune", provider="goodreads", external_type="book", external_id="b1", occurred_at=base,
        )

        assert [i.title for i in await persistence.list_items("user-1", list_name="Music")] == ["New", "Old"]
        assert [i.title for i in await persistence.list_items("user-1", provider="goodreads")] == ["Dune"]
        assert len(await persistence.list_items("user-1")) == 3
        assert await persistence.list_items("user-2") == []


# ================================================================================
# CONCURRENT WRITERS
# ================================================================================

class _NoRow:
    def first(self):
        return None


@contextmanager
def stale_reads(*models):
    """The next SELECT against each model misses, as if another writer inserts right after it."""
    real_exec = persistence_module._exec
    pending = list(models)

    async def _exec(session, statement):
        entity = statement.column_descriptions[0].get("entity")
        if entity in pending:
            pending.remove(entity)
            return _NoRow()
        return await real_exec(session, statement)

    with patch("app.integrations.persistence._exec", _exec):
        yield


class TestConcurrentWriters:

    @pytest.mark.asyncio
    async def test_shared_list_created_elsewhere_is_reused(self, persistence):
        first = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Play History")

        with stale_reads(ItemList, UserList, ListCategory):
            second = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Play History")

        assert second.list.id == first.list.id
        assert second.user_list.id == first.user_list.id
        assert second.category.id == first.category.id
        assert second.list.name == "Music"

    @pytest.mark.asyncio
    async def test_create_reports_existing_row(self, persistence):
        context = await persistence.ensure_list_and_category_for_user("user-1", "Email", "shopping")
        fields = dict(title="Your order", provider="email_scraper", external_type="email", external_id="m1")

        item, created = await persistence.create_list_item(context, **fields)
        again, created_again = await persistence.create_list_item(context, **fields)

        assert created is True
        assert created_again is False
        assert again.id == item.id
        assert len(await persistence.list_items("user-1")) == 1

    @pytest.mark.asyncio
    async def test_upsert_falls_back_to_update(self, persistence):
        context = await persistence.ensure_list_and_category_for_user("user-1", "Music", "Saved Tracks")
        fields = dict(provider="spotify", external_type="saved_track", external_id="t1")
        item, _ = await persistence.upsert_list_item(context, title="Song", **fields)

        with stale_reads(ListItem):
            updated, outcome = await persistence.upsert_list_item(context, title="Song (Live)", **fields)

        assert outcome == UpsertOutcome.UPDATED
        assert updated.id == item.id
        assert [i.title for i in await persistence.list_items("user-1")] == ["Song (Live)"]
