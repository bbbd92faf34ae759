"""
Persistence facade for integrations.

Every operation opens its own short-lived session from `session_factory`, so
no database transaction is ever held open across a provider HTTP call.

Works with both sync `Session` and `AsyncSession` factories via the async
compat helpers below.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from inspect import isawaitable
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.logging_config import log_debug, log_info, log_warning
from app.core.time_utils import ensure_utc, utc_now
from app.models.integration import Integration, LinkStatus, UserIntegration
from app.models.list_item import ItemList, ListCategory, ListItem, UserList


# ================================================================================
# ASYNC COMPAT HELPERS
# ================================================================================

async def _exec(session: Session | AsyncSession, statement):
    result = session.exec(statement)
    if isawaitable(result):
        return await result
    return result


async def _get(session: Session | AsyncSession, model, ident):
    result = session.get(model, ident)
    if isawaitable(result):
        return await result
    return result


async def _commit(session: Session | AsyncSession) -> None:
    result = session.commit()
    if isawaitable(result):
        await result


async def _refresh(session: Session | AsyncSession, instance) -> None:
    result = session.refresh(instance)
    if isawaitable(result):
        await result


async def _rollback(session: Session | AsyncSession) -> None:
    result = session.rollback()
    if isawaitable(result):
        await result


async def _delete(session: Session | AsyncSession, instance) -> None:
    result = session.delete(instance)
    if isawaitable(result):
        await result


@asynccontextmanager
async def session_scope(session_factory: Callable[[], Any]):
    """Open one session, roll back on error, always close."""
    session = session_factory()
    try:
        yield session
    except Exception:
        await _rollback(session)
        raise
    finally:
        result = session.close()
        if isawaitable(result):
            await result


def default_session_factory():
    """Sessions on the application engine, keeping loaded attributes after commit."""
    from app.core.database import engine  # local import: engine is built from settings at import
    return Session(engine, expire_on_commit=False)


# ================================================================================
# RESULT TYPES
# ================================================================================

class ListContext(NamedTuple):
    """Resolved (list, user_list, category) triple an item is written into."""
    list: ItemList
    user_list: UserList
    category: Optional[ListCategory]


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def _max_datetime(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return ensure_utc(b) if b else None
    if b is None:
        return ensure_utc(a)
    return max(ensure_utc(a), ensure_utc(b))


# ================================================================================
# FACADE
# ================================================================================

class IntegrationPersistence:
    """Catalog, links, lists, categories and items."""

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self._session_factory = session_factory or default_session_factory

    def _scope(self):
        return session_scope(self._session_factory)

    # ----------------------------------------------------------------------------
    # Catalog
    # ----------------------------------------------------------------------------

    async def ensure_integration(
        self,
        name: str,
        display_name: Optional[str] = None,
        list_name: Optional[str] = None,
    ) -> Integration:
        """Get or create the catalog row for a provider."""
        name = str(getattr(name, "value", name))
        async with self._scope() as session:
            result = await _exec(session, select(Integration).where(Integration.name == name))
            integration = result.first()
            if integration:
                return integration

            integration = Integration(name=name, display_name=display_name, list_name=list_name)
            session.add(integration)
            try:
                await _commit(session)
            except IntegrityError:
                # Concurrent creation; the other writer's row wins
                await _rollback(session)
                result = await _exec(session, select(Integration).where(Integration.name == name))
                return result.one()
            await _refresh(session, integration)
            log_info("Integration catalog entry created", provider=name)
            return integration

    async def get_integration(self, name: str) -> Optional[Integration]:
        name = str(getattr(name, "value", name))
        async with self._scope() as session:
            result = await _exec(session, select(Integration).where(Integration.name == name))
            return result.first()

    async def list_integrations(self) -> List[Integration]:
        async with self._scope() as session:
            result = await _exec(session, select(Integration))
            return list(result.all())

    # ----------------------------------------------------------------------------
    # Links
    # ----------------------------------------------------------------------------

    @staticmethod
    def _link_query(user_id: str, integration_id: uuid.UUID):
        return select(UserIntegration).where(
            UserIntegration.user_id == user_id,
            UserIntegration.integration_id == integration_id,
        )

    async def ensure_user_integration(self, user_id: str, integration_id: uuid.UUID) -> UserIntegration:
        """Get or create the user's link row (PENDING when new)."""
        async with self._scope() as session:
            result = await _exec(session, self._link_query(user_id, integration_id))
            link = result.first()
            if link:
                return link

            link = UserIntegration(user_id=user_id, integration_id=integration_id, status=LinkStatus.PENDING)
            session.add(link)
            try:
                await _commit(session)
            except IntegrityError:
                await _rollback(session)
                result = await _exec(session, self._link_query(user_id, integration_id))
                return result.one()
            await _refresh(session, link)
            return link

    async def get_link(self, user_id: str, integration_id: uuid.UUID) -> Optional[UserIntegration]:
        async with self._scope() as session:
            result = await _exec(session, self._link_query(user_id, integration_id))
            return result.first()

    async def mark_connected(self, user_id: str, integration_id: uuid.UUID) -> UserIntegration:
        """
        Mark the link CONNECTED and bump the provider's popularity.

        `connected_at` records the first connection and is never overwritten;
        `last_connected_at` records the latest one.
        """
        async with self._scope() as session:
            result = await _exec(session, self._link_query(user_id, integration_id))
            link = result.first()
            if link is None:
                link = UserIntegration(user_id=user_id, integration_id=integration_id)

            now = utc_now()
            link.status = LinkStatus.CONNECTED
            link.connected_at = link.connected_at or now
            link.last_connected_at = now
            link.last_error = None
            link.last_error_at = None
            link.touch()
            session.add(link)

            integration = await _get(session, Integration, integration_id)
            if integration is not None:
                integration.popularity = (integration.popularity or 0) + 1
                integration.touch()
                session.add(integration)

            await _commit(session)
            await _refresh(session, link)
            return link

    async def mark_synced(
        self,
        link_id: uuid.UUID,
        at: Optional[datetime] = None,
        watermark: Optional[datetime] = None,
        cursors: Optional[Dict[str, Any]] = None,
    ) -> Optional[UserIntegration]:
        """
        Record a successful sync.

        The watermark only moves forward: it becomes the later of its stored
        value and `watermark`. `cursors` replaces the stored backfill cursors;
        an empty or missing mapping clears them.
        """
        async with self._scope() as session:
            link = await _get(session, UserIntegration, link_id)
            if link is None:
                log_warning("mark_synced called for unknown link", link_id=str(link_id))
                return None

            link.last_synced_at = at or utc_now()
            link.sync_watermark = _max_datetime(link.sync_watermark, watermark)
            link.sync_cursors = dict(cursors) if cursors else None
            link.last_error = None
            link.last_error_at = None
            link.touch()
            session.add(link)
            await _commit(session)
            await _refresh(session, link)
            return link

    async def mark_sync_failed(self, user_id: str, integration_id: uuid.UUID, message: str) -> None:
        async with self._scope() as session:
            result = await _exec(session, self._link_query(user_id, integration_id))
            link = result.first()
            if link is None:
                return
            link.last_error = (message or "Unknown error")[:2000]
            link.last_error_at = utc_now()
            link.touch()
            session.add(link)
            await _commit(session)

    async def mark_disconnected(self, user_id: str, integration_id: uuid.UUID) -> bool:
        """Mark the link DISCONNECTED. Returns False when there is no link."""
        async with self._scope() as session:
            result = await _exec(session, self._link_query(user_id, integration_id))
            link = result.first()
            if link is None:
                return False
            link.status = LinkStatus.DISCONNECTED
            link.touch()
            session.add(link)
            await _commit(session)
            return True

    async def get_last_synced_at(self, user_id: str, integration_id: uuid.UUID) -> Optional[datetime]:
        link = await self.get_link(user_id, integration_id)
        if link is None or link.last_synced_at is None:
            return None
        return ensure_utc(link.last_synced_at)

    async def get_sync_watermark(self, user_id: str, integration_id: uuid.UUID) -> Optional[datetime]:
        link = await self.get_link(user_id, integration_id)
        if link is None or link.sync_watermark is None:
            return None
        return ensure_utc(link.sync_watermark)

    async def list_connected_links(self) -> List[Tuple[str, str]]:
        """(user_id, provider name) for every CONNECTED link."""
        statement = (
            select(UserIntegration.user_id, Integration.name)
            .join(Integration, Integration.id == UserIntegration.integration_id)
            .where(UserIntegration.status == LinkStatus.CONNECTED)
        )
        async with self._scope() as session:
            result = await _exec(session, statement)
            return [(row[0], row[1]) for row in result.all()]

    # ----------------------------------------------------------------------------
    # Lists and items
    # ----------------------------------------------------------------------------

    async def ensure_list_and_category_for_user(
        self,
        user_id: str,
        list_name: str,
        category_name: Optional[str] = None,
    ) -> ListContext:
        """
        Resolve (creating as needed) the list type, the user's list and the category.

        Lists and categories are shared between providers, so two syncs may
        create the same row at once; the loser picks up the winner's row.
        """
        item_list = await self._get_or_create(
            select(ItemList).where(ItemList.name == list_name),
            lambda: ItemList(name=list_name),
        )
        user_list = await self._get_or_create(
            select(UserList).where(UserList.user_id == user_id, UserList.list_id == item_list.id),
            lambda: UserList(user_id=user_id, list_id=item_list.id),
        )

        category = None
        if category_name:
            category = await self._get_or_create(
                select(ListCategory).where(
                    ListCategory.list_id == item_list.id,
                    ListCategory.name == category_name,
                ),
                lambda: ListCategory(list_id=item_list.id, name=category_name),
            )

        return ListContext(list=item_list, user_list=user_list, category=category)

    async def _get_or_create(self, statement, factory: Callable[[], Any]):
        async with self._scope() as session:
            instance = (await _exec(session, statement)).first()
            if instance is not None:
                return instance

            instance = factory()
            session.add(instance)
            try:
                await _commit(session)
            except IntegrityError:
                await _rollback(session)
                return (await _exec(session, statement)).one()
            await _refresh(session, instance)
            return instance

    @staticmethod
    def _natural_key_query(user_list_id: uuid.UUID, provider: str, external_type: str, external_id: str):
        return select(ListItem).where(
            ListItem.user_list_id == user_list_id,
            ListItem.external_provider == provider,
            ListItem.external_type == external_type,
            ListItem.external_id == external_id,
        )

    async def create_list_item(
        self,
        context: ListContext,
        *,
        title: str,
        provider: str,
        external_type: str,
        external_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        attribute_types: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Tuple[ListItem, bool]:
        """
        Insert an item that is not expected to exist yet.

        Returns (item, created). When another writer stored the same natural
        key first, that row comes back with created=False.
        """
        item = ListItem(
            list_id=context.list.id,
            user_list_id=context.user_list.id,
            category_id=context.category.id if context.category else None,
            title=title,
            attributes=attributes or {},
            attribute_types=attribute_types or {},
            external_provider=provider,
            external_type=external_type,
            external_id=str(external_id),
            occurred_at=occurred_at,
        )
        async with self._scope() as session:
            session.add(item)
            try:
                await _commit(session)
            except IntegrityError:
                await _rollback(session)
                existing = (await _exec(
                    session,
                    self._natural_key_query(context.user_list.id, provider, external_type, str(external_id)),
                )).one()
                return existing, False
            await _refresh(session, item)
            return item, True

    async def upsert_list_item(
        self,
        context: ListContext,
        *,
        title: str,
        provider: str,
        external_type: str,
        external_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        attribute_types: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Tuple[ListItem, UpsertOutcome]:
        """
        Insert or update by natural key.

        An existing row is only rewritten when something actually changed.
        """
        attributes = attributes or {}
        attribute_types = attribute_types or {}
        category_id = context.category.id if context.category else None

        query = self._natural_key_query(context.user_list.id, provider, external_type, str(external_id))
        async with self._scope() as session:
            existing = (await _exec(session, query)).first()

            if existing is None:
                item = ListItem(
                    list_id=context.list.id,
                    user_list_id=context.user_list.id,
                    category_id=category_id,
                    title=title,
                    attributes=attributes,
                    attribute_types=attribute_types,
                    external_provider=provider,
                    external_type=external_type,
                    external_id=str(external_id),
                    occurred_at=occurred_at,
                )
                session.add(item)
                try:
                    await _commit(session)
                except IntegrityError:
                    # Inserted by a concurrent sync; compare against that row
                    await _rollback(session)
                    existing = (await _exec(session, query)).one()
                else:
                    await _refresh(session, item)
                    return item, UpsertOutcome.CREATED

            existing_occurred = ensure_utc(existing.occurred_at) if existing.occurred_at else None
            new_occurred = ensure_utc(occurred_at) if occurred_at else None
            changed = (
                existing.title != title
                or existing.attributes != attributes
                or existing.attribute_types != attribute_types
                or existing.category_id != category_id
                or existing_occurred != new_occurred
            )
            if not changed:
                return existing, UpsertOutcome.UNCHANGED

            existing.title = title
            existing.attributes = attributes
            existing.attribute_types = attribute_types
            existing.category_id = category_id
            existing.occurred_at = occurred_at
            existing.touch()
            session.add(existing)
            await _commit(session)
            await _refresh(session, existing)
            log_debug("List item updated", provider=provider, external_id=external_id)
            return existing, UpsertOutcome.UPDATED

    async def item_exists(self, user_list_id: uuid.UUID, provider: str, external_type: str, external_id: str) -> bool:
        return await self.find_item_by_external_id(user_list_id, provider, external_type, external_id) is not None

    async def find_item_by_external_id(
        self,
        user_list_id: uuid.UUID,
        provider: str,
        external_type: str,
        external_id: str,
    ) -> Optional[ListItem]:
        async with self._scope() as session:
            result = await _exec(
                session,
                self._natural_key_query(user_list_id, provider, external_type, str(external_id)),
            )
            return result.first()

    async def list_items(
        self,
        user_id: str,
        list_name: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[ListItem]:
        """A user's items, newest first, optionally filtered by list and provider."""
        statement = (
            select(ListItem)
            .join(UserList, UserList.id == ListItem.user_list_id)
            .where(UserList.user_id == user_id)
        )
        if list_name:
            statement = statement.join(ItemList, ItemList.id == ListItem.list_id).where(ItemList.name == list_name)
        if provider:
            statement = statement.where(ListItem.external_provider == str(getattr(provider, "value", provider)))
        statement = statement.order_by(ListItem.occurred_at.desc(), ListItem.created_at.desc())

        async with self._scope() as session:
            result = await _exec(session, statement)
            return list(result.all())
