"""
Generic incremental sync engine.

Every provider describes its data as one or more SyncStreams. A stream knows
how to page through upstream records (`fetch`), where a record belongs
(`classify`) and what list item it becomes (`to_item`). The engine owns
everything else:

- per-(user, provider) serialization
- the sync window (`since` = watermark, else now - default window)
- list/category resolution and dedup (upsert by natural key, or create-only)
- the watermark, advanced only after every stream has been written and never
  past records a capped stream left unfetched
- error mapping and failure bookkeeping on the link
"""
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.logging_config import log_debug, log_sync_event
from app.core.time_utils import days_ago, ensure_utc, parse_datetime, serialize_datetime, utc_now
from app.integrations.errors import map_provider_error
from app.integrations.locks import KeyedLockRegistry, sync_locks
from app.integrations.persistence import IntegrationPersistence, ListContext, UpsertOutcome
from app.integrations.schemas import SyncResult


class DedupPolicy(str, Enum):
    UPSERT = "upsert"
    CREATE_ONLY = "create_only"


class Classification(BaseModel):
    """Target list and category for one record."""
    list_name: str
    category_name: Optional[str] = None


class NormalizedItem(BaseModel):
    """Provider record mapped onto the generic list item shape."""
    title: str
    external_id: str
    external_type: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    attribute_types: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None


class SyncContext:
    """
    Everything a stream needs while fetching.

    `until` is set while a stream resumes a backfill; records at or after it
    were written by an earlier run.
    """

    def __init__(
        self,
        user_id: str,
        provider: str,
        since: datetime,
        now: datetime,
        client: Optional[httpx.AsyncClient] = None,
        credential=None,
        extras: Optional[Dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.provider = provider
        self.since = since
        self.now = now
        self.client = client
        self.credential = credential
        self.extras = extras or {}
        self.until: Optional[datetime] = None

    @property
    def access_token(self) -> Optional[str]:
        return self.credential.access_token if self.credential else None

    @property
    def since_epoch(self) -> int:
        return int(self.since.timestamp())

    @property
    def until_epoch(self) -> Optional[int]:
        return int(self.until.timestamp()) if self.until else None


class SyncStream:
    """
    One kind of upstream record.

    Subclasses override `fetch`, `classify` and `to_item`. `to_item` may return
    None for a record that cannot be represented; it is counted as skipped.

    `oldest_first` declares that pages arrive in ascending time order. When a
    stream is cut off at its page cap, only such a stream lets the watermark
    advance (up to the newest record it wrote); otherwise the unfetched pages
    hold older records and the watermark stays where it was.
    """

    name: str = "records"
    dedup_policy: DedupPolicy = DedupPolicy.UPSERT
    max_pages: Optional[int] = None
    oldest_first: bool = False

    async def fetch(self, context: SyncContext) -> AsyncIterator[List[Any]]:
        """Yield pages (lists) of raw records."""
        raise NotImplementedError
        yield  # pragma: no cover

    def classify(self, record: Any, context: SyncContext) -> Classification:
        raise NotImplementedError

    def to_item(self, record: Any, classification: Classification, context: SyncContext) -> Optional[NormalizedItem]:
        raise NotImplementedError


class StaticStream(SyncStream):
    """A stream over records that are already in hand (device uploads, imports)."""

    def __init__(self, records: Iterable[Any], name: Optional[str] = None):
        self._records = list(records)
        if name:
            self.name = name

    async def fetch(self, context: SyncContext) -> AsyncIterator[List[Any]]:
        if self._records:
            yield self._records


# ================================================================================
# COUNTERS
# ================================================================================

def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None or b is None:
        return a or b
    return max(a, b)


def _empty_counts() -> Dict[str, int]:
    return {"fetched": 0, "processed": 0, "created": 0, "updated": 0, "unchanged": 0, "skipped": 0}


class _SyncStats:
    def __init__(self, cursors: Optional[Dict[str, Dict[str, Any]]] = None):
        self.totals = _empty_counts()
        self.streams: Dict[str, Dict[str, Any]] = {}
        self.categories: Dict[str, Dict[str, int]] = {}
        self.watermark: Optional[datetime] = None
        self.cursors: Dict[str, Dict[str, Any]] = dict(cursors or {})
        self.truncated = False
        self._newest: Dict[str, datetime] = {}
        self._oldest: Dict[str, datetime] = {}
        self._ceiling: Optional[datetime] = None
        self._held = False

    def stream(self, name: str) -> Dict[str, Any]:
        if name not in self.streams:
            self.streams[name] = dict(_empty_counts(), pages=0, truncated=False)
        return self.streams[name]

    def record(self, stream_name: str, category: str, outcome: str) -> None:
        """Count one fetched record with its outcome (created/updated/unchanged/skipped)."""
        stream_counts = self.stream(stream_name)
        category_counts = self.categories.setdefault(category, {"processed": 0, "skipped": 0})

        for counts in (self.totals, stream_counts):
            counts["fetched"] += 1
            counts[outcome] += 1
            if outcome != "skipped":
                counts["processed"] += 1

        if outcome == "skipped":
            category_counts["skipped"] += 1
        else:
            category_counts["processed"] += 1

    def observe(self, stream_name: str, occurred_at: Optional[datetime]) -> None:
        if occurred_at is None:
            return
        occurred_at = ensure_utc(occurred_at)
        if self.watermark is None or occurred_at > self.watermark:
            self.watermark = occurred_at
        if stream_name not in self._newest or occurred_at > self._newest[stream_name]:
            self._newest[stream_name] = occurred_at
        if stream_name not in self._oldest or occurred_at < self._oldest[stream_name]:
            self._oldest[stream_name] = occurred_at

    def settle(self, stream: SyncStream, cursor: Optional[Dict[str, Any]], truncated: bool) -> None:
        """
        Work out how far a finished stream lets the watermark advance.

        A newest-first stream cut off at its page cap leaves a cursor: `before`
        is the oldest record written so far and `reached` the newest. The next
        run fetches below `before` and once that completes the stream is whole
        up to `reached`. A stream cut off oldest first is whole up to the
        newest record it wrote.
        """
        until = parse_datetime(cursor.get("before")) if cursor else None
        reached = _later(parse_datetime(cursor.get("reached")) if cursor else None, self._newest.get(stream.name))

        if truncated:
            self.truncated = True
        if truncated and not stream.oldest_first:
            before = self._oldest.get(stream.name)
            if until is not None and (before is None or until < before):
                before = until
            if before is not None:
                self.cursors[stream.name] = {
                    "before": serialize_datetime(before),
                    "reached": serialize_datetime(reached),
                }
            self._held = True
        elif truncated:
            self._bound(self._newest.get(stream.name))
        elif cursor:
            # Backfill done: earlier runs wrote everything up to `reached`
            self.watermark = _later(self.watermark, reached)
            self._bound(reached or until)

    def _bound(self, reached: Optional[datetime]) -> None:
        if reached is None:
            self._held = True
        elif self._ceiling is None or reached < self._ceiling:
            self._ceiling = reached

    def next_watermark(self) -> Optional[datetime]:
        """Watermark to store; None keeps the stored one."""
        if self._held or self.cursors:
            return None
        if self._ceiling is not None and self.watermark is not None and self.watermark > self._ceiling:
            return self._ceiling
        return self.watermark


# ================================================================================
# ENGINE
# ================================================================================

class SyncEngine:
    """Drives SyncStreams for a provider adapter."""

    def __init__(
        self,
        persistence: IntegrationPersistence,
        locks: Optional[KeyedLockRegistry] = None,
        default_max_pages: Optional[int] = None,
    ):
        self._persistence = persistence
        self._locks = locks if locks is not None else sync_locks
        self._default_max_pages = default_max_pages or settings.sync_max_pages

    async def run(self, source, user_id: str, streams: Optional[List[SyncStream]] = None) -> SyncResult:
        """
        Run one sync for `user_id` against `source` (a provider adapter).

        `streams` overrides the adapter's own streams; device uploads and
        imports use this to push records through the same write path.
        """
        provider = source.name
        async with self._locks.acquire(user_id, provider):
            integration = await self._persistence.ensure_integration(
                provider, display_name=source.display_name, list_name=source.list_name
            )
            link = await self._persistence.ensure_user_integration(user_id, integration.id)

            now = utc_now()
            since = ensure_utc(link.sync_watermark) if link.sync_watermark else days_ago(source.default_days, now)
            log_sync_event(provider, user_id, "started", since=serialize_datetime(since))

            try:
                credential = await source.prepare_sync(user_id)
                context = SyncContext(
                    user_id=user_id,
                    provider=provider,
                    since=since,
                    now=now,
                    client=await source.get_client(),
                    credential=credential,
                )
                active_streams = streams if streams is not None else source.sync_streams(context)

                stats = _SyncStats(cursors=link.sync_cursors)
                for stream in active_streams:
                    await self._run_stream(stream, context, stats)

                synced_at = utc_now()
                watermark = stats.next_watermark()
                await self._persistence.mark_synced(
                    link.id, at=synced_at, watermark=watermark, cursors=stats.cursors
                )
            except Exception as e:
                mapped = map_provider_error(provider, e)
                await self._persistence.mark_sync_failed(user_id, integration.id, mapped.message)
                log_sync_event(
                    provider, user_id, "failed",
                    error_code=mapped.error_code, error=mapped.message,
                )
                if mapped is e:
                    raise
                raise mapped from e

        details = dict(stats.totals)
        details.update(
            since=serialize_datetime(since),
            watermark=serialize_datetime(watermark),
            categories=stats.categories,
            streams=stats.streams,
            truncated=stats.truncated,
        )
        log_sync_event(
            provider, user_id, "completed",
            fetched=details["fetched"], processed=details["processed"],
            created=details["created"], updated=details["updated"], skipped=details["skipped"],
            truncated=stats.truncated,
        )
        return SyncResult(ok=True, synced_at=synced_at, details=details)

    async def _run_stream(self, stream: SyncStream, context: SyncContext, stats: _SyncStats) -> None:
        max_pages = stream.max_pages or self._default_max_pages
        list_cache: Dict[Tuple[str, Optional[str]], ListContext] = {}
        stream_counts = stats.stream(stream.name)
        cursor = stats.cursors.pop(stream.name, None)
        context.until = parse_datetime(cursor.get("before")) if cursor else None

        pages = stream.fetch(context)
        try:
            async for page in pages:
                stream_counts["pages"] += 1
                for record in page:
                    await self._write_record(stream, record, context, stats, list_cache)

                if stream_counts["pages"] >= max_pages:
                    stream_counts["truncated"] = True
                    log_debug(
                        "Sync stream stopped at page cap",
                        provider=context.provider, stream=stream.name, max_pages=max_pages,
                    )
                    break
        finally:
            await pages.aclose()
            context.until = None

        stats.settle(stream, cursor, stream_counts["truncated"])

    async def _write_record(
        self,
        stream: SyncStream,
        record: Any,
        context: SyncContext,
        stats: _SyncStats,
        list_cache: Dict[Tuple[str, Optional[str]], ListContext],
    ) -> None:
        classification = stream.classify(record, context)
        category_key = classification.category_name or classification.list_name
        item = stream.to_item(record, classification, context)
        if item is None:
            stats.record(stream.name, category_key, "skipped")
            return

        cache_key = (classification.list_name, classification.category_name)
        list_context = list_cache.get(cache_key)
        if list_context is None:
            list_context = await self._persistence.ensure_list_and_category_for_user(
                context.user_id, classification.list_name, classification.category_name
            )
            list_cache[cache_key] = list_context

        item_fields = dict(
            title=item.title[:500],
            provider=context.provider,
            external_type=item.external_type,
            external_id=item.external_id,
            attributes=item.attributes,
            attribute_types=item.attribute_types,
            occurred_at=item.occurred_at,
        )

        if stream.dedup_policy == DedupPolicy.CREATE_ONLY:
            exists = await self._persistence.item_exists(
                list_context.user_list.id, context.provider, item.external_type, item.external_id
            )
            if exists:
                outcome = "skipped"
            else:
                _, created = await self._persistence.create_list_item(list_context, **item_fields)
                outcome = "created" if created else "skipped"
        else:
            _, upsert_outcome = await self._persistence.upsert_list_item(list_context, **item_fields)
            outcome = {
                UpsertOutcome.CREATED: "created",
                UpsertOutcome.UPDATED: "updated",
                UpsertOutcome.UNCHANGED: "unchanged",
            }[upsert_outcome]

        stats.record(stream.name, category_key, outcome)
        stats.observe(stream.name, item.occurred_at)


