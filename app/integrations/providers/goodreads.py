"""
Goodreads adapter.

Goodreads retired its public API, so there is no OAuth. A user connects by
handing over the RSS feed of their shelves; syncs re-read that feed. A
Goodreads library export (CSV) can also be imported through the same write
path, and both sources key books by Goodreads book id.
"""
import csv
import html
import io
import json
import re
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from app.core.exceptions import DataValidationError, InvalidCallbackError, InvalidTokenError, ProviderAPIError
from app.core.logging_config import log_info
from app.core.time_utils import parse_datetime, serialize_datetime
from app.integrations.base import ProviderAdapter
from app.integrations.config import GoodreadsConfig
from app.integrations.credentials import Credential
from app.integrations.errors import map_provider_error
from app.integrations.schemas import ConnectResponse, SyncResult, is_goodreads_url
from app.integrations.sync_engine import Classification, NormalizedItem, StaticStream, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

READING_STATUS_CATEGORIES = {
    "read": "Read",
    "currently-reading": "Currently Reading",
    "to-read": "To Read",
}

_BOOK_ID_PATTERN = re.compile(r"/book/show/(\d+)")
_AUTHOR_PATTERN = re.compile(r"author:\s*([^<\n]+)", re.IGNORECASE)
_RATING_PATTERN = re.compile(r"rating:\s*(\d+)", re.IGNORECASE)
_CDATA_PATTERN = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)

MAX_FEED_REDIRECTS = 3


def reading_status_for(shelves) -> str:
    """Exclusive shelf of a book; anything not currently-reading or to-read counts as read."""
    if isinstance(shelves, str):
        shelves = [s.strip() for s in shelves.split(",")]
    shelves = [s for s in shelves or [] if s]
    for status in ("currently-reading", "to-read"):
        if status in shelves:
            return status
    return "read"


def _int_or_none(value) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _clean_isbn(value: Optional[str]) -> Optional[str]:
    # Goodreads exports ISBNs as ="0439023483" so spreadsheets keep leading zeros
    cleaned = (value or "").strip().lstrip("=").strip('"')
    return cleaned or None


def _unwrap_cdata(document: str) -> str:
    # html.parser does not keep CDATA sections as text
    return _CDATA_PATTERN.sub(lambda match: html.escape(match.group(1), quote=False), document)


def _text(item, tag: str) -> str:
    node = item.find(tag)
    return node.get_text(strip=True) if node else ""


def parse_feed(document: str) -> List[Dict[str, Any]]:
    """Parse a Goodreads shelf RSS feed into book records."""
    soup = BeautifulSoup(_unwrap_cdata(document), "html.parser")
    books = []
    for item in soup.find_all("item"):
        guid = _text(item, "guid")
        description = _text(item, "description")

        book_id = _text(item, "book_id")
        if not book_id:
            match = _BOOK_ID_PATTERN.search(guid)
            book_id = match.group(1) if match else guid

        author = _text(item, "author_name")
        if not author:
            match = _AUTHOR_PATTERN.search(description)
            author = match.group(1).strip() if match else ""

        rating = _int_or_none(_text(item, "user_rating"))
        if rating is None:
            match = _RATING_PATTERN.search(description)
            rating = int(match.group(1)) if match else None

        title = _text(item, "title")
        if not item.find("book_id"):
            # Activity feeds prefix titles with "<user> added:"
            title = re.sub(r"^.*?:\s*", "", title)

        shelves = _text(item, "user_shelves")
        books.append({
            "id": book_id,
            "title": title,
            "authors": [author] if author else [],
            "isbn": _clean_isbn(_text(item, "isbn")),
            "publication_year": _int_or_none(_text(item, "book_published")),
            "user_rating": rating or None,
            "user_review": _text(item, "user_review") or None,
            "reading_status": reading_status_for(shelves),
            "shelves": [s.strip() for s in shelves.split(",") if s.strip()],
            "date_added": _text(item, "user_date_added") or _text(item, "pubdate") or None,
            "date_finished": _text(item, "user_read_at") or None,
            "number_of_pages": _int_or_none(_text(item, "num_pages")),
            "cover_image_url": _text(item, "book_large_image_url") or _text(item, "book_image_url") or None,
        })
    return books


def is_feed_document(document: str) -> bool:
    if "<rss" not in document and "<feed" not in document:
        return False
    soup = BeautifulSoup(document, "html.parser")
    return soup.find(["rss", "feed"]) is not None


def parse_library_export(csv_text: str) -> List[Dict[str, Any]]:
    """Parse a Goodreads library export into book records."""
    books = []
    reader = csv.DictReader(io.StringIO(csv_text.lstrip("\ufeff")))
    for row in reader:
        row = {(key or "").strip(): (value or "").strip() for key, value in row.items()}
        title = row.get("Title")
        if not title:
            continue
        author = row.get("Author")
        book_id = row.get("Book Id") or f"csv-{title.lower()}-{(author or '').lower()}"
        shelves = [s.strip() for s in (row.get("Bookshelves") or "").split(",") if s.strip()]
        books.append({
            "id": book_id,
            "title": title,
            "authors": [author] if author else [],
            "isbn": _clean_isbn(row.get("ISBN13")) or _clean_isbn(row.get("ISBN")),
            "publication_year": _int_or_none(row.get("Year Published")),
            "user_rating": _int_or_none(row.get("My Rating")) or None,
            "user_review": row.get("My Review") or None,
            "reading_status": reading_status_for(row.get("Exclusive Shelf") or ""),
            "shelves": shelves,
            "date_added": row.get("Date Added") or None,
            "date_finished": row.get("Date Read") or None,
            "number_of_pages": _int_or_none(row.get("Number of Pages")),
            "cover_image_url": None,
        })
    return books


# ================================================================================
# STREAMS
# ================================================================================

class _BookRecords:
    """Classification and item mapping shared by the RSS and CSV streams."""

    def classify(self, record, context) -> Classification:
        return Classification(
            list_name="Books",
            category_name=READING_STATUS_CATEGORIES.get(record.get("reading_status"), "Read"),
        )

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("id") or not record.get("title"):
            return None
        date_added = parse_datetime(record.get("date_added"))
        date_finished = parse_datetime(record.get("date_finished"))
        return NormalizedItem(
            title=record["title"],
            external_id=str(record["id"]),
            external_type="book",
            attributes={
                "authors": record.get("authors") or [],
                "isbn": record.get("isbn"),
                "publication_year": record.get("publication_year"),
                "user_rating": record.get("user_rating"),
                "user_review": record.get("user_review"),
                "reading_status": record.get("reading_status"),
                "shelves": record.get("shelves") or [],
                "date_added": serialize_datetime(date_added),
                "date_finished": serialize_datetime(date_finished),
                "number_of_pages": record.get("number_of_pages"),
                "cover_image_url": record.get("cover_image_url"),
            },
            attribute_types={
                "publication_year": "number",
                "user_rating": "number",
                "date_added": "date",
                "date_finished": "date",
                "number_of_pages": "number",
                "cover_image_url": "url",
            },
            occurred_at=date_finished or date_added,
        )


class BooksFeedStream(_BookRecords, SyncStream):
    name = "books"

    def __init__(self, adapter: "GoodreadsProvider"):
        self._adapter = adapter

    async def fetch(self, context: SyncContext):
        feed_url = self._adapter.feed_url(context.credential)
        document = await self._adapter.fetch_feed(context.client, feed_url)
        books = parse_feed(document)
        if books:
            yield books


class LibraryExportStream(_BookRecords, StaticStream):
    name = "library_export"


# ================================================================================
# ADAPTER
# ================================================================================

class GoodreadsProvider(ProviderAdapter):
    provider = IntegrationProvider.GOODREADS
    display_name = "Goodreads"
    list_name = "Books"

    config: GoodreadsConfig

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        return ConnectResponse(
            provider=self.name,
            state=state,
            details={
                "auth_methods": ["rss_feed_url", "csv_import"],
                "instructions": "Submit the RSS feed URL of your Goodreads shelves, or import a library export CSV.",
            },
        )

    async def fetch_feed(self, client: httpx.AsyncClient, feed_url: str) -> str:
        """GET the feed, following redirects only while they stay on goodreads.com."""
        url = feed_url
        for _ in range(MAX_FEED_REDIRECTS + 1):
            if not is_goodreads_url(url):
                raise ProviderAPIError(self.name, "RSS feed URL must be on goodreads.com")
            response = await client.get(url, headers={"User-Agent": self.config.user_agent}, follow_redirects=False)
            if not response.is_redirect:
                response.raise_for_status()
                return response.text
            url = str(response.url.join(response.headers["location"]))
        raise ProviderAPIError(self.name, "Too many redirects fetching the RSS feed")

    def feed_url(self, credential: Optional[Credential]) -> str:
        if credential is None:
            raise InvalidTokenError(self.name)
        try:
            return json.loads(credential.access_token)["rss_feed_url"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidTokenError(self.name, "Stored Goodreads credentials are unreadable") from e

    async def _complete_callback(self, user_id: str, payload) -> None:
        client = await self.get_client()
        try:
            document = await self.fetch_feed(client, payload.rss_feed_url)
        except (httpx.HTTPStatusError, ProviderAPIError) as e:
            raise InvalidCallbackError(self.name, "Invalid RSS feed URL") from e
        except httpx.TransportError as e:
            raise map_provider_error(self.name, e) from e

        if not is_feed_document(document):
            raise InvalidCallbackError(self.name, "Invalid RSS feed URL")

        await self.credentials.set(user_id, self.provider, Credential(
            access_token=json.dumps({"rss_feed_url": payload.rss_feed_url}),
        ))

    async def prepare_sync(self, user_id: str) -> Optional[Credential]:
        # Imports run without a feed; the feed stream checks for one itself
        return await self.credentials.get(user_id, self.provider)

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [BooksFeedStream(self)]

    async def import_csv(self, user_id: str, csv_text: str) -> SyncResult:
        """Import a Goodreads library export."""
        if not csv_text or not csv_text.strip():
            raise DataValidationError(self.name, "CSV import is empty")
        try:
            books = parse_library_export(csv_text)
        except csv.Error as e:
            raise DataValidationError(self.name, f"Unreadable CSV: {e}") from e

        result = await self.engine.run(self, user_id, streams=[LibraryExportStream(books)])
        log_info("Goodreads library imported", provider=self.name, user_id=user_id, books=len(books))
        return result

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        try:
            feed_url = self.feed_url(credential)
        except InvalidTokenError:
            feed_url = None
        return {"rss_feed_configured": feed_url is not None}
