"""
Gmail email scraper.

Reads inbox message metadata (sender, subject, date, snippet) since the
last watermark and files each message under a (list, category) pair by
sender domain and subject keywords. Mail is append-only, so items are
created once and never rewritten.
"""
from typing import Any, Dict, List, Optional, Tuple

from app.core.exceptions import ConfigurationError
from app.core.time_utils import from_epoch_seconds, parse_datetime, serialize_datetime
from app.integrations.base import get_json
from app.integrations.providers.google import GoogleOAuthProvider
from app.integrations.schemas import ConnectResponse
from app.integrations.sync_engine import Classification, DedupPolicy, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
MESSAGES_PAGE_SIZE = 100

# category -> (list, list category)
CATEGORY_TARGETS: Dict[str, Tuple[str, str]] = {
    "travel": ("Travel", "Travel & Bookings"),
    "food": ("Food", "Food & Dining"),
    "shopping": ("Places", "Online Purchases"),
    "transport": ("Transport", "Transportation"),
    "bills": ("Email", "Bills & Utilities"),
    "subscriptions": ("Email", "Subscriptions & Memberships"),
    "social": ("Email", "Social Media"),
    "work": ("Email", "Work & Professional"),
    "finance": ("Email", "Financial Transactions"),
    "health": ("Health", "Health & Medical"),
    "education": ("Email", "Education & Learning"),
    "events": ("Events", "Event Tickets"),
    "other": ("Email", "Other Emails"),
}

# (category, sender patterns, subject patterns, both required), first match wins
EMAIL_RULES = (
    ("travel",
     ("booking.com", "expedia.com", "airbnb.com", "hotels.com", "kayak.com", "priceline.com",
      "tripadvisor.com", "delta.com", "united.com", "american.com", "southwest.com", "jetblue.com"),
     ("flight", "hotel", "booking", "reservation", "itinerary"), False),
    ("food",
     ("doordash.com", "ubereats.com", "grubhub.com", "postmates.com", "seamless.com",
      "opentable.com", "resy.com", "yelp.com", "zomato.com"),
     ("food delivery", "restaurant", "order confirmed"), False),
    ("shopping",
     ("amazon.com", "ebay.com", "etsy.com", "walmart.com", "target.com", "bestbuy.com",
      "apple.com", "shopify.com", "aliexpress.com"),
     ("order", "purchase", "receipt", "confirmation", "shipped"), True),
    ("transport",
     ("uber.com", "lyft.com", "zipcar.com", "lime.com", "bird.com", "mta.info", "bart.gov"),
     (), False),
    ("bills",
     ("billing", "invoice", "utility", "electric", "water", "internet"),
     ("bill", "invoice", "payment due", "statement"), False),
    ("subscriptions",
     ("netflix.com", "spotify.com", "hulu.com", "disney", "youtube"),
     ("subscription", "membership", "renewal", "auto-renew"), False),
    ("social",
     ("facebook.com", "twitter.com", "instagram.com", "linkedin.com", "tiktok.com",
      "snapchat.com", "reddit.com", "pinterest.com"),
     (), False),
    ("work",
     ("slack.com", "teams.microsoft.com", "zoom.us", "meet.google.com"),
     ("meeting", "calendar", "reminder", "task"), False),
    ("finance",
     ("bank", "paypal.com", "venmo.com", "stripe.com", "square.com"),
     ("transaction", "payment", "transfer", "deposit", "withdrawal"), False),
    ("health",
     ("health", "medical", "doctor", "hospital", "pharmacy", "cvs.com", "walgreens.com"),
     ("appointment", "prescription", "health"), False),
    ("education",
     (".edu", "university", "college", "school", "coursera.com", "udemy.com"),
     ("course", "class", "assignment", "grade"), False),
    ("events",
     ("ticketmaster.com", "eventbrite.com", "stubhub.com", "seatgeek.com", "livenation.com",
      "axs.com", "ticketweb.com", "etix.com"),
     ("ticket", "event", "concert", "festival", "admission"), False),
)


def categorize_email(sender: str, subject: str) -> str:
    sender = (sender or "").lower()
    subject = (subject or "").lower()
    for category, sender_patterns, subject_patterns, require_both in EMAIL_RULES:
        sender_hit = any(p in sender for p in sender_patterns)
        subject_hit = any(p in subject for p in subject_patterns)
        if (sender_hit and subject_hit) if require_both else (sender_hit or subject_hit):
            return category
    return "other"


def _headers(message: Dict[str, Any]) -> Dict[str, str]:
    headers = (message.get("payload") or {}).get("headers") or []
    return {h.get("name", "").lower(): h.get("value", "") for h in headers}


def message_timestamp(message: Dict[str, Any]):
    """Gmail's internalDate (epoch ms) is authoritative; fall back to the Date header."""
    internal = message.get("internalDate")
    if internal and str(internal).isdigit():
        return from_epoch_seconds(int(internal) / 1000)
    return parse_datetime(_headers(message).get("date"))


class EmailsStream(SyncStream):
    name = "emails"
    dedup_policy = DedupPolicy.CREATE_ONLY

    async def fetch(self, context: SyncContext):
        page_token = None
        while True:
            query = f"in:inbox after:{context.since_epoch}"
            if context.until is not None:
                # before: is exclusive; messages in the same second are skipped as duplicates
                query += f" before:{context.until_epoch + 1}"
            params = {"q": query, "maxResults": MESSAGES_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            listing = await get_json(
                context.client, f"{GMAIL_API_URL}/messages", token=context.access_token, params=params
            )

            messages = []
            for ref in listing.get("messages") or []:
                message = await get_json(
                    context.client,
                    f"{GMAIL_API_URL}/messages/{ref['id']}",
                    token=context.access_token,
                    params=[
                        ("format", "metadata"),
                        ("metadataHeaders", "From"),
                        ("metadataHeaders", "Subject"),
                        ("metadataHeaders", "Date"),
                    ],
                )
                messages.append(message)
            if messages:
                yield messages

            page_token = listing.get("nextPageToken")
            if not page_token:
                return

    def classify(self, record, context) -> Classification:
        headers = _headers(record)
        list_name, category_name = CATEGORY_TARGETS[categorize_email(headers.get("from"), headers.get("subject"))]
        return Classification(list_name=list_name, category_name=category_name)

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("id"):
            return None
        headers = _headers(record)
        received_at = message_timestamp(record)
        subject = headers.get("subject") or "(no subject)"
        return NormalizedItem(
            title=subject,
            external_id=record["id"],
            external_type="email",
            attributes={
                "from": headers.get("from"),
                "subject": subject,
                "snippet": record.get("snippet"),
                "received_at": serialize_datetime(received_at),
                "thread_id": record.get("threadId"),
                "category": categorize_email(headers.get("from"), headers.get("subject")),
            },
            attribute_types={"received_at": "datetime"},
            occurred_at=received_at,
        )


class EmailScraperProvider(GoogleOAuthProvider):
    provider = IntegrationProvider.EMAIL_SCRAPER
    display_name = "Email Scraper"
    list_name = "Email"
    scopes = ["https://www.googleapis.com/auth/gmail.readonly"]

    def check_configuration(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(self.name, "Email scraping is disabled")
        super().check_configuration()

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        response = await super()._build_connection(user_id, state)
        response.details = {"scopes": self.scopes}
        return response

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [EmailsStream()]
