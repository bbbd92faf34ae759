"""
Google Contacts adapter (People API).
"""
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_datetime
from app.integrations.base import get_json
from app.integrations.providers.google import GoogleOAuthProvider
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

PEOPLE_API_URL = "https://people.googleapis.com/v1"
PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations,birthdays,photos,metadata"
CONNECTIONS_PAGE_SIZE = 200


def _primary(values: Optional[List[Dict[str, Any]]], key: str = "value") -> Optional[str]:
    if not values:
        return None
    for value in values:
        if (value.get("metadata") or {}).get("primary"):
            return value.get(key)
    return values[0].get(key)


def _updated_at(person: Dict[str, Any]):
    sources = (person.get("metadata") or {}).get("sources") or []
    timestamps = [parse_datetime(source.get("updateTime")) for source in sources]
    timestamps = [ts for ts in timestamps if ts is not None]
    return max(timestamps) if timestamps else None


class ContactsStream(SyncStream):
    name = "contacts"

    async def fetch(self, context: SyncContext):
        page_token = None
        while True:
            params = {"personFields": PERSON_FIELDS, "pageSize": CONNECTIONS_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = await get_json(
                context.client,
                f"{PEOPLE_API_URL}/people/me/connections",
                token=context.access_token,
                params=params,
            )
            connections = data.get("connections") or []
            if connections:
                yield connections
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Friends", category_name="Contact")

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        full_name = _primary(record.get("names"), "displayName")
        if not full_name or not record.get("resourceName"):
            return None
        return NormalizedItem(
            title=f"{full_name} | Friends",
            external_id=record["resourceName"],
            external_type="contact",
            attributes={
                "name": full_name,
                "email": _primary(record.get("emailAddresses")),
                "phone": _primary(record.get("phoneNumbers")),
                "organization": _primary(record.get("organizations"), "name"),
                "photo_url": _primary(record.get("photos"), "url"),
            },
            attribute_types={"email": "email", "phone": "phone", "photo_url": "url"},
            occurred_at=_updated_at(record),
        )


class ContactListProvider(GoogleOAuthProvider):
    provider = IntegrationProvider.CONTACT_LIST
    display_name = "Contact List"
    list_name = "Friends"
    scopes = [
        "https://www.googleapis.com/auth/contacts.readonly",
        "https://www.googleapis.com/auth/userinfo.profile",
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [ContactsStream()]
