"""
Plaid adapter.

Connection goes through Plaid Link rather than a browser redirect:
create_connection returns a link token, the client completes Link and posts
back a public token, which is exchanged for a long-lived access token.
"""
from typing import Any, Dict, List, Optional

import httpx

from app.core.exceptions import OAuthAuthenticationError, ProviderAPIError
from app.core.time_utils import parse_datetime, utc_now
from app.integrations.base import ProviderAdapter, post_json
from app.integrations.config import PlaidConfig
from app.integrations.credentials import Credential
from app.integrations.errors import map_provider_error
from app.integrations.schemas import ConnectResponse
from app.integrations.sync_engine import Classification, NormalizedItem, SyncContext, SyncStream
from app.models.integration import IntegrationProvider

CLIENT_NAME = "Connect Hub"
# Plaid access tokens do not expire; tracked for a year so status can report it
ACCESS_TOKEN_TTL_SECONDS = 365 * 24 * 3600
TRANSACTIONS_PAGE_SIZE = 500
MAX_EXTRA_TRANSACTION_PAGES = 10

# (list, category, primary-category keywords, merchant keywords), first match wins
TRANSACTION_RULES = (
    ("Travel", "Travel Expenses",
     ("travel", "airlines", "hotels"),
     ("airline", "hotel", "airbnb", "booking", "expedia")),
    ("Transport", "Transportation",
     ("transportation", "gas", "taxi", "uber", "lyft"),
     ("uber", "lyft", "taxi", "gas", "shell", "exxon", "chevron")),
    ("Food", "Dining",
     ("food", "restaurants", "fast food", "coffee"),
     ("restaurant", "starbucks", "mcdonald", "pizza", "cafe")),
    ("Food", "Groceries",
     ("groceries", "supermarket"),
     ("grocery", "walmart", "target", "safeway", "kroger")),
    ("Places", "Entertainment",
     ("entertainment", "recreation", "gyms", "movie"),
     ("gym", "fitness", "cinema", "theater")),
    ("Places", "Shopping",
     ("shops", "retail", "clothing"),
     ("amazon", "store")),
)


def categorize_transaction(transaction: Dict[str, Any]) -> Classification:
    categories = transaction.get("category") or []
    primary = (categories[0] if categories else "").lower()
    pfc = (transaction.get("personal_finance_category") or {}).get("primary") or ""
    primary = f"{primary} {pfc.lower().replace('_', ' ')}".strip()
    merchant = (transaction.get("merchant_name") or transaction.get("name") or "").lower()

    for list_name, category_name, category_keywords, merchant_keywords in TRANSACTION_RULES:
        if any(k in primary for k in category_keywords) or any(k in merchant for k in merchant_keywords):
            return Classification(list_name=list_name, category_name=category_name)
    return Classification(list_name="Places", category_name="General Expenses")


class _PlaidStream(SyncStream):

    def __init__(self, adapter: "PlaidProvider"):
        self._adapter = adapter


class AccountsStream(_PlaidStream):
    name = "accounts"

    async def fetch(self, context: SyncContext):
        data = await self._adapter.call(context.client, "/accounts/get", access_token=context.access_token)
        accounts = data.get("accounts") or []
        context.extras["accounts"] = {account.get("account_id"): account for account in accounts}
        if accounts:
            yield accounts

    def classify(self, record, context) -> Classification:
        return Classification(list_name="Financial", category_name="Accounts")

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("account_id"):
            return None
        balances = record.get("balances") or {}
        name = record.get("official_name") or record.get("name") or "Account"
        mask = record.get("mask")
        return NormalizedItem(
            title=f"{name} ••{mask}" if mask else name,
            external_id=record["account_id"],
            external_type="account",
            attributes={
                "name": record.get("name"),
                "official_name": record.get("official_name"),
                "type": record.get("type"),
                "subtype": record.get("subtype"),
                "mask": mask,
                "current_balance": balances.get("current"),
                "available_balance": balances.get("available"),
                "currency": balances.get("iso_currency_code"),
            },
            attribute_types={"current_balance": "currency", "available_balance": "currency"},
        )


class TransactionsStream(_PlaidStream):
    name = "transactions"
    max_pages = MAX_EXTRA_TRANSACTION_PAGES + 1

    async def fetch(self, context: SyncContext):
        offset = 0
        while True:
            data = await self._adapter.call(
                context.client,
                "/transactions/get",
                access_token=context.access_token,
                start_date=context.since.date().isoformat(),
                end_date=(context.until or context.now).date().isoformat(),
                options={"count": TRANSACTIONS_PAGE_SIZE, "offset": offset},
            )
            transactions = data.get("transactions") or []
            if transactions:
                yield transactions
            offset += len(transactions)
            if not transactions or offset >= (data.get("total_transactions") or 0):
                return

    def classify(self, record, context) -> Classification:
        return categorize_transaction(record)

    def to_item(self, record, classification, context) -> Optional[NormalizedItem]:
        if not record.get("transaction_id"):
            return None
        account = context.extras.get("accounts", {}).get(record.get("account_id")) or {}
        amount = record.get("amount")
        merchant = record.get("merchant_name") or record.get("name") or "Transaction"
        return NormalizedItem(
            title=f"{merchant} | {amount} {record.get('iso_currency_code') or ''}".strip(),
            external_id=record["transaction_id"],
            external_type="transaction",
            attributes={
                "name": record.get("name"),
                "merchant_name": record.get("merchant_name"),
                "amount": amount,
                "currency": record.get("iso_currency_code"),
                "date": record.get("date"),
                "pending": record.get("pending"),
                "category": record.get("category"),
                "category_id": record.get("category_id"),
                "account_id": record.get("account_id"),
                "account_name": account.get("name"),
            },
            attribute_types={"amount": "currency", "date": "date"},
            occurred_at=parse_datetime(record.get("date")),
        )


class PlaidProvider(ProviderAdapter):
    provider = IntegrationProvider.PLAID
    display_name = "Plaid"
    list_name = "Financial"

    config: PlaidConfig

    async def call(self, client: httpx.AsyncClient, path: str, **body) -> Dict[str, Any]:
        """POST to a Plaid endpoint with client credentials in the body."""
        payload = {"client_id": self.config.client_id, "secret": self.config.secret}
        payload.update(body)
        return await post_json(client, f"{self.config.base_url}{path}", json=payload)

    async def _build_connection(self, user_id: str, state: str) -> ConnectResponse:
        request = {
            "user": {"client_user_id": user_id},
            "client_name": CLIENT_NAME,
            "products": ["transactions"],
            "country_codes": ["US"],
            "language": "en",
        }
        if self.config.redirect_uri:
            request["redirect_uri"] = self.config.redirect_uri

        client = await self.get_client()
        try:
            data = await self.call(client, "/link/token/create", **request)
        except httpx.HTTPError as e:
            raise map_provider_error(self.name, e) from e

        link_token = data.get("link_token")
        if not link_token:
            raise ProviderAPIError(self.name, "Plaid did not return a link token")
        return ConnectResponse(
            provider=self.name,
            redirect_url=f"plaid://link?token={link_token}",
            link_token=link_token,
            state=state,
            details={"expiration": data.get("expiration")},
        )

    async def _complete_callback(self, user_id: str, payload) -> None:
        client = await self.get_client()
        try:
            data = await self.call(client, "/item/public_token/exchange", public_token=payload.public_token)
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (400, 401, 403):
                raise OAuthAuthenticationError(self.name, "Plaid rejected the public token") from e
            raise map_provider_error(self.name, e) from e
        except httpx.TransportError as e:
            raise map_provider_error(self.name, e) from e

        if not data.get("access_token"):
            raise OAuthAuthenticationError(self.name, "Plaid returned no access token")

        await self.credentials.set(user_id, self.provider, Credential(
            access_token=data["access_token"],
            provider_user_id=data.get("item_id"),
            expires_at=int(utc_now().timestamp()) + ACCESS_TOKEN_TTL_SECONDS,
        ))

    def sync_streams(self, context: SyncContext) -> List[SyncStream]:
        return [AccountsStream(self), TransactionsStream(self)]

    async def _status_details(self, user_id: str, credential: Optional[Credential]) -> Dict[str, Any]:
        return {
            "item_id": credential.provider_user_id if credential else None,
            "token_expires_at": credential.expires_at if credential else None,
            "environment": self.config.environment,
        }

    async def _revoke(self, credential: Credential) -> None:
        client = await self.get_client()
        await self.call(client, "/item/remove", access_token=credential.access_token)
