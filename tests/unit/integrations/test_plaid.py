"""
Unit tests for the Plaid adapter.
"""
import json

import pytest

from app.core.exceptions import OAuthAuthenticationError, ProviderAPIError
from app.integrations.callbacks import parse_callback
from app.integrations.config import PlaidConfig
from app.integrations.credentials import Credential
from app.integrations.providers.plaid import PlaidProvider, categorize_transaction
from app.models.integration import LinkStatus

BASE_URL = "https://sandbox.plaid.com"


@pytest.fixture
def plaid(persistence, credential_store, http_client, sync_engine):
    return PlaidProvider(
        PlaidConfig(client_id="plaid-client", secret="plaid-secret", environment="sandbox"),
        persistence,
        credential_store,
        http_client=http_client,
        engine=sync_engine,
    )


def _transaction(transaction_id, name="Coffee", amount=4.5, category=None, date="2024-03-01"):
    return {
        "transaction_id": transaction_id,
        "account_id": "acc-1",
        "name": name,
        "merchant_name": name,
        "amount": amount,
        "iso_currency_code": "USD",
        "date": date,
        "category": category or [],
        "pending": False,
    }


def _accounts():
    return {"accounts": [{
        "account_id": "acc-1",
        "name": "Checking",
        "official_name": "Plaid Gold Checking",
        "mask": "0000",
        "type": "depository",
        "balances": {"current": 110.0, "available": 100.0, "iso_currency_code": "USD"},
    }]}


class TestCategorizeTransaction:

    @pytest.mark.parametrize("transaction, expected", [
        ({"name": "Starbucks"}, ("Food", "Dining")),
        ({"name": "United", "category": ["Travel", "Airlines"]}, ("Travel", "Travel Expenses")),
        ({"name": "Uber 063015"}, ("Transport", "Transportation")),
        ({"name": "Safeway"}, ("Food", "Groceries")),
        ({"name": "Misc", "personal_finance_category": {"primary": "ENTERTAINMENT"}}, ("Places", "Entertainment")),
        ({"name": "Misc"}, ("Places", "General Expenses")),
    ])
    def test_rules(self, transaction, expected):
        classification = categorize_transaction(transaction)
        assert (classification.list_name, classification.category_name) == expected


class TestPlaidConnect:

    @pytest.mark.asyncio
    async def test_link_token(self, plaid, routes):
        routes.add("POST", f"{BASE_URL}/link/token/create", json={"link_token": "link-sandbox-1", "expiration": "soon"})

        connection = await plaid.create_connection("user-1")

        assert connection.link_token == "link-sandbox-1"
        assert connection.redirect_url == "plaid://link?token=link-sandbox-1"
        body = json.loads(routes.calls("POST", f"{BASE_URL}/link/token/create")[0].content)
        assert body["client_id"] == "plaid-client"
        assert body["secret"] == "plaid-secret"
        assert body["user"] == {"client_user_id": "user-1"}

    @pytest.mark.asyncio
    async def test_missing_link_token(self, plaid, routes):
        routes.add("POST", f"{BASE_URL}/link/token/create", json={})

        with pytest.raises(ProviderAPIError, match="link token"):
            await plaid.create_connection("user-1")

    @pytest.mark.asyncio
    async def test_public_token_exchange(self, plaid, routes, credential_store, persistence):
        routes.add("POST", f"{BASE_URL}/link/token/create", json={"link_token": "link-sandbox-1"})
        routes.add("POST", f"{BASE_URL}/item/public_token/exchange", json={"access_token": "access-sandbox-1", "item_id": "item-1"})
        routes.add("POST", f"{BASE_URL}/accounts/get", json=_accounts())
        routes.add("POST", f"{BASE_URL}/transactions/get", json={"transactions": [], "total_transactions": 0})

        connection = await plaid.create_connection("user-1")
        await plaid.handle_callback(parse_callback("plaid", {"publicToken": "public-1", "state": connection.state}))

        credential = await credential_store.get("user-1", "plaid")
        assert credential.access_token == "access-sandbox-1"
        assert credential.provider_user_id == "item-1"
        assert credential.expires_at is not None

        integration = await persistence.get_integration("plaid")
        assert (await persistence.get_link("user-1", integration.id)).status == LinkStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_rejected_public_token(self, plaid, routes):
        routes.add("POST", f"{BASE_URL}/link/token/create", json={"link_token": "link-sandbox-1"})
        routes.add("POST", f"{BASE_URL}/item/public_token/exchange", status_code=400, json={"error_code": "INVALID_PUBLIC_TOKEN"})

        connection = await plaid.create_connection("user-1")

        with pytest.raises(OAuthAuthenticationError):
            await plaid.handle_callback(parse_callback("plaid", {"public_token": "bad", "state": connection.state}))


class TestPlaidSync:

    @pytest.mark.asyncio
    async def test_accounts_and_transactions(self, plaid, routes, credential_store, persistence):
        await credential_store.set("user-1", "plaid", Credential(access_token="access-sandbox-1"))
        routes.add("POST", f"{BASE_URL}/accounts/get", json=_accounts())
        routes.add("POST", f"{BASE_URL}/transactions/get", json={
            "transactions": [
                _transaction("t1", "Starbucks"),
                _transaction("t2", "Delta", 320.0, category=["Travel", "Airlines"]),
            ],
            "total_transactions": 2,
        })

        result = await plaid.sync("user-1")

        assert result.details["created"] == 3
        assert result.details["categories"]["Dining"]["processed"] == 1
        assert result.details["categories"]["Travel Expenses"]["processed"] == 1

        account = (await persistence.list_items("user-1", list_name="Financial"))[0]
        assert account.title == "Plaid Gold Checking ••0000"
        assert account.attributes["current_balance"] == 110.0

        dining = (await persistence.list_items("user-1", list_name="Food"))[0]
        assert dining.attributes["account_name"] == "Checking"
        assert dining.title == "Starbucks | 4.5 USD"

    @pytest.mark.asyncio
    async def test_transactions_paginate_by_total(self, plaid, routes, credential_store):
        await credential_store.set("user-1", "plaid", Credential(access_token="access-sandbox-1"))
        routes.add("POST", f"{BASE_URL}/accounts/get", json={"accounts": []})
        routes.add("POST", f"{BASE_URL}/transactions/get", json={
            "transactions": [_transaction("t1"), _transaction("t2")], "total_transactions": 3,
        })
        routes.add("POST", f"{BASE_URL}/transactions/get", json={
            "transactions": [_transaction("t3")], "total_transactions": 3,
        })

        result = await plaid.sync("user-1")

        offsets = [json.loads(r.content)["options"]["offset"] for r in routes.calls("POST", f"{BASE_URL}/transactions/get")]
        assert offsets == [0, 2]
        assert result.details["streams"]["transactions"]["created"] == 3

    @pytest.mark.asyncio
    async def test_status_details(self, plaid, credential_store, persistence):
        await credential_store.set("user-1", "plaid", Credential(access_token="a", provider_user_id="item-1"))
        integration = await persistence.ensure_integration("plaid")
        await persistence.mark_connected("user-1", integration.id)

        status = await plaid.status("user-1")

        assert status.connected is True
        assert status.details["item_id"] == "item-1"
        assert status.details["environment"] == "sandbox"

    @pytest.mark.asyncio
    async def test_disconnect_removes_item(self, plaid, routes, credential_store):
        await credential_store.set("user-1", "plaid", Credential(access_token="access-sandbox-1"))
        routes.add("POST", f"{BASE_URL}/item/remove", json={"removed": True})

        await plaid.disconnect("user-1")

        body = json.loads(routes.calls("POST", f"{BASE_URL}/item/remove")[0].content)
        assert body["access_token"] == "access-sandbox-1"
        assert await credential_store.get("user-1", "plaid") is None
