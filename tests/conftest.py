"""
Pytest fixtures shared across the unit suites.

Tests run against an in-memory SQLite database and never touch the network:
provider HTTP calls go through httpx.MockTransport (see tests/lib).
"""
from __future__ import annotations

import os

# Settings are read at import time; pin them before any app module loads.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32-chars")
os.environ.pop("REDIS_URL", None)

import pytest
from sqlmodel import Session

from app.core.database import build_engine, create_db_and_tables
from app.core.encryption import reset_key_cache
from app.integrations.credentials import InMemoryCredentialStore
from app.integrations.locks import KeyedLockRegistry
from app.integrations.persistence import IntegrationPersistence
from app.integrations.sync_engine import SyncEngine
from tests.lib import MockRoutes


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return lambda: Session(db_engine, expire_on_commit=False)


@pytest.fixture
def persistence(session_factory) -> IntegrationPersistence:
    return IntegrationPersistence(session_factory)


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def sync_engine(persistence) -> SyncEngine:
    """Engine with its own lock registry so tests never share locks."""
    return SyncEngine(persistence, locks=KeyedLockRegistry("test-sync"))


@pytest.fixture
def routes() -> MockRoutes:
    return MockRoutes()


@pytest.fixture
def http_client(routes):
    return routes.client()


@pytest.fixture(autouse=True)
def _reset_encryption_key():
    reset_key_cache()
    yield
    reset_key_cache()
