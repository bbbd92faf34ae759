"""
Health endpoint tests.
"""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.core.database import get_session
from app.main import app


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_with_database(client, db_engine):
    def override():
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert "strava" in body["providers"]
    assert len(body["providers"]) == 9


def test_health_degraded_when_database_unreachable(client):
    session = MagicMock()
    session.exec.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    app.dependency_overrides[get_session] = lambda: session

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["database"].startswith("disconnected")


def test_process_time_header(client):
    response = client.get("/api/v1/health")
    assert "X-Process-Time" in response.headers
