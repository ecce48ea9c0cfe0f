"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app


class AuthHeaders(dict):
    """Dict subclass that also stores the user's email and id."""

    def __init__(self, *args, email: str | None = None, user_id: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.email = email
        self.user_id = user_id


@pytest.fixture
def db():
    """Fresh in-memory database for each test."""
    database = mongomock.MongoClient()["travelease_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    """Test client with the database dependency overridden.

    The lifespan is not entered, so no real MongoDB connection is made.
    """
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def login_headers(client, email: str) -> AuthHeaders:
    client.post("/users", json={"email": email, "name": email.split("@")[0]})
    response = client.post("/login", json={"email": email})
    assert response.status_code == 200
    data = response.json()
    return AuthHeaders(
        {"Authorization": f"Bearer {data['token']}"},
        email=email,
        user_id=data["user"]["id"],
    )


@pytest.fixture
def auth_headers(client):
    """Register and log in a user, return bearer headers."""
    return login_headers(client, "test@example.com")


@pytest.fixture
def other_headers(client):
    """A second, unrelated user."""
    return login_headers(client, "other@example.com")
