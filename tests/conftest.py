"""
Shared fixtures: an in-memory MongoDB (mongomock) behind a fresh DocumentStore,
and a TestClient wired to it.
"""
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_store
from database import DocumentStore
from main import app

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    return DocumentStore(client["hackmate_test"])


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store):
    def _make(name, **fields):
        doc = {"name": name, "email": f"{name.lower()}@college.edu", "onboardingCompleted": True, **fields}
        return store.create_document("user", doc)
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user_id):
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}
    return _headers


@pytest.fixture
def insert_message(store):
    """Insert a message with a fixed timestamp (minutes after BASE_TIME)."""
    def _insert(sender, receiver, content, minute):
        return store.create_document("message", {
            "senderId": sender,
            "receiverId": receiver,
            "content": content,
            "timestamp": BASE_TIME + timedelta(minutes=minute),
            "participants": [sender, receiver],
        })
    return _insert
