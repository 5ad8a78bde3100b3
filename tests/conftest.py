import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from issuetracker.config import get_settings, load_settings
from issuetracker.main import create_app
from issuetracker.memory import InMemoryStorageClient
from issuetracker.schemas import Actor
from issuetracker.services import Services


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("TOKEN_SECRET_KEY", "test-secret-key-for-the-issue-tracker-suite")
    monkeypatch.setenv("PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.setenv("CACHE_MAX_AGE", "60")
    get_settings.cache_clear()
    yield load_settings()
    get_settings.cache_clear()


@pytest.fixture
def clock():
    """Strictly increasing timestamps one second apart, so ordering is deterministic."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def storage(settings):
    return InMemoryStorageClient(settings)


@pytest.fixture
def containers(storage):
    return storage.connect()


@pytest.fixture
def services(containers, settings, clock):
    return Services(containers, settings, clock)


@pytest.fixture
def actor():
    return Actor(user_id="user-1", email="owner@example.com")


@pytest.fixture
def client(storage, settings):
    app = create_app(storage=storage, settings=settings)
    with TestClient(app) as c:
        yield c


def _register(client, email="alice@example.com", password="correct horse"):
    resp = client.post(
        "/api/auth/register",
        json={"givenName": "Alice", "familyName": "Liddell", "email": email, "password": password},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def register():
    return _register


@pytest.fixture
def auth_headers(client):
    body = _register(client)
    return {"Authorization": f"Bearer {body['token']}"}
