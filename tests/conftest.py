"""
Shared fixtures.

The key-value store is backed by fakeredis and the weather provider is a
seeded synthetic source, so no network or Redis server is needed.
"""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import random  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from agriadvisor.config import settings  # noqa: E402
from agriadvisor.dependencies.services import get_services  # noqa: E402
from agriadvisor.main import app  # noqa: E402
from agriadvisor.services import build_services  # noqa: E402
from agriadvisor.services.weather import SyntheticWeatherSource  # noqa: E402
from agriadvisor.utils.kv_store import KeyValueStore  # noqa: E402


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis_client):
    return KeyValueStore(redis_client)


@pytest.fixture
def services(store):
    return build_services(
        settings,
        store=store,
        weather_provider=SyntheticWeatherSource(random.Random(7)),
    )


@pytest.fixture
def client(services):
    """Test client wired to the in-memory service container."""
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fixed_now():
    # A Wednesday
    return datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)
