"""
Shared pytest fixtures for STORMWATCH tests.

Environment variables are set before any api.* import so the module-level
rate limiter is built with limiting disabled and no Redis.
"""

import os

import pytest

# ---------------------------------------------------------------------------
# Section 1: Environment setup (before ANY api.* imports)
# ---------------------------------------------------------------------------
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from stormwatch.config import Settings  # noqa: E402
from stormwatch.data.sql_store import SqlSnapshotStore  # noqa: E402
from stormwatch.data.store import InMemorySnapshotStore  # noqa: E402
from stormwatch.models import FeedFamily  # noqa: E402

from tests.doubles import FakeAdapter, FakeOracle, build_service, storm_feature  # noqa: E402


# ---------------------------------------------------------------------------
# Section 2: Settings and stores
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Settings isolated from the host environment and any .env file."""
    return Settings(
        _env_file=None,
        cmems_username="cmems-user",
        cmems_password="cmems-pass",
        oracle_api_key=None,
        fetch_attempts=1,
        fetch_backoff_seconds=0,
        http_timeout_seconds=5,
        database_url=None,
        rate_limit_enabled=False,
        scheduler_enabled=False,
    )


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def sql_store():
    return SqlSnapshotStore("sqlite:///:memory:")


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    """Runs a test against both store backends."""
    if request.param == "memory":
        return InMemorySnapshotStore()
    return SqlSnapshotStore("sqlite:///:memory:")


# ---------------------------------------------------------------------------
# Section 3: Service + client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def healthy_adapters(store, settings):
    """One succeeding adapter per family; the track feed reports Hurricane Erin."""
    return [
        FakeAdapter(store, settings, FeedFamily.TRACK_GEOMETRY, features=[storm_feature()]),
        FakeAdapter(store, settings, FeedFamily.GRIDDED_WEATHER, summary={"pressure": 1009.0}),
        FakeAdapter(store, settings, FeedFamily.OCEAN_FIELD, summary={"sst": 29.4}),
    ]


@pytest.fixture
def service(store, settings, healthy_adapters):
    return build_service(store, settings, healthy_adapters, oracle=FakeOracle())


@pytest.fixture
def client(service, settings):
    """FastAPI TestClient around an injected service."""
    from fastapi.testclient import TestClient

    from api.main import create_app

    app = create_app(settings=settings, service=service)
    with TestClient(app) as test_client:
        yield test_client
