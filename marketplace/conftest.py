# marketplace/conftest.py
import os
import pytest

os.environ.setdefault("ENV", "test")

from marketplace.core.database import create_all_tables, drop_all_tables, init_engine, get_engine
from marketplace.features.events import ALL_EVENTS, get_event_bus


ADMIN_KEY = "test-admin-key"


@pytest.fixture(scope="function", autouse=True)
def db_url(tmp_path):
    """
    Fresh SQLite database for every test.

    Tables are created from metadata; the file is discarded with tmp_path.
    """
    url = f"sqlite:///{tmp_path / 'marketplace.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    drop_all_tables()
    get_engine().dispose()


@pytest.fixture(scope="function", autouse=True)
def event_bus():
    """Process event bus with no handlers left over from other tests."""
    bus = get_event_bus()
    bus.clear()
    yield bus
    bus.clear()


@pytest.fixture
def recorded_events(event_bus):
    """Every event emitted during the test, in order."""
    events = []
    event_bus.subscribe(ALL_EVENTS, events.append)
    return events


@pytest.fixture
def subscription_system():
    """Turn the subscription system on."""
    from marketplace.features.settings.service import save_subscription_settings

    return save_subscription_settings(enabled=True, updated_by="test")


@pytest.fixture
def seeded_plans():
    """Default catalog keyed by tier value."""
    from marketplace.features.plans.service import list_plans, seed_default_plans

    seed_default_plans()
    return {plan.tier.value: plan for plan in list_plans()}


@pytest.fixture
def store():
    from marketplace.features.stores.service import create_store

    return create_store("Test Store", owner_id="owner-1")


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    return {"X-Admin-Key": ADMIN_KEY, "X-Actor-Id": "admin-1"}


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from marketplace.main import app

    return TestClient(app)
