"""Common test fixtures for the TagTree MCP server."""

import tempfile
from pathlib import Path

import pytest

from tagtree_mcp.config import config
from tagtree_mcp.models.db_models import init_db
from tagtree_mcp.services.sync_bus import SyncBus, Topic
from tagtree_mcp.services.tag_service import TagService
from tagtree_mcp.storage.favorites_repository import FavoritesRepository
from tagtree_mcp.storage.tag_repository import TagRepository
from tagtree_mcp.storage.tag_store import SqlTagStore
from tests.fakes import FakeTagStore


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def temp_dir():
    """Create a temporary directory for the database and logs."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", temp_dir)
    monkeypatch.setattr(config, "database_path", temp_dir / "db" / "test_tagtree.db")
    monkeypatch.setattr(config, "log_dir", temp_dir / "logs")
    monkeypatch.setattr(config, "user_id", 1)
    monkeypatch.setattr(config, "default_color", "slate")
    yield config


@pytest.fixture
def engine():
    """In-memory SQLite engine with every table created."""
    engine = init_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def tag_repository(engine, test_config):
    return TagRepository(engine=engine)


@pytest.fixture
def favorites_repository(engine, test_config):
    return FavoritesRepository(engine=engine)


@pytest.fixture
def bus():
    return SyncBus()


@pytest.fixture
def recorded(bus):
    """Every payload published on the bus, per topic, in delivery order."""
    events = {topic: [] for topic in Topic}
    for topic in Topic:
        bus.subscribe(topic, events[topic].append)
    return events


@pytest.fixture
def store(tag_repository, bus):
    return SqlTagStore(tag_repository, bus)


@pytest.fixture
def notices():
    return []


@pytest.fixture
def tag_service(store, bus, favorites_repository, notices):
    return TagService(store, bus, favorites=favorites_repository, notifier=notices.append)


@pytest.fixture
def fake_store(bus):
    return FakeTagStore(bus)


@pytest.fixture
def fake_service(fake_store, bus, notices):
    return TagService(fake_store, bus, notifier=notices.append)
