"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from notelink.services.settings import Settings
from notelink.session.events import EventBus
from notelink.session.store import SessionStore
from notelink.session.timers import BackgroundTasks

from tests.helpers import ManualScheduler, StubPersistenceGateway, StubSuggestionGateway, StubTagGateway


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(bus: EventBus) -> SessionStore:
    return SessionStore("page-1", bus)


@pytest.fixture
def tasks() -> BackgroundTasks:
    return BackgroundTasks(name="test")


@pytest.fixture
def persistence() -> StubPersistenceGateway:
    return StubPersistenceGateway()


@pytest.fixture
def suggestion_gateway() -> StubSuggestionGateway:
    return StubSuggestionGateway()


@pytest.fixture
def tag_gateway() -> StubTagGateway:
    return StubTagGateway()


@pytest.fixture
def settings() -> Settings:
    return Settings(workspace_id="ws-1")


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep settings, keys and logs out of the real home directory."""
    monkeypatch.setenv("NOTELINK_LOG_DIR", str(tmp_path / "logs"))
    for name in ("NOTELINK_BASE_URL", "NOTELINK_API_TOKEN", "NOTELINK_WORKSPACE_ID", "NOTELINK_DEBUG_LOGGING"):
        monkeypatch.delenv(name, raising=False)
