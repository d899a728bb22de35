"""Shared test fixtures."""

import pytest

from src.memory.controller import MemoryController
from src.memory.embedding import HashingEmbeddingProvider
from src.memory.sessions import InMemorySessionTracker
from src.memory.store import create_stores


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def embedder() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider(dimension=384)


@pytest.fixture(params=["memory", "sql"])
def stores(request, tmp_path, monkeypatch):
    """A (conversations, messages) pair for each storage backend."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")
    return create_stores(request.param, db_path=tmp_path / "test.db")


@pytest.fixture
async def controller(stores, embedder):
    """A MemoryController over each backend with the hashing embedder."""
    conversations, messages = stores
    ctrl = MemoryController(conversations, messages, embedder, InMemorySessionTracker())
    yield ctrl
    await ctrl.close()
