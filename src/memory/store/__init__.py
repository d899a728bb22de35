"""Conversation and message storage backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.config import settings
from src.memory.errors import ConfigurationError
from src.memory.store.base import ConversationStore, MessageStore
from src.memory.store.memory import (
    InMemoryConversationStore,
    InMemoryDatabase,
    InMemoryMessageStore,
)
from src.memory.store.sql import SqlConversationStore, SqlMessageStore

if TYPE_CHECKING:
    from pathlib import Path


def create_stores(
    backend: str | None = None,
    db_path: Path | None = None,
) -> tuple[ConversationStore, MessageStore]:
    """Build a matching conversation/message store pair.

    *backend* defaults to ``settings.storage_backend``: ``"sql"`` for libsql
    (local file or Turso) or ``"memory"`` for process-local dicts.
    """
    backend = backend or settings.storage_backend
    if backend == "sql":
        return SqlConversationStore(db_path=db_path), SqlMessageStore(db_path=db_path)
    if backend == "memory":
        db = InMemoryDatabase()
        return InMemoryConversationStore(db), InMemoryMessageStore(db)
    msg = f"Unknown storage backend: {backend!r}"
    raise ConfigurationError(msg)


__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "InMemoryDatabase",
    "InMemoryMessageStore",
    "MessageStore",
    "SqlConversationStore",
    "SqlMessageStore",
    "create_stores",
]
