"""Session tracking — which conversation each user is currently appending to.

At most one active conversation per user; ``set_active`` overwrites. The
previous conversation stays retrievable by ID, it is just no longer active.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from src.config import settings
from src.db import get_connection
from src.memory.errors import ConfigurationError
from src.memory.models import utc_now

if TYPE_CHECKING:
    from pathlib import Path

    from src.db import _AsyncConnection

logger = logging.getLogger(__name__)


class SessionTracker(ABC):
    """Maps user IDs to their active conversation ID."""

    @abstractmethod
    async def get_active(self, user_id: str) -> str | None:
        """Return the user's active conversation ID, or None."""

    @abstractmethod
    async def set_active(self, user_id: str, conversation_id: str) -> None:
        """Make *conversation_id* the user's active conversation (last write wins)."""

    @abstractmethod
    async def clear(self, user_id: str) -> bool:
        """Forget the user's active conversation. Returns True if one was set."""


class InMemorySessionTracker(SessionTracker):
    """Dict-backed tracker. Entries live for the lifetime of the process."""

    def __init__(self) -> None:
        self._active: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._active)

    async def get_active(self, user_id: str) -> str | None:
        return self._active.get(user_id)

    async def set_active(self, user_id: str, conversation_id: str) -> None:
        previous = self._active.get(user_id)
        self._active[user_id] = conversation_id
        if previous and previous != conversation_id:
            logger.debug("User %s switched from %s to %s", user_id, previous, conversation_id)

    async def clear(self, user_id: str) -> bool:
        return self._active.pop(user_id, None) is not None


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS active_sessions (
    user_id         TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    updated_at      TEXT NOT NULL
)
"""


class SqlSessionTracker(SessionTracker):
    """Tracker persisted in the ``active_sessions`` table.

    Survives restarts and can be shared by several processes pointing at the
    same database (e.g. Turso). Pass an explicit *db_path* for test isolation.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self) -> _AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def get_active(self, user_id: str) -> str | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT conversation_id FROM active_sessions WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else None
        finally:
            await db.close()

    async def set_active(self, user_id: str, conversation_id: str) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO active_sessions (user_id, conversation_id, updated_at)
                VALUES (?, ?, ?)
                """,
                (user_id, conversation_id, utc_now()),
            )
            await db.commit()
        finally:
            await db.close()

    async def clear(self, user_id: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM active_sessions WHERE user_id = ?", (user_id,)
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()


def create_session_tracker(
    backend: str | None = None, db_path: Path | None = None
) -> SessionTracker:
    """Build the tracker named by *backend* (default ``settings.session_backend``)."""
    backend = backend or settings.session_backend
    if backend == "memory":
        return InMemorySessionTracker()
    if backend == "sql":
        return SqlSessionTracker(db_path=db_path)
    msg = f"Unknown session backend: {backend!r}"
    raise ConfigurationError(msg)
