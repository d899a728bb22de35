"""ConversationStore / MessageStore backed by libsql (SQLite file or Turso)."""

from __future__ import annotations

import itertools
import json
import logging
from typing import TYPE_CHECKING, Any

from src.db import get_connection
from src.memory.errors import NotFoundError, ReferenceIntegrityError
from src.memory.models import Conversation, Message, make_id, utc_now
from src.memory.similarity import rank_by_similarity
from src.memory.store.base import ConversationStore, MessageStore, matches_keyword

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from src.db import _AsyncConnection
    from src.memory.models import Role, ScoredMessage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id         TEXT PRIMARY KEY,
    title      TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    timestamp       TEXT NOT NULL,
    role            TEXT NOT NULL,
    content         TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    embedding       TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)
"""

_MESSAGE_COLUMNS = "id, conversation_id, timestamp, role, content, metadata, embedding"


class _SqlBackend:
    """Shared connection handling for the SQL stores.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``);
    otherwise the connection target comes from settings.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self) -> _AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.executescript(_SCHEMA)
            await db.commit()
            self._initialised = True
        return db


class SqlConversationStore(_SqlBackend, ConversationStore):
    """Conversations table CRUD."""

    async def create(self, title: str, metadata: dict[str, Any] | None = None) -> str:
        now = utc_now()
        conversation = Conversation(
            id=make_id(),
            title=title,
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO conversations (id, title, created_at, updated_at, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                conversation.to_row(),
            )
            await db.commit()
            logger.info("Created conversation %s (%s)", conversation.id, title)
            return conversation.id
        finally:
            await db.close()

    async def get(self, conversation_id: str) -> Conversation | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            )
            row = await cursor.fetchone()
            return Conversation.from_row(row) if row else None
        finally:
            await db.close()

    async def update(
        self,
        conversation_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        updates: list[str] = []
        params: list[Any] = []
        if title is not None:
            updates.append("title = ?")
            params.append(title)
        if metadata is not None:
            updates.append("metadata = ?")
            params.append(json.dumps(metadata, ensure_ascii=False))
        if not updates:
            return

        updates.append("updated_at = ?")
        params.extend([utc_now(), conversation_id])

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE conversations SET {', '.join(updates)} WHERE id = ?",  # noqa: S608
                tuple(params),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"Conversation not found: {conversation_id}"
                raise NotFoundError(msg)
        finally:
            await db.close()

    async def list_all(self) -> list[Conversation]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM conversations ORDER BY updated_at DESC, rowid DESC"
            )
            rows = await cursor.fetchall()
            return [Conversation.from_row(row) for row in rows]
        finally:
            await db.close()

    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Conversation]:
        # LIKE folds ASCII only; match in Python like the in-memory store.
        if limit <= 0:
            return []
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT conversation_id, content FROM messages")
            matched_ids = {
                conversation_id
                for conversation_id, content in await cursor.fetchall()
                if matches_keyword(content, text)
            }
            cursor = await db.execute(
                "SELECT * FROM conversations ORDER BY updated_at DESC, rowid DESC"
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        hits: list[Conversation] = []
        for row in rows:
            conversation_id, title, metadata = row[0], row[1], row[4]
            if (
                conversation_id in matched_ids
                or matches_keyword(title, text)
                or matches_keyword(metadata, text)
            ):
                hits.append(Conversation.from_row(row))
                if len(hits) == limit:
                    break
        return hits


class SqlMessageStore(_SqlBackend, MessageStore):
    """Messages table CRUD plus similarity search."""

    async def create(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        message = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=utc_now(),
            metadata=metadata or {},
        )
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            )
            if await cursor.fetchone() is None:
                msg = f"Conversation does not exist: {conversation_id}"
                raise ReferenceIntegrityError(msg)

            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
                message.to_row(),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (message.timestamp, conversation_id),
            )
            await db.commit()
            logger.debug("Stored %s message %s in %s", role, message.id, conversation_id)
            return message.id
        finally:
            await db.close()

    async def get(self, message_id: str) -> Message | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?",  # noqa: S608
                (message_id,),
            )
            row = await cursor.fetchone()
            return Message.from_row(row) if row else None
        finally:
            await db.close()

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp, rowid
                """,  # noqa: S608
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Message]:
        if limit <= 0:
            return []
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                ORDER BY timestamp DESC, rowid DESC
                """  # noqa: S608
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        hits = (Message.from_row(row) for row in rows if matches_keyword(row[4], text))
        return list(itertools.islice(hits, limit))

    async def set_embedding(self, message_id: str, vector: Sequence[float]) -> None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE messages SET embedding = ? WHERE id = ?",
                (json.dumps([float(v) for v in vector]), message_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"Message not found: {message_id}"
                raise NotFoundError(msg)
        finally:
            await db.close()

    async def search_by_similarity(
        self, query_vector: Sequence[float], limit: int = 5
    ) -> list[ScoredMessage]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE embedding IS NOT NULL"  # noqa: S608
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return rank_by_similarity(query_vector, (Message.from_row(r) for r in rows), limit)

    async def list_missing_embeddings(self, limit: int = 100) -> list[Message]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE embedding IS NULL
                ORDER BY timestamp, rowid
                LIMIT ?
                """,  # noqa: S608
                (limit,),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()
