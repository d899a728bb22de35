"""Process-local stores for tests and ephemeral runs.

Both stores share one :class:`InMemoryDatabase` so that message inserts can
check and bump their conversation, mirroring the SQL backend.
"""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.memory.errors import NotFoundError, ReferenceIntegrityError
from src.memory.models import Conversation, Message, make_id, utc_now
from src.memory.similarity import rank_by_similarity
from src.memory.store.base import ConversationStore, MessageStore, matches_keyword

if TYPE_CHECKING:
    from collections.abc import Sequence

    from src.memory.models import Role, ScoredMessage


@dataclass
class InMemoryDatabase:
    """Rows keyed by ID, plus an insertion counter used as a tiebreaker."""

    conversations: dict[str, Conversation] = field(default_factory=dict)
    messages: dict[str, Message] = field(default_factory=dict)
    order: dict[str, int] = field(default_factory=dict)
    _seq: itertools.count = field(default_factory=itertools.count)

    def stamp(self, row_id: str) -> None:
        self.order[row_id] = next(self._seq)


class InMemoryConversationStore(ConversationStore):
    def __init__(self, db: InMemoryDatabase | None = None) -> None:
        self._db = db or InMemoryDatabase()

    def _recent_first(self, conversations: list[Conversation]) -> list[Conversation]:
        return sorted(
            conversations,
            key=lambda c: (c.updated_at, self._db.order[c.id]),
            reverse=True,
        )

    async def create(self, title: str, metadata: dict[str, Any] | None = None) -> str:
        now = utc_now()
        conversation = Conversation(
            id=make_id(),
            title=title,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        self._db.conversations[conversation.id] = conversation
        self._db.stamp(conversation.id)
        return conversation.id

    async def get(self, conversation_id: str) -> Conversation | None:
        conversation = self._db.conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def update(
        self,
        conversation_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if title is None and metadata is None:
            return
        conversation = self._db.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation not found: {conversation_id}"
            raise NotFoundError(msg)
        if title is not None:
            conversation.title = title
        if metadata is not None:
            conversation.metadata = dict(metadata)
        conversation.updated_at = utc_now()

    async def list_all(self) -> list[Conversation]:
        rows = self._recent_first(list(self._db.conversations.values()))
        return [c.model_copy(deep=True) for c in rows]

    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Conversation]:
        if limit <= 0:
            return []
        matched_ids = {
            m.conversation_id
            for m in self._db.messages.values()
            if matches_keyword(m.content, text)
        }
        hits = [
            c
            for c in self._db.conversations.values()
            if c.id in matched_ids
            or matches_keyword(c.title, text)
            or matches_keyword(json.dumps(c.metadata, ensure_ascii=False), text)
        ]
        return [c.model_copy(deep=True) for c in self._recent_first(hits)[:limit]]


class InMemoryMessageStore(MessageStore):
    def __init__(self, db: InMemoryDatabase | None = None) -> None:
        self._db = db or InMemoryDatabase()

    def _sort_key(self, message: Message) -> tuple[str, int]:
        return (message.timestamp, self._db.order[message.id])

    async def create(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        conversation = self._db.conversations.get(conversation_id)
        if conversation is None:
            msg = f"Conversation does not exist: {conversation_id}"
            raise ReferenceIntegrityError(msg)

        message = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=utc_now(),
            metadata=dict(metadata or {}),
        )
        self._db.messages[message.id] = message
        self._db.stamp(message.id)
        conversation.updated_at = message.timestamp
        return message.id

    async def get(self, message_id: str) -> Message | None:
        message = self._db.messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        rows = [m for m in self._db.messages.values() if m.conversation_id == conversation_id]
        return [m.model_copy(deep=True) for m in sorted(rows, key=self._sort_key)]

    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Message]:
        if limit <= 0:
            return []
        rows = [m for m in self._db.messages.values() if matches_keyword(m.content, text)]
        rows.sort(key=self._sort_key, reverse=True)
        return [m.model_copy(deep=True) for m in rows[:limit]]

    async def set_embedding(self, message_id: str, vector: Sequence[float]) -> None:
        message = self._db.messages.get(message_id)
        if message is None:
            msg = f"Message not found: {message_id}"
            raise NotFoundError(msg)
        message.embedding = [float(v) for v in vector]

    async def search_by_similarity(
        self, query_vector: Sequence[float], limit: int = 5
    ) -> list[ScoredMessage]:
        candidates = [m.model_copy(deep=True) for m in self._db.messages.values()]
        return rank_by_similarity(query_vector, candidates, limit)

    async def list_missing_embeddings(self, limit: int = 100) -> list[Message]:
        rows = [m for m in self._db.messages.values() if m.embedding is None]
        return [m.model_copy(deep=True) for m in sorted(rows, key=self._sort_key)[:limit]]
