"""Data models for conversation and message storage."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]
ROLES: tuple[str, ...] = ("user", "assistant", "system")

# Reserved metadata keys written by the controller.
USER_KEY = "user_id"
STARTED_AT_KEY = "started_at"


def make_id() -> str:
    """Generate a new conversation or message ID."""
    return uuid.uuid4().hex


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string (sorts lexically)."""
    return datetime.now(UTC).isoformat()


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)


class Conversation(BaseModel):
    """A titled thread of messages."""

    id: str
    title: str
    created_at: str
    updated_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.metadata.get(USER_KEY)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``conversations`` column order."""
        return (
            self.id,
            self.title,
            self.created_at,
            self.updated_at,
            json.dumps(self.metadata, ensure_ascii=False),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            title=row[1],
            created_at=row[2],
            updated_at=row[3],
            metadata=_load_json(row[4], {}),
        )


class Message(BaseModel):
    """A single role-tagged utterance within a conversation."""

    id: str
    conversation_id: str
    role: Role
    content: str
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (
            self.id,
            self.conversation_id,
            self.timestamp,
            self.role,
            self.content,
            json.dumps(self.metadata, ensure_ascii=False),
            json.dumps(self.embedding) if self.embedding is not None else None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            timestamp=row[2],
            role=row[3],
            content=row[4],
            metadata=_load_json(row[5], {}),
            embedding=_load_json(row[6], None),
        )


# -- Query results -------------------------------------------------------------


class ScoredMessage(BaseModel):
    """A message paired with its cosine similarity to a query."""

    message: Message
    score: float


class ReferenceMatch(BaseModel):
    """The conversation holding the best match for a reference text.

    ``matched_index`` is the zero-based position of the matched message in
    ``messages``, or None if it could not be located on reload.
    """

    conversation: Conversation
    messages: list[Message]
    matched_index: int | None = None


class ContextWindow(BaseModel):
    """A matched message plus its neighbours in the same conversation."""

    conversation: Conversation
    messages: list[Message]
    before_context: list[Message]
    after_context: list[Message]
    matched_message: Message


class ConversationHistory(BaseModel):
    """Every conversation with its ordered messages."""

    conversations: list[Conversation] = Field(default_factory=list)
    messages_by_conversation_id: dict[str, list[Message]] = Field(default_factory=dict)
