"""Storage interfaces for conversations and messages.

Every backend implements both classes; the controller only talks to these
interfaces, so backends are interchangeable at construction time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from src.memory.models import Conversation, Message, Role, ScoredMessage


def matches_keyword(haystack: str, needle: str) -> bool:
    """Case-insensitive substring test shared by every backend (Unicode-aware)."""
    return needle.casefold() in haystack.casefold()


class ConversationStore(ABC):
    """Persists conversation records."""

    @abstractmethod
    async def create(self, title: str, metadata: dict[str, Any] | None = None) -> str:
        """Insert a conversation and return its new ID."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Conversation | None:
        """Fetch a conversation by ID, or None if not found."""

    @abstractmethod
    async def update(
        self,
        conversation_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Change title and/or metadata. Does nothing if neither is given."""

    @abstractmethod
    async def list_all(self) -> list[Conversation]:
        """All conversations, most recently updated first."""

    @abstractmethod
    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Conversation]:
        """Case-insensitive substring match on title, metadata or message content."""


class MessageStore(ABC):
    """Persists messages and their optional embeddings."""

    @abstractmethod
    async def create(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Insert a message and bump the conversation's ``updated_at``.

        Raises:
            ReferenceIntegrityError: the conversation does not exist.
        """

    @abstractmethod
    async def get(self, message_id: str) -> Message | None:
        """Fetch a message by ID, or None if not found."""

    @abstractmethod
    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in replay (oldest first) order."""

    @abstractmethod
    async def search_by_keyword(self, text: str, limit: int = 10) -> list[Message]:
        """Case-insensitive substring match on content, newest first."""

    @abstractmethod
    async def set_embedding(self, message_id: str, vector: Sequence[float]) -> None:
        """Attach (or overwrite) a message's embedding.

        Raises:
            NotFoundError: the message does not exist.
        """

    @abstractmethod
    async def search_by_similarity(
        self, query_vector: Sequence[float], limit: int = 5
    ) -> list[ScoredMessage]:
        """Best *limit* embedded messages by cosine similarity to *query_vector*."""

    @abstractmethod
    async def list_missing_embeddings(self, limit: int = 100) -> list[Message]:
        """Messages that have no embedding yet, oldest first."""
