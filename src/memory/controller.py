"""MemoryController: conversation tracking and contextual recall.

Owns nothing global: stores, embedding provider, session tracker and the
background embedding queue are all passed in at construction. The shared
instance used by the tool layer is built from settings via
``MemoryController.get()``.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any

from src.config import settings
from src.memory.embedding_queue import EmbeddingQueue
from src.memory.errors import NotFoundError, ValidationError
from src.memory.models import (
    ROLES,
    STARTED_AT_KEY,
    USER_KEY,
    ContextWindow,
    ConversationHistory,
    ReferenceMatch,
    utc_now,
)

if TYPE_CHECKING:
    from src.memory.embedding import EmbeddingProvider
    from src.memory.models import Conversation, Message, Role, ScoredMessage
    from src.memory.sessions import SessionTracker
    from src.memory.store.base import ConversationStore, MessageStore

logger = logging.getLogger(__name__)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        msg = f"{field} must not be empty"
        raise ValidationError(msg)
    return value


def _lock_for(locks: weakref.WeakValueDictionary[str, asyncio.Lock], key: str) -> asyncio.Lock:
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


class MemoryController:
    """Orchestrates the stores, session tracker and embedding provider.

    Args:
        conversations: Conversation persistence.
        messages: Message persistence and similarity search.
        embedder: Text → vector provider.
        sessions: Active-conversation tracker.
        embedding_queue: Background embedder; built from *embedder* and
            *messages* using settings when omitted.
    """

    _instance: MemoryController | None = None

    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        embedder: EmbeddingProvider,
        sessions: SessionTracker,
        embedding_queue: EmbeddingQueue | None = None,
    ) -> None:
        self._conversations = conversations
        self._messages = messages
        self._embedder = embedder
        self._sessions = sessions
        self._queue = embedding_queue or EmbeddingQueue(
            embedder,
            messages,
            workers=settings.embedding_workers,
            max_size=settings.embedding_queue_size,
        )
        # Serialise lazy conversation creation per user and writes per conversation.
        # Entries disappear once no coroutine holds or waits on the lock.
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._conversation_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def get(cls) -> MemoryController:
        """Return the shared controller, building it from settings on first use."""
        if cls._instance is None:
            from src.memory.embedding import build_embedding_provider
            from src.memory.sessions import create_session_tracker
            from src.memory.store import create_stores

            conversations, messages = create_stores()
            cls._instance = cls(
                conversations,
                messages,
                build_embedding_provider(),
                create_session_tracker(),
            )
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def embedding_queue(self) -> EmbeddingQueue:
        return self._queue

    # -- Conversations ---------------------------------------------------------

    async def start_conversation(
        self,
        user_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create a conversation and make it the user's active one.

        Any previously active conversation is simply no longer tracked.
        """
        _require_text(user_id, "user_id")
        if title is not None:
            _require_text(title, "title")
        async with _lock_for(self._user_locks, user_id):
            return await self._create_conversation(user_id, title, metadata)

    async def _create_conversation(
        self,
        user_id: str,
        title: str | None,
        metadata: dict[str, Any] | None,
    ) -> str:
        full_metadata = {
            **(metadata or {}),
            USER_KEY: user_id,
            STARTED_AT_KEY: utc_now(),
        }
        conversation_id = await self._conversations.create(
            title or settings.default_conversation_title,
            full_metadata,
        )
        await self._sessions.set_active(user_id, conversation_id)
        logger.info("User %s started conversation %s", user_id, conversation_id)
        return conversation_id

    async def get_current_conversation(self, user_id: str) -> list[Message]:
        """Messages of the user's active conversation, or [] if there is none."""
        conversation_id = await self._sessions.get_active(user_id)
        if conversation_id is None:
            return []
        return await self._messages.list_by_conversation(conversation_id)

    # -- Ingestion -------------------------------------------------------------

    async def add_message(
        self,
        user_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append a message to the user's active conversation.

        Starts a conversation first if the user has none. The embedding is
        queued, not awaited: the returned message is invisible to similarity
        search until the background worker saves its vector.
        """
        _require_text(user_id, "user_id")
        _require_text(content, "content")
        if role not in ROLES:
            msg = f"role must be one of {', '.join(ROLES)}, got {role!r}"
            raise ValidationError(msg)

        async with _lock_for(self._user_locks, user_id):
            conversation_id = await self._sessions.get_active(user_id)
            if conversation_id is None:
                conversation_id = await self._create_conversation(user_id, None, None)

        async with _lock_for(self._conversation_locks, conversation_id):
            message_id = await self._messages.create(conversation_id, role, content, metadata)

        self._queue.submit(message_id, content)
        return message_id

    async def add_user_message(
        self, user_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> str:
        return await self.add_message(user_id, "user", content, metadata)

    async def add_assistant_message(
        self, user_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> str:
        return await self.add_message(user_id, "assistant", content, metadata)

    # -- Recall ----------------------------------------------------------------

    async def find_similar(self, text: str, limit: int = 5) -> list[ScoredMessage]:
        """Embed *text* and return the closest embedded messages."""
        _require_text(text, "text")
        vector = await self._embedder.embed(text)
        return await self._messages.search_by_similarity(vector, limit=limit)

    async def find_by_reference(self, text: str) -> ReferenceMatch | None:
        """Locate the conversation containing the message most similar to *text*.

        Returns None when nothing is embedded yet or the matched message's
        conversation no longer exists.
        """
        matches = await self.find_similar(text, limit=1)
        if not matches:
            return None

        top = matches[0].message
        conversation = await self._conversations.get(top.conversation_id)
        if conversation is None:
            logger.warning(
                "Message %s matched but conversation %s is gone",
                top.id,
                top.conversation_id,
            )
            return None

        messages = await self._messages.list_by_conversation(conversation.id)
        matched_index = next((i for i, m in enumerate(messages) if m.id == top.id), None)
        if matched_index is None:
            logger.warning("Matched message %s missing from conversation reload", top.id)
        return ReferenceMatch(
            conversation=conversation,
            messages=messages,
            matched_index=matched_index,
        )

    async def remember_with_context(
        self, query: str, window_size: int | None = None
    ) -> ContextWindow | None:
        """Find the best match for *query* plus up to *window_size* neighbours each side.

        The window is clamped to the conversation: no padding, no wraparound.
        """
        if window_size is None:
            window_size = settings.context_window_size
        if window_size < 0:
            msg = f"window_size must be >= 0, got {window_size}"
            raise ValidationError(msg)

        match = await self.find_by_reference(query)
        if match is None or match.matched_index is None:
            return None

        index = match.matched_index
        messages = match.messages
        return ContextWindow(
            conversation=match.conversation,
            messages=messages,
            before_context=messages[max(0, index - window_size) : index],
            after_context=messages[index + 1 : index + 1 + window_size],
            matched_message=messages[index],
        )

    async def get_all_history(self) -> ConversationHistory:
        """Every conversation (most recent first) with its ordered messages."""
        conversations = await self._conversations.list_all()
        by_id: dict[str, list[Message]] = {}
        for conversation in conversations:
            by_id[conversation.id] = await self._messages.list_by_conversation(conversation.id)
        return ConversationHistory(conversations=conversations, messages_by_conversation_id=by_id)

    async def search_conversations(self, text: str, limit: int | None = None) -> list[Conversation]:
        """Keyword search over titles, metadata and message content."""
        _require_text(text, "text")
        limit = settings.search_limit if limit is None else limit
        return await self._conversations.search_by_keyword(text, limit)

    async def search_messages(self, text: str, limit: int | None = None) -> list[Message]:
        """Keyword search over message content, newest first."""
        _require_text(text, "text")
        limit = settings.search_limit if limit is None else limit
        return await self._messages.search_by_keyword(text, limit)

    # -- Embedding maintenance -------------------------------------------------

    async def reembed_message(self, message_id: str) -> None:
        """Recompute and overwrite one message's embedding, awaiting the result.

        Raises:
            NotFoundError: the message does not exist.
            EmbeddingFailure: the provider failed.
        """
        message = await self._messages.get(message_id)
        if message is None:
            msg = f"Message not found: {message_id}"
            raise NotFoundError(msg)
        vector = await self._embedder.embed(message.content)
        await self._messages.set_embedding(message_id, vector)

    async def reembed_missing(self, limit: int = 100) -> int:
        """Queue every message that still lacks an embedding. Returns the count queued."""
        pending = await self._messages.list_missing_embeddings(limit)
        queued = sum(1 for m in pending if self._queue.submit(m.id, m.content))
        if queued:
            logger.info("Queued %d message(s) for re-embedding", queued)
        return queued

    # -- Lifecycle -------------------------------------------------------------

    async def wait_for_embeddings(self) -> None:
        """Block until all queued embeddings have been processed."""
        await self._queue.drain()

    async def close(self) -> None:
        """Finish queued embeddings and stop the background workers."""
        await self._queue.close()
