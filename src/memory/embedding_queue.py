"""Background embedding — a bounded queue drained by worker tasks.

``submit()`` never blocks: message ingestion returns as soon as the row is
written, and the vector is attached later. Until then the message is
visible to keyword search and replay but not to similarity search.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.memory.errors import EmbeddingFailure

if TYPE_CHECKING:
    from src.memory.embedding import EmbeddingProvider
    from src.memory.store.base import MessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingJob:
    message_id: str
    content: str


class EmbeddingQueue:
    """Bounded work queue that embeds messages and saves the vectors.

    Args:
        provider: Produces the vectors.
        message_store: Receives them via ``set_embedding``.
        workers: Number of concurrent worker tasks.
        max_size: Queue capacity; jobs submitted while full are dropped.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        message_store: MessageStore,
        workers: int = 2,
        max_size: int = 256,
    ) -> None:
        self._provider = provider
        self._store = message_store
        self._worker_count = max(1, workers)
        self._max_size = max_size
        # Created on first use, bound to the loop running the workers.
        self._queue: asyncio.Queue[EmbeddingJob] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._workers: list[asyncio.Task] = []
        self._closed = False
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    # -- Producer side ---------------------------------------------------------

    def submit(self, message_id: str, content: str) -> bool:
        """Queue a message for embedding. Returns False if it was dropped.

        Must be called from a running event loop.
        """
        if self._closed:
            logger.warning("Embedding queue closed; skipping message %s", message_id)
            self.dropped += 1
            return False
        queue = self._ensure_workers()
        try:
            queue.put_nowait(EmbeddingJob(message_id, content))
        except asyncio.QueueFull:
            logger.warning(
                "Embedding queue full (%d); message %s left unembedded",
                queue.maxsize,
                message_id,
            )
            self.dropped += 1
            return False
        return True

    # -- Consumer side ---------------------------------------------------------

    def _ensure_workers(self) -> asyncio.Queue[EmbeddingJob]:
        """Return the live queue, (re)starting workers on the running loop if needed."""
        loop = asyncio.get_running_loop()
        if self._queue is not None and self._loop is loop and self.running:
            return self._queue

        if self._loop is not loop:
            self._rebind(loop)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"embedding-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.debug("Started %d embedding worker(s)", self._worker_count)
        return self._queue

    def _rebind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Move queued jobs onto a fresh queue owned by *loop*."""
        stranded: list[EmbeddingJob] = []
        if self._queue is not None:
            while not self._queue.empty():
                stranded.append(self._queue.get_nowait())
            logger.warning(
                "Embedding workers lost their event loop; restarting with %d queued job(s)",
                len(stranded),
            )
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._loop = loop
        self._workers = []
        for job in stranded:
            self._queue.put_nowait(job)

    async def _worker(self) -> None:
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await self.process(job.message_id, job.content)
            finally:
                queue.task_done()

    async def process(self, message_id: str, content: str) -> bool:
        """Embed one message and save the vector. Never raises.

        Returns True when the vector was saved.
        """
        try:
            vector = await self._provider.embed(content)
            await self._store.set_embedding(message_id, vector)
        except EmbeddingFailure:
            self.failed += 1
            logger.exception("Embedding failed for message %s (non-fatal)", message_id)
            return False
        except Exception:
            self.failed += 1
            logger.exception("Saving embedding for message %s failed (non-fatal)", message_id)
            return False
        self.processed += 1
        logger.debug("Embedded message %s", message_id)
        return True

    # -- Lifecycle -------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is None:
            return
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._rebind(loop)
        if self._queue.qsize() and not self.running:
            self._ensure_workers()
        await self._queue.join()

    async def close(self) -> None:
        """Stop accepting jobs, finish the queued ones, then stop the workers."""
        self._closed = True
        await self.drain()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(
            "Embedding queue closed (processed=%d failed=%d dropped=%d)",
            self.processed,
            self.failed,
            self.dropped,
        )
