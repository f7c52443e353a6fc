"""
Best-effort interaction log.

``append()`` never blocks and never raises: records go onto a bounded queue
(oldest dropped on overflow) and a background writer hands them to the sink.
Sink failures are logged and swallowed.
"""
import asyncio
import logging
from typing import Optional, Protocol

from agentcore.config import INTERACTION_LOG_QUEUE_SIZE, INTERACTION_LOG_RETENTION_DAYS
from agentcore.db import crud
from agentcore.db.database import get_db
from agentcore.db.models import Interaction

logger = logging.getLogger(__name__)


class InteractionSink(Protocol):
    async def write(self, item: Interaction) -> None: ...


class SqliteInteractionSink:
    """Writes interactions to the ai_interactions table."""

    def __init__(self, retention_days: int = INTERACTION_LOG_RETENTION_DAYS) -> None:
        self.retention_days = retention_days

    async def write(self, item: Interaction) -> None:
        db = await get_db()
        await crud.interaction_append(db, item)

    async def prune(self) -> int:
        if self.retention_days <= 0:
            return 0
        db = await get_db()
        return await crud.interactions_prune(db, self.retention_days)


class InteractionLog:
    def __init__(self, sink: InteractionSink, max_queue: int = INTERACTION_LOG_QUEUE_SIZE) -> None:
        self.sink = sink
        self._queue: asyncio.Queue[Interaction] = asyncio.Queue(maxsize=max_queue)
        self._writer: Optional[asyncio.Task] = None
        self.written = 0
        self.dropped = 0
        self.failed = 0

    def append(self, item: Interaction) -> None:
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Interaction log queue full, dropped oldest record")
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _write_one(self, item: Interaction) -> None:
        try:
            await self.sink.write(item)
            self.written += 1
        except Exception as e:
            self.failed += 1
            logger.warning(f"Interaction log write failed ({item.agent_type}/{item.operation}): {e}")

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._write_one(item)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._run())
            logger.info("Interaction log writer started.")

    async def flush(self) -> None:
        """Wait until every queued record has been handed to the sink."""
        if self._writer is None or self._writer.done():
            while not self._queue.empty():
                item = self._queue.get_nowait()
                await self._write_one(item)
                self._queue.task_done()
            return
        await self._queue.join()

    async def stop(self) -> None:
        await self.flush()
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
            logger.info("Interaction log writer stopped.")

    def stats(self) -> dict:
        return {"pending": self.pending, "written": self.written, "dropped": self.dropped, "failed": self.failed}
