"""Per-character priority mailboxes with one run in flight per character.

Priority = base weight by sender class + proximity bonus:

    AI chat, player chat   10
    system messages         1
    proximity bonus        max(0, 10 - distance) when distance is known

Higher priority is served first; equal priority is served in enqueue order.
Each character's queue has a capacity; when it overflows the oldest entry
(by enqueue order, whatever its priority) is evicted.

process_next() takes the best entry out of the queue before running the
handler, so an entry is consumed exactly once even if the handler fails.
When a run finishes and entries remain, the next run is scheduled on the
event loop without waiting for another arrival.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from craftbot.events import Topic
from craftbot.models import Message

logger = logging.getLogger(__name__)

CHAT_WEIGHT = 10
SYSTEM_WEIGHT = 1
PROXIMITY_CUTOFF = 10.0

Handler = Callable[["QueueEntry"], Awaitable[Any]]


def message_priority(message: Message) -> float:
    priority: float = SYSTEM_WEIGHT
    if message.is_ai or message.kind == "chat":
        priority = CHAT_WEIGHT
    if message.distance is not None:
        priority += max(0.0, PROXIMITY_CUTOFF - message.distance)
    return priority


@dataclass(frozen=True)
class QueueEntry:
    character_id: str
    message: Message
    priority: float
    seq: int
    enqueued_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class QueueEvent:
    character_id: str
    entry: QueueEntry
    result: Any = None
    error: BaseException | None = None


class CharacterQueue:
    """One character's mailbox. Entries stay sorted best-first."""

    def __init__(self, character_id: str, capacity: int = 50) -> None:
        self.character_id = character_id
        self.capacity = capacity
        self.lock = asyncio.Lock()
        self._entries: list[QueueEntry] = []

    def push(self, entry: QueueEntry) -> QueueEntry | None:
        """Insert an entry. Returns the evicted entry on overflow."""
        self._entries.append(entry)
        self._entries.sort(key=lambda e: (-e.priority, e.seq))
        if len(self._entries) > self.capacity:
            oldest = min(self._entries, key=lambda e: e.seq)
            self._entries.remove(oldest)
            return oldest
        return None

    def pop(self) -> QueueEntry | None:
        return self._entries.pop(0) if self._entries else None

    def peek(self) -> QueueEntry | None:
        return self._entries[0] if self._entries else None

    def clear(self) -> None:
        self._entries = []

    @property
    def processing(self) -> bool:
        return self.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


class ConversationQueue:
    """All characters' mailboxes, created lazily on first reference."""

    def __init__(self, capacity: int = 50) -> None:
        self.capacity = capacity
        self._queues: dict[str, CharacterQueue] = {}
        self._seq = itertools.count()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

        self.message_queued: Topic[QueueEvent] = Topic("message_queued")
        self.message_processed: Topic[QueueEvent] = Topic("message_processed")
        self.processing_error: Topic[QueueEvent] = Topic("processing_error")

    def _queue(self, character_id: str) -> CharacterQueue:
        queue = self._queues.get(character_id)
        if queue is None:
            queue = self._queues[character_id] = CharacterQueue(character_id, self.capacity)
        return queue

    async def enqueue(self, character_id: str, message: Message) -> int:
        """Add a message to a character's queue. Returns the new depth."""
        queue = self._queue(character_id)
        entry = QueueEntry(
            character_id=character_id,
            message=message,
            priority=message_priority(message),
            seq=next(self._seq),
        )
        evicted = queue.push(entry)
        if evicted is not None:
            logger.warning(
                "queue for %s full (%d), evicted message from %s",
                character_id, queue.capacity, evicted.message.sender,
            )
        logger.info(
            "enqueued for %s (priority %.1f): %s - %s",
            character_id, entry.priority, message.sender, message.text,
        )
        await self.message_queued.publish(QueueEvent(character_id, entry))
        return len(queue)

    def dequeue(self, character_id: str) -> QueueEntry | None:
        queue = self._queues.get(character_id)
        return queue.pop() if queue is not None else None

    def peek(self, character_id: str) -> QueueEntry | None:
        queue = self._queues.get(character_id)
        return queue.peek() if queue is not None else None

    def depth(self, character_id: str) -> int:
        queue = self._queues.get(character_id)
        return len(queue) if queue is not None else 0

    def is_processing(self, character_id: str) -> bool:
        queue = self._queues.get(character_id)
        return queue is not None and queue.processing

    def clear(self, character_id: str) -> None:
        queue = self._queues.get(character_id)
        if queue is not None:
            queue.clear()
            logger.info("cleared queue for %s", character_id)

    def remove(self, character_id: str) -> None:
        """Tear down a character's queue and drop its pending entries.

        A queue whose run is still in flight keeps its slot, emptied, so the
        same id registered again waits on the same lock.
        """
        queue = self._queues.get(character_id)
        if queue is None:
            return
        queue.clear()
        if not queue.processing:
            del self._queues[character_id]

    async def process_next(self, character_id: str, handler: Handler) -> Any:
        """Run the handler on the best queued entry, if the character is idle.

        Returns the handler's result, or None when the character is already
        busy or has nothing queued. Handler errors are published on
        `processing_error` and re-raised.
        """
        queue = self._queues.get(character_id)
        if queue is None or queue.processing or not len(queue):
            if queue is not None and queue.processing:
                logger.debug("%s is already processing", character_id)
            return None

        async with queue.lock:
            entry = queue.pop()
            if entry is None:
                return None
            try:
                result = await handler(entry)
            except Exception as e:
                logger.error("error processing message for %s: %s", character_id, e)
                await self.processing_error.publish(QueueEvent(character_id, entry, error=e))
                raise
            else:
                await self.message_processed.publish(QueueEvent(character_id, entry, result=result))
                return result
            finally:
                self._schedule_drain(character_id, handler)

    def _schedule_drain(self, character_id: str, handler: Handler) -> None:
        queue = self._queues.get(character_id)
        if self._closed or queue is None or not len(queue):
            return
        logger.info("%d message(s) still queued for %s, continuing", len(queue), character_id)
        task = asyncio.get_running_loop().create_task(self._drain(character_id, handler))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain(self, character_id: str, handler: Handler) -> None:
        try:
            await self.process_next(character_id, handler)
        except Exception:
            # Already published on processing_error; nobody awaits this task.
            logger.debug("scheduled run for %s failed", character_id)

    @property
    def pending(self) -> int:
        """Scheduled follow-up runs not yet finished."""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until no scheduled follow-up runs remain."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel scheduled follow-up runs. Nothing is scheduled afterwards."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            cid: {"queue_length": len(q), "processing": q.processing}
            for cid, q in self._queues.items()
        }
