import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Set

logger = logging.getLogger(__name__)

# Changes held per subscriber before the oldest are dropped
SUBSCRIBER_QUEUE_SIZE = 100


@dataclass
class Change:
    """A single document write, as seen by subscribers."""

    table: str
    kind: str  # insert, update or delete
    old: Optional[Dict[str, Any]] = None
    new: Optional[Dict[str, Any]] = None

    def touches(self, predicate) -> bool:
        return any(doc is not None and predicate(doc) for doc in (self.old, self.new))


class ChangeFeed:
    """
    In-process push channel for document writes, keyed by table.

    Each subscriber owns a bounded queue; publishers never block on slow
    readers. A full queue drops its oldest change; subscribers re-read the
    full state on every change they receive.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def publish(self, change: Change) -> None:
        for queue in list(self._subscribers.get(change.table, ())):
            if queue.full():
                queue.get_nowait()
                logger.debug(f"Subscriber on {change.table} lagging, dropped oldest change")
            queue.put_nowait(change)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, ()))

    @asynccontextmanager
    async def subscribe(self, table: str) -> AsyncIterator["Subscription"]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(table, set()).add(queue)
        logger.debug(f"Subscribed to {table} ({self.subscriber_count(table)} listeners)")
        try:
            yield Subscription(queue)
        finally:
            self._subscribers[table].discard(queue)
            if not self._subscribers[table]:
                del self._subscribers[table]


class Subscription:
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self):
        return self

    async def __anext__(self) -> Change:
        return await self._queue.get()
