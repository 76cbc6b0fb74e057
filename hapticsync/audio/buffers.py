"""Bounded queues that never block the producer."""
import asyncio
from typing import Generic, Optional, TypeVar
from hapticsync.core.logging import logger

T = TypeVar("T")


class DropOldestQueue(Generic[T]):
    """
    asyncio.Queue wrapper whose put never blocks: when full, the oldest item goes.

    Items removed by the queue itself (dropped, cleared, drained) are marked
    done; items handed to a consumer through get() must be acknowledged with
    task_done() for join() to return.
    """

    def __init__(self, name: str, max_items: int = 100):
        """
        Initialize the queue.

        Args:
            name: Name used in log messages
            max_items: Maximum number of items kept before dropping the oldest
        """
        self.name = name
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_items)
        self.dropped = 0

    def put_nowait(self, item: T) -> None:
        """Add an item, dropping the oldest one if the queue is full."""
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Queue {self.name} full, dropping oldest item")
            try:
                self.queue.get_nowait()  # Remove oldest
                self.queue.task_done()
                self.queue.put_nowait(item)  # Add new
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Get the next item, or None if nothing arrived within the timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def task_done(self) -> None:
        self.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self.queue.join()

    def drain(self) -> list[T]:
        """Remove and return everything queued."""
        items = []
        while True:
            try:
                items.append(self.queue.get_nowait())
                self.queue.task_done()
            except asyncio.QueueEmpty:
                return items

    def clear(self) -> int:
        """Discard everything queued; returns how many items were dropped."""
        return len(self.drain())

    def qsize(self) -> int:
        return self.queue.qsize()
