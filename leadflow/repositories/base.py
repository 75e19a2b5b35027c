"""
Shared plumbing for the per-user stores: the store error type and snapshot
subscriptions. Every store pushes a full snapshot to its subscribers after
each successful write, so readers never poll.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Raised when a durable store read or write fails."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class SnapshotPublisher(Generic[T]):
    """Fan-out of full per-user snapshots to any number of subscribers."""

    def __init__(self):
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def snapshot(self, user_id: str) -> T:
        raise NotImplementedError

    async def subscribe(self, user_id: str) -> AsyncIterator[T]:
        """
        Yield the current snapshot, then a new one after every write.

        Stop by breaking out of the loop or calling aclose() on the iterator.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[user_id].add(queue)
        try:
            yield await self.snapshot(user_id)
            while True:
                yield await queue.get()
        finally:
            self._subscribers[user_id].discard(queue)
            if not self._subscribers[user_id]:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def publish(self, user_id: str) -> None:
        queues = list(self._subscribers.get(user_id, ()))
        if not queues:
            return

        try:
            current = await self.snapshot(user_id)
        except StoreError as e:
            # Subscribers keep their previous snapshot; the next write republishes
            logger.warning("Snapshot publish failed", user_id=user_id, error=str(e))
            return

        for queue in queues:
            queue.put_nowait(current)
