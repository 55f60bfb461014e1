"""
Deduplicating FIFO of pools waiting for an out-of-cycle evaluation.
"""

from collections import deque
from typing import Iterator

from sentinel_agent.models import WorkItem


class WorkQueue:
    """At most one outstanding WorkItem per pool."""

    def __init__(self):
        self._items: deque[WorkItem] = deque()
        self._queued: set[str] = set()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, pool_id: str) -> bool:
        return pool_id in self._queued

    def enqueue(self, pool_id: str, reason: str, now_ms: int) -> bool:
        """Queue a pool. Returns False when it is already queued."""
        if pool_id in self._queued:
            return False
        self._queued.add(pool_id)
        self._items.append(WorkItem(pool_id, reason, now_ms))
        return True

    def drain(self) -> Iterator[WorkItem]:
        """Pop the items queued when the drain started, oldest first.

        Each pool's marker is released as its item is popped, so a pool
        re-queued while the drain runs is picked up by the next drain.
        """
        for _ in range(len(self._items)):
            item = self._items.popleft()
            self._queued.discard(item.pool_id)
            yield item
