"""Priority queue of pool items ordered by reservation time."""

from __future__ import annotations

import heapq
from collections.abc import Iterator
from dataclasses import dataclass

from cellonet.interfaces import NetResource


@dataclass(eq=False)
class PoolItem:
    """A resource held by the pool, with owner and timing data."""

    res: NetResource
    owner: str = ""
    last_use: float = 0.0
    reserve_before: float = 0.0

    @property
    def id(self) -> str:
        return self.res.id

    def __lt__(self, other: PoolItem) -> bool:
        return self.reserve_before < other.reserve_before


class PriorityQueue:
    """Min-heap of items by ``reserve_before``, holding at most one item per resource id."""

    def __init__(self) -> None:
        self._heap: list[PoolItem] = []

    def push(self, item: PoolItem) -> None:
        """Add an item; for a known id, only its reservation time is updated."""
        existing = self.find(item.res.id)
        if existing is not None:
            existing.reserve_before = item.reserve_before
            heapq.heapify(self._heap)
            return
        heapq.heappush(self._heap, item)

    def pop(self) -> PoolItem | None:
        """Remove and return the earliest item, or None when empty."""
        return heapq.heappop(self._heap) if self._heap else None

    def peek(self) -> PoolItem | None:
        """Return the earliest item without removing it."""
        return self._heap[0] if self._heap else None

    def pop_prefer(self, res_id: str) -> PoolItem | None:
        """Remove the item with ``res_id``; with an empty id, pop the earliest."""
        if not res_id:
            return self.pop()
        for index, item in enumerate(self._heap):
            if item.res.id == res_id:
                del self._heap[index]
                heapq.heapify(self._heap)
                return item
        return None

    def find(self, res_id: str) -> PoolItem | None:
        return next((item for item in self._heap if item.res.id == res_id), None)

    def dump(self) -> dict[str, PoolItem]:
        return {item.res.id: item for item in self._heap}

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[PoolItem]:
        return iter(list(self._heap))