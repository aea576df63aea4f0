"""Binary min-heap keyed on a numeric attribute of the queued items."""

import heapq
import itertools
from typing import Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class PriorityQueue(Generic[T]):
    """Min-heap ordered by ``key(item)``; equal priorities dequeue FIFO.

    ``max_size`` bounds memory for best-first searches: when exceeded, the
    worst half of the heap is dropped.
    """

    def __init__(
        self,
        items: Iterable[T] = (),
        key: Callable[[T], float] = lambda item: item.f,
        max_size: Optional[int] = None,
    ):
        self._key = key
        self._counter = itertools.count()
        self._heap: List[Tuple[float, int, T]] = []
        self.max_size = max_size
        for item in items:
            self.enqueue(item)

    def __len__(self) -> int:
        return len(self._heap)

    def is_empty(self) -> bool:
        return not self._heap

    def enqueue(self, item: T):
        heapq.heappush(self._heap, (self._key(item), next(self._counter), item))
        if self.max_size is not None and len(self._heap) > self.max_size:
            self._heap = heapq.nsmallest(self.max_size // 2 or 1, self._heap)
            heapq.heapify(self._heap)

    def dequeue(self) -> Optional[T]:
        if not self._heap:
            return None
        return heapq.heappop(self._heap)[2]

    def peek(self) -> Optional[T]:
        if not self._heap:
            return None
        return self._heap[0][2]

    def peek_many(self, count: int) -> List[T]:
        return [entry[2] for entry in heapq.nsmallest(count, self._heap)]
