from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class EvictionPolicy(ABC):
    """Decides which items leave a bounded store once it is over capacity"""

    name: str = "abstract"

    @abstractmethod
    def evict(self, items: List[Any], capacity: int) -> List[Any]:
        """Remove items in place until the store fits; return what was removed"""


class FifoEviction(EvictionPolicy):
    """Oldest insertion leaves first"""

    name = "fifo"

    def evict(self, items: List[Any], capacity: int) -> List[Any]:
        overflow = max(0, len(items) - capacity)
        evicted = items[:overflow]
        del items[:overflow]
        return evicted


class LruEviction(EvictionPolicy):
    """Items are kept in recency order; the least recently touched sits at index 0"""

    name = "lru"

    def evict(self, items: List[Any], capacity: int) -> List[Any]:
        evicted = []
        while len(items) > capacity:
            evicted.append(items.pop(0))
        return evicted


class LowestImpactEviction(EvictionPolicy):
    """Drops the single lowest-scored item per overflow, regardless of age.

    Ties go to the earliest inserted item. A freshly inserted item can be the
    one removed if it scores lowest.
    """

    name = "lowest_impact"

    def __init__(self, score: Callable[[Any], float] = lambda item: item.impact):
        self.score = score

    def evict(self, items: List[Any], capacity: int) -> List[Any]:
        evicted = []
        while len(items) > capacity:
            victim = min(range(len(items)), key=lambda i: self.score(items[i]))
            evicted.append(items.pop(victim))
        return evicted


class CompletedFirstEviction(EvictionPolicy):
    """Purges every finished item first, then falls back to oldest-first"""

    name = "completed_first"

    def __init__(self, is_completed: Callable[[Any], bool]):
        self.is_completed = is_completed

    def evict(self, items: List[Any], capacity: int) -> List[Any]:
        if len(items) <= capacity:
            return []

        evicted = [item for item in items if self.is_completed(item)]
        items[:] = [item for item in items if not self.is_completed(item)]

        while len(items) > capacity:
            evicted.append(items.pop(0))
        return evicted


class BoundedStore(Generic[T]):
    """Ordered collection that never holds more than `capacity` items"""

    def __init__(self, capacity: int, policy: EvictionPolicy):
        self.capacity = max(1, capacity)
        self.policy = policy
        self._items: List[T] = []

    def add(self, item: T) -> List[T]:
        """Append an item and apply the eviction policy"""
        self._items.append(item)
        return self.policy.evict(self._items, self.capacity)

    def remove(self, predicate: Callable[[T], bool]) -> List[T]:
        removed = [item for item in self._items if predicate(item)]
        self._items = [item for item in self._items if not predicate(item)]
        return removed

    def replace(self, predicate: Callable[[T], bool], item: T) -> bool:
        """Swap the first matching item in place, keeping its position"""
        for index, existing in enumerate(self._items):
            if predicate(existing):
                self._items[index] = item
                return True
        return False

    def find(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for item in self._items:
            if predicate(item):
                return item
        return None

    def items(self) -> List[T]:
        return list(self._items)

    def clear(self) -> None:
        self._items = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
