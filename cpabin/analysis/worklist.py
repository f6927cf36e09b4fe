"""
Worklists: the frontier of states waiting to be processed.

The engine only relies on add/pick/remove/membership; the pick order is
a policy. Adding a state that is already pending is a no-op, and
removing a state that is not pending returns False, so the engine can
replace merged-away states without checking first.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, Generic, Iterator, List, Tuple, TypeVar
import heapq
import itertools

T = TypeVar('T')


class Worklist(ABC, Generic[T]):

    @abstractmethod
    def add(self, item: T) -> bool:
        ...

    @abstractmethod
    def pick(self) -> T:
        """Remove and return the next item; IndexError if empty."""
        ...

    @abstractmethod
    def remove(self, item: T) -> bool:
        ...

    @abstractmethod
    def __contains__(self, item) -> bool:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def is_empty(self) -> bool:
        return len(self) == 0


class _OrderedWorklist(Worklist[T]):
    """Worklist over an insertion-ordered dict."""

    def __init__(self):
        self._items: Dict[T, None] = {}

    def add(self, item: T) -> bool:
        if item in self._items:
            return False
        self._items[item] = None
        return True

    def remove(self, item: T) -> bool:
        if item in self._items:
            del self._items[item]
            return True
        return False

    def __contains__(self, item) -> bool:
        return item in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


class DepthFirstWorklist(_OrderedWorklist[T]):
    """Picks the most recently added item."""

    def pick(self) -> T:
        if not self._items:
            raise IndexError("pick from empty worklist")
        item, _ = self._items.popitem()
        return item


class BreadthFirstWorklist(_OrderedWorklist[T]):
    """Picks the oldest item."""

    def pick(self) -> T:
        if not self._items:
            raise IndexError("pick from empty worklist")
        item = next(iter(self._items))
        del self._items[item]
        return item


class PriorityWorklist(Worklist[T]):
    """
    Picks the item with the smallest key.

    Removed items stay in the heap and are skipped lazily when picked.
    Ties are broken by insertion order.
    """

    def __init__(self, key: Callable[[T], object]):
        self._key = key
        self._heap: List[Tuple[object, int, T]] = []
        self._members: Dict[T, int] = {}
        self._counter = itertools.count()

    def add(self, item: T) -> bool:
        if item in self._members:
            return False
        seq = next(self._counter)
        self._members[item] = seq
        heapq.heappush(self._heap, (self._key(item), seq, item))
        return True

    def pick(self) -> T:
        while self._heap:
            _, seq, item = heapq.heappop(self._heap)
            if self._members.get(item) == seq:
                del self._members[item]
                return item
        raise IndexError("pick from empty worklist")

    def remove(self, item: T) -> bool:
        return self._members.pop(item, None) is not None

    def __contains__(self, item) -> bool:
        return item in self._members

    def __len__(self) -> int:
        return len(self._members)


def location_priority(state) -> tuple:
    """Priority key ordering states by location (lowest address first)."""
    location = state.location
    return location.sort_key() if location is not None else ()
