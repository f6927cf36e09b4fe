"""
Reached set: all abstract states accepted so far.

States are grouped by location. For merge-candidate lookup the set also
maintains secondary indexes keyed by the value of one component of a
composite state (``where(index, value)``); an index is built on first
use and kept current on every add and remove afterwards.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Hashable, Iterator, List, Optional

from ..cfa.location import Location
from .state import AbstractState


def _component(state: AbstractState, index: int) -> Hashable:
    if hasattr(state, "component"):
        return state.component(index)
    if index == 0:
        return state
    raise IndexError(f"State {state!r} has no component {index}")


class ReachedSet:
    """Indexed set of reached abstract states."""

    def __init__(self):
        # dicts double as insertion-ordered sets
        self._by_location: Dict[Optional[Location], Dict[AbstractState, None]] = defaultdict(dict)
        self._indexes: Dict[int, Dict[Hashable, Dict[AbstractState, None]]] = {}
        self._size = 0

    def add(self, state: AbstractState) -> bool:
        """Add a state; False if an equal state was already reached."""
        bucket = self._by_location[state.location]
        if state in bucket:
            return False
        bucket[state] = None
        for index, table in self._indexes.items():
            table[_component(state, index)][state] = None
        self._size += 1
        return True

    def remove(self, state: AbstractState) -> bool:
        """Remove a state; False if it was not reached."""
        bucket = self._by_location.get(state.location)
        if bucket is None or state not in bucket:
            return False
        del bucket[state]
        if not bucket:
            del self._by_location[state.location]
        for index, table in self._indexes.items():
            key = _component(state, index)
            entries = table.get(key)
            if entries is not None:
                entries.pop(state, None)
                if not entries:
                    del table[key]
        self._size -= 1
        return True

    def where(self, index: int, value: Hashable) -> List[AbstractState]:
        """States whose component ``index`` equals ``value``."""
        table = self._indexes.get(index)
        if table is None:
            table = defaultdict(dict)
            for state in self:
                table[_component(state, index)][state] = None
            self._indexes[index] = table
        return list(table.get(value, ()))

    def at(self, location: Location) -> List[AbstractState]:
        return list(self._by_location.get(location, ()))

    def locations(self) -> List[Location]:
        return [loc for loc in self._by_location if loc is not None]

    def select(self, index: int) -> List[Hashable]:
        """Projection of all reached states onto one component."""
        return [_component(state, index) for state in self]

    def __contains__(self, state) -> bool:
        bucket = self._by_location.get(getattr(state, "location", None))
        return bucket is not None and state in bucket

    def __iter__(self) -> Iterator[AbstractState]:
        for bucket in list(self._by_location.values()):
            yield from list(bucket)

    def __len__(self):
        return self._size

    def is_empty(self) -> bool:
        return self._size == 0

    def __repr__(self):
        return f"ReachedSet(states={self._size}, locations={len(self._by_location)})"
