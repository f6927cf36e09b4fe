"""
Control-location component.

Component 0 of every composite state. Forward analysis moves to the
edge target, backward analysis to the edge source. States at different
locations are incomparable, which is what keeps merge and stop from
crossing locations.
"""

from __future__ import annotations

from typing import Iterable, Set

from ..cfa.edge import CFAEdge
from ..cfa.location import Location
from .cpa import ConfigurableProgramAnalysis, merge_sep
from .state import AbstractState, Precision


class LocationState(AbstractState):
    """Abstract state that only records a program location."""

    def __init__(self, location: Location):
        super().__init__()
        self._location = location

    @property
    def location(self) -> Location:
        return self._location

    def join(self, other: AbstractState) -> AbstractState:
        if self == other:
            return self
        raise ValueError(f"Cannot join distinct locations {self._location} and {other.location}")

    def less_or_equal(self, other: AbstractState) -> bool:
        return self == other

    def __eq__(self, other):
        return isinstance(other, LocationState) and self._location == other._location

    def __hash__(self):
        return hash(self._location)

    def __repr__(self):
        return f"LocationState({self._location})"


class LocationAnalysis(ConfigurableProgramAnalysis):
    """Forward location tracking."""

    def init_start_state(self, location: Location) -> LocationState:
        return LocationState(location)

    def _next_location(self, edge: CFAEdge) -> Location:
        return edge.target

    def post(self, state: AbstractState, edge: CFAEdge, precision: Precision) -> Set[AbstractState]:
        return {LocationState(self._next_location(edge))}

    def merge(self, s1: AbstractState, s2: AbstractState, precision: Precision) -> AbstractState:
        return merge_sep(s1, s2, precision)

    def stop(self, state: AbstractState, reached: Iterable[AbstractState], precision: Precision) -> bool:
        return any(state == r for r in reached)


class BackwardLocationAnalysis(LocationAnalysis):
    """Backward location tracking: successors are edge sources."""

    def _next_location(self, edge: CFAEdge) -> Location:
        return edge.source
