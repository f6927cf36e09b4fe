"""
Configurable Program Analysis contract.

A CPA bundles the operators the worklist engine needs from one abstract
domain:
- init_start_state / init_precision: initial element and granularity
- post: abstract successors along a CFA edge (transfer)
- merge: combine a new state with a reached one (sep or join)
- stop: is a new state covered by what was already reached?
- prec: precision refinement before successors are computed

The merge/stop helpers below implement the two standard operator pairs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence, Set, Tuple

from ..cfa.edge import CFAEdge
from ..cfa.location import Location
from .state import AbstractState, NullPrecision, Precision


class ConfigurableProgramAnalysis(ABC):
    """
    One abstract domain and its operators.

    ``requires_art`` marks analyses whose results are only meaningful
    together with the reachability tree (e.g. secondary location tracking).
    """

    requires_art: bool = False

    @abstractmethod
    def init_start_state(self, location: Location) -> AbstractState:
        ...

    def init_precision(self, location: Location, transformer) -> Precision:
        return NullPrecision()

    @abstractmethod
    def post(self, state: AbstractState, edge: CFAEdge, precision: Precision) -> Set[AbstractState]:
        """Abstract successors of ``state`` along ``edge``; empty if infeasible."""
        ...

    def strengthen(
        self,
        state: AbstractState,
        others: Sequence[AbstractState],
        edge: CFAEdge,
        precision: Precision,
    ) -> AbstractState:
        """
        Refine a successor using the sibling components of the composite.

        ``others`` holds the full successor tuple, including ``state``
        itself at its own position.
        """
        return state

    @abstractmethod
    def merge(self, s1: AbstractState, s2: AbstractState, precision: Precision) -> AbstractState:
        """Merge new state ``s1`` into reached state ``s2``; result must cover ``s2``."""
        ...

    @abstractmethod
    def stop(self, state: AbstractState, reached: Iterable[AbstractState], precision: Precision) -> bool:
        ...

    def prec(
        self,
        state: AbstractState,
        precision: Precision,
        reached: Iterable[AbstractState],
    ) -> Tuple[AbstractState, Precision]:
        return state, precision


# ============================================================================
# Standard operators
# ============================================================================

def merge_sep(s1: AbstractState, s2: AbstractState, precision: Optional[Precision] = None) -> AbstractState:
    """Never merge: keep states separate (path sensitive)."""
    return s2


def merge_join(s1: AbstractState, s2: AbstractState, precision: Optional[Precision] = None) -> AbstractState:
    """Join the new state into the reached one; returns s2 itself if nothing changes."""
    if s1.less_or_equal(s2):
        return s2
    return s1.join(s2)


def stop_sep(state: AbstractState, reached: Iterable[AbstractState], precision: Optional[Precision] = None) -> bool:
    """Covered if a single reached state subsumes it."""
    return any(state.less_or_equal(r) for r in reached)


def stop_join(state: AbstractState, reached: Iterable[AbstractState], precision: Optional[Precision] = None) -> bool:
    """Covered if the join of all reached states subsumes it."""
    joined = None
    for r in reached:
        joined = r if joined is None else joined.join(r)
    return joined is not None and state.less_or_equal(joined)
