"""
Composite abstract domain.

A composite state is a fixed-arity tuple of component states; component
0 is always the control-location component. The composite analysis
delegates every operator positionally to its components and recombines
the results, so concrete domains plug in without knowing about each
other. Components that want to consult their siblings do so in
``strengthen``.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Set, Tuple
import itertools
import logging

import z3

from ..cfa.edge import CFAEdge
from ..cfa.location import Location
from ..il.expressions import ConcreteValue, unknown_projection
from .cpa import ConfigurableProgramAnalysis
from .state import AbstractState, Precision

logger = logging.getLogger(__name__)


class CompositePrecision(Precision):
    """Tuple of component precisions."""

    def __init__(self, components: Sequence[Precision]):
        self._components = tuple(components)

    def component(self, index: int) -> Precision:
        return self._components[index]

    @property
    def components(self) -> Tuple[Precision, ...]:
        return self._components

    def __eq__(self, other):
        return isinstance(other, CompositePrecision) and self._components == other._components

    def __hash__(self):
        return hash(self._components)

    def __repr__(self):
        return f"CompositePrecision{self._components!r}"


def _meet_projections(
    left: Set[Tuple[ConcreteValue, ...]],
    right: Set[Tuple[ConcreteValue, ...]],
) -> Set[Tuple[ConcreteValue, ...]]:
    """Pairwise combine tuples that agree wherever both are known."""
    result = set()
    for a in left:
        for b in right:
            merged = []
            for x, y in zip(a, b):
                if x is None:
                    merged.append(y)
                elif y is None or x == y:
                    merged.append(x)
                else:
                    break
            else:
                result.add(tuple(merged))
    return result


class CompositeState(AbstractState):
    """Ordered tuple of component states."""

    def __init__(self, components: Sequence[AbstractState]):
        super().__init__()
        if not components:
            raise ValueError("Composite state needs at least a location component")
        self._components = tuple(components)

    def component(self, index: int) -> AbstractState:
        return self._components[index]

    @property
    def components(self) -> Tuple[AbstractState, ...]:
        return self._components

    def __len__(self):
        return len(self._components)

    @property
    def location(self) -> Optional[Location]:
        return self._components[0].location

    def join(self, other: AbstractState) -> AbstractState:
        joined = [a.join(b) for a, b in zip(self._components, other.components)]
        return CompositeState(joined)

    def less_or_equal(self, other: AbstractState) -> bool:
        return all(a.less_or_equal(b) for a, b in zip(self._components, other.components))

    def is_top(self) -> bool:
        return all(c.is_top() for c in self._components[1:])

    def is_bottom(self) -> bool:
        return any(c.is_bottom() for c in self._components)

    def projection_from_concretization(self, *expressions: z3.ExprRef) -> Set[Tuple[ConcreteValue, ...]]:
        """
        Meet of the component projections.

        Components without information (None) are skipped; if no component
        knows anything, every condition may take either truth value and all
        other values are unknown.
        """
        result = None
        for comp in self._components:
            projection = comp.projection_from_concretization(*expressions)
            if projection is None:
                continue
            result = projection if result is None else _meet_projections(result, projection)
        if result is None:
            return unknown_projection(tuple(expressions))
        return result

    def __eq__(self, other):
        return isinstance(other, CompositeState) and self._components == other._components

    def __hash__(self):
        return hash(self._components)

    def __repr__(self):
        inner = ", ".join(repr(c) for c in self._components)
        return f"CompositeState#{self.identifier}({inner})"


class CompositeProgramAnalysis(ConfigurableProgramAnalysis):
    """
    Positional product of a location analysis and further CPAs.

    Attributes:
        cpas: Component analyses; cpas[0] is the location analysis
    """

    def __init__(self, location_analysis: ConfigurableProgramAnalysis, *cpas: ConfigurableProgramAnalysis):
        self.cpas: List[ConfigurableProgramAnalysis] = [location_analysis, *cpas]

    @property
    def requires_art(self) -> bool:
        return any(cpa.requires_art for cpa in self.cpas)

    def __len__(self):
        return len(self.cpas)

    def init_start_state(self, location: Location) -> CompositeState:
        return CompositeState([cpa.init_start_state(location) for cpa in self.cpas])

    def init_precision(self, location: Location, transformer) -> CompositePrecision:
        return CompositePrecision([cpa.init_precision(location, transformer) for cpa in self.cpas])

    def post(self, state: AbstractState, edge: CFAEdge, precision: Precision) -> Set[AbstractState]:
        component_successors = []
        for i, cpa in enumerate(self.cpas):
            successors = cpa.post(state.component(i), edge, precision.component(i))
            if not successors:
                # One infeasible component makes the whole edge infeasible
                return set()
            component_successors.append(successors)

        result: Set[AbstractState] = set()
        for combination in itertools.product(*component_successors):
            strengthened = [
                cpa.strengthen(combination[i], combination, edge, precision.component(i))
                for i, cpa in enumerate(self.cpas)
            ]
            if any(c.is_bottom() for c in strengthened):
                continue
            result.add(CompositeState(strengthened))
        return result

    def merge(self, s1: AbstractState, s2: AbstractState, precision: Precision) -> AbstractState:
        if s1.component(0) != s2.component(0):
            return s2
        merged = []
        changed = False
        for i, cpa in enumerate(self.cpas):
            old = s2.component(i)
            m = cpa.merge(s1.component(i), old, precision.component(i))
            if m is not old and m != old:
                changed = True
            merged.append(m)
        if not changed:
            return s2
        return CompositeState(merged)

    def stop(self, state: AbstractState, reached: Iterable[AbstractState], precision: Precision) -> bool:
        """
        True iff one reached state at the same location covers ``state``
        under every component's stop operator.
        """
        if hasattr(reached, "where"):
            candidates = reached.where(0, state.component(0))
        else:
            candidates = [r for r in reached if r.component(0) == state.component(0)]
        for r in candidates:
            if all(
                cpa.stop(state.component(i), [r.component(i)], precision.component(i))
                for i, cpa in enumerate(self.cpas)
            ):
                return True
        return False

    def prec(
        self,
        state: AbstractState,
        precision: Precision,
        reached: Iterable[AbstractState],
    ) -> Tuple[AbstractState, Precision]:
        if hasattr(reached, "where"):
            local = list(reached.where(0, state.component(0)))
        else:
            local = [r for r in reached if r.component(0) == state.component(0)]

        states = []
        precisions = []
        changed = False
        for i, cpa in enumerate(self.cpas):
            component_state = state.component(i)
            component_precision = precision.component(i)
            new_state, new_precision = cpa.prec(
                component_state, component_precision, [r.component(i) for r in local]
            )
            changed = changed or new_state is not component_state
            states.append(new_state)
            precisions.append(new_precision)

        refined_state = CompositeState(states) if changed else state
        return refined_state, CompositePrecision(precisions)
