"""
Constant propagation over registers.

A state maps registers to the single value they are known to hold;
registers without an entry are unconstrained (top). Joining two states
keeps only the entries on which both agree, so the lattice has finite
height per register and loops converge under merge-join.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Set, Tuple
import itertools
import logging

import z3

from ...cfa.edge import CFAEdge
from ...cfa.location import Location
from ...il.expressions import ConcreteValue, equality_facts, evaluate, register_name, substitute_constants
from ...il.statements import Assignment, Assume, Havoc
from ..cpa import ConfigurableProgramAnalysis, merge_join, stop_sep
from ..state import AbstractState, Precision

logger = logging.getLogger(__name__)


class ConstantState(AbstractState):
    """Register -> known constant."""

    def __init__(self, values: Optional[Mapping[str, int]] = None):
        super().__init__()
        self._values: Dict[str, int] = dict(values or {})
        self._frozen = frozenset(self._values.items())

    @property
    def values(self) -> Dict[str, int]:
        return dict(self._values)

    def get(self, name: str) -> Optional[int]:
        return self._values.get(name)

    def join(self, other: AbstractState) -> ConstantState:
        common = {k: v for k, v in self._values.items() if other.get(k) == v}
        return ConstantState(common)

    def less_or_equal(self, other: AbstractState) -> bool:
        return all(self._values.get(k) == v for k, v in other.values.items())

    def is_top(self) -> bool:
        return not self._values

    def projection_from_concretization(self, *expressions: z3.ExprRef) -> Set[Tuple[ConcreteValue, ...]]:
        choices = []
        for expr in expressions:
            value = evaluate(expr, self._values)
            if value is None and z3.is_bool(expr):
                choices.append((True, False))
            else:
                choices.append((value,))
        return set(itertools.product(*choices))

    def __eq__(self, other):
        return isinstance(other, ConstantState) and self._frozen == other._frozen

    def __hash__(self):
        return hash(self._frozen)

    def __repr__(self):
        inner = ", ".join(f"{k}=0x{v:x}" for k, v in sorted(self._values.items()))
        return f"ConstantState({inner})"


class ConstantAnalysis(ConfigurableProgramAnalysis):
    """Constant propagation; merge is join, stop is sep."""

    def init_start_state(self, location: Location) -> ConstantState:
        return ConstantState()

    def post(self, state: AbstractState, edge: CFAEdge, precision: Precision) -> Set[AbstractState]:
        stmt = edge.transformer
        values = state.values

        if isinstance(stmt, Assignment):
            name = register_name(stmt.variable)
            result = evaluate(stmt.value, values)
            if isinstance(result, bool):
                result = int(result)
            if result is None:
                values.pop(name, None)
            else:
                values[name] = result
            return {ConstantState(values)}

        if isinstance(stmt, Havoc):
            values.pop(register_name(stmt.variable), None)
            return {ConstantState(values)}

        if isinstance(stmt, Assume):
            residue = substitute_constants(stmt.assumption, values)
            if z3.is_false(residue):
                logger.debug(f"[CPA] Infeasible assumption {stmt.assumption} at {edge.source}")
                return set()
            values.update(equality_facts(residue))
            return {ConstantState(values)}

        return {state}

    def merge(self, s1: AbstractState, s2: AbstractState, precision: Precision) -> AbstractState:
        return merge_join(s1, s2, precision)

    def stop(self, state: AbstractState, reached: Iterable[AbstractState], precision: Precision) -> bool:
        return stop_sep(state, reached, precision)
