"""
Bounded value sets over registers.

Each register maps to a finite set of possible values; registers without
an entry are top. Sets are kept small by the refinement operator: once
the values seen for a register at one location exceed the precision's
threshold, the register is widened to top there and stays top for the
rest of the run. This is what makes the analysis useful for resolving
jump tables while still terminating on counting loops.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple
from collections import defaultdict
import itertools
import logging

import z3

from ...cfa.edge import CFAEdge
from ...cfa.location import Location
from ...il.expressions import (
    ConcreteValue,
    enumerate_valuations,
    equality_facts,
    evaluate,
    free_registers,
    register_name,
    substitute_constants,
)
from ...il.statements import Assignment, Assume, Havoc
from ..cpa import ConfigurableProgramAnalysis, merge_join, merge_sep, stop_sep
from ..state import AbstractState, Precision

logger = logging.getLogger(__name__)

# Upper bound on enumerated register valuations per transfer or projection
MAX_COMBINATIONS = 4096


class ValueSetPrecision(Precision):
    """
    Attributes:
        threshold: Maximum number of values tracked per register
        widened: Registers forced to top at this location
    """

    def __init__(self, threshold: int, widened: Iterable[str] = ()):
        self.threshold = threshold
        self.widened: FrozenSet[str] = frozenset(widened)

    def widen(self, names: Iterable[str]) -> ValueSetPrecision:
        return ValueSetPrecision(self.threshold, self.widened | frozenset(names))

    def __eq__(self, other):
        return (
            isinstance(other, ValueSetPrecision)
            and self.threshold == other.threshold
            and self.widened == other.widened
        )

    def __hash__(self):
        return hash((self.threshold, self.widened))

    def __repr__(self):
        return f"ValueSetPrecision(threshold={self.threshold}, widened={sorted(self.widened)})"


class ValueSetState(AbstractState):
    """Register -> frozenset of possible values (missing means top)."""

    def __init__(self, values: Optional[Mapping[str, Iterable[int]]] = None):
        super().__init__()
        self._values: Dict[str, FrozenSet[int]] = {k: frozenset(v) for k, v in (values or {}).items()}
        self._frozen = frozenset(self._values.items())

    @property
    def values(self) -> Dict[str, FrozenSet[int]]:
        return dict(self._values)

    def get(self, name: str) -> Optional[FrozenSet[int]]:
        """Possible values of ``name``; None if it is top."""
        return self._values.get(name)

    def forget(self, names: Iterable[str]) -> ValueSetState:
        names = set(names)
        if not names & self._values.keys():
            return self
        return ValueSetState({k: v for k, v in self._values.items() if k not in names})

    def join(self, other: AbstractState) -> ValueSetState:
        joined = {}
        for name, values in self._values.items():
            theirs = other.get(name)
            if theirs is not None:
                joined[name] = values | theirs
        return ValueSetState(joined)

    def less_or_equal(self, other: AbstractState) -> bool:
        for name, theirs in other.values.items():
            mine = self._values.get(name)
            if mine is None or not mine <= theirs:
                return False
        return True

    def is_top(self) -> bool:
        return not self._values

    def is_bottom(self) -> bool:
        return any(not v for v in self._values.values())

    def _valuations(self, names: Iterable[str]) -> Optional[List[Dict[str, int]]]:
        """Valuations of the non-top registers among ``names``; None if too many."""
        known = [n for n in names if n in self._values]
        count = 1
        for n in known:
            count *= len(self._values[n])
        if count > MAX_COMBINATIONS:
            return None
        return list(enumerate_valuations(known, self._values))

    def projection_from_concretization(
        self, *expressions: z3.ExprRef
    ) -> Optional[Set[Tuple[ConcreteValue, ...]]]:
        names: Set[str] = set()
        for expr in expressions:
            names |= free_registers(expr)
        valuations = self._valuations(names)
        if valuations is None:
            logger.debug(f"[CPA] Too many valuations to project {expressions}")
            return None
        return {tuple(evaluate(expr, valuation) for expr in expressions) for valuation in valuations}

    def __eq__(self, other):
        return isinstance(other, ValueSetState) and self._frozen == other._frozen

    def __hash__(self):
        return hash(self._frozen)

    def __repr__(self):
        inner = ", ".join(
            f"{k}={{{', '.join(f'0x{v:x}' for v in sorted(vs))}}}" for k, vs in sorted(self._values.items())
        )
        return f"ValueSetState({inner})"


class ValueSetAnalysis(ConfigurableProgramAnalysis):
    """
    Bounded value-set analysis with threshold widening in ``prec``.

    Attributes:
        threshold: Values per register and location before widening to top
        merge_mode: "sep" (path sensitive, default) or "join"
    """

    def __init__(self, threshold: int = 5, merge: str = "sep"):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        if merge not in ("sep", "join"):
            raise ValueError(f"merge must be 'sep' or 'join', got {merge!r}")
        self.threshold = threshold
        self.merge_mode = merge

    def init_start_state(self, location: Location) -> ValueSetState:
        return ValueSetState()

    def init_precision(self, location: Location, transformer) -> ValueSetPrecision:
        return ValueSetPrecision(self.threshold)

    def post(self, state: AbstractState, edge: CFAEdge, precision: Precision) -> Set[AbstractState]:
        stmt = edge.transformer
        successor = self._transfer(state, stmt, edge)
        if successor is None:
            return set()
        return {successor.forget(precision.widened)}

    def _transfer(self, state: ValueSetState, stmt, edge: CFAEdge) -> Optional[ValueSetState]:
        values = state.values

        if isinstance(stmt, Assignment):
            name = register_name(stmt.variable)
            results = self._evaluate_all(state, stmt.value)
            if results is None:
                values.pop(name, None)
            else:
                values[name] = results
            return ValueSetState(values)

        if isinstance(stmt, Havoc):
            values.pop(register_name(stmt.variable), None)
            return ValueSetState(values)

        if isinstance(stmt, Assume):
            return self._assume(state, stmt.assumption, edge)

        return state

    def _evaluate_all(self, state: ValueSetState, expr: z3.ExprRef) -> Optional[FrozenSet[int]]:
        valuations = state._valuations(free_registers(expr))
        if valuations is None:
            return None
        results = set()
        for valuation in valuations:
            value = evaluate(expr, valuation)
            if value is None:
                return None
            results.add(int(value))
        return frozenset(results)

    def _assume(self, state: ValueSetState, assumption: z3.BoolRef, edge: CFAEdge) -> Optional[ValueSetState]:
        names = free_registers(assumption)
        valuations = state._valuations(names)
        if valuations is None:
            return state

        satisfying: Dict[str, Set[int]] = defaultdict(set)
        # Top registers stay candidates only while every feasible valuation pins them
        pinned: Optional[Set[str]] = None
        for valuation in valuations:
            residue = substitute_constants(assumption, valuation)
            if z3.is_false(residue):
                continue
            for name, value in valuation.items():
                satisfying[name].add(value)
            facts = {name: value for name, value in equality_facts(residue).items() if name not in valuation}
            pinned = set(facts) if pinned is None else pinned & facts.keys()
            for name, value in facts.items():
                satisfying[name].add(value)

        if pinned is None:
            logger.debug(f"[CPA] Infeasible assumption {assumption} at {edge.source}")
            return None

        values = state.values
        for name, possible in satisfying.items():
            if name in values or name in pinned:
                values[name] = frozenset(possible)
        return ValueSetState(values)

    def merge(self, s1: AbstractState, s2: AbstractState, precision: Precision) -> AbstractState:
        if self.merge_mode == "join":
            return merge_join(s1, s2, precision)
        return merge_sep(s1, s2, precision)

    def stop(self, state: AbstractState, reached: Iterable[AbstractState], precision: Precision) -> bool:
        return stop_sep(state, reached, precision)

    def prec(
        self,
        state: AbstractState,
        precision: Precision,
        reached: Iterable[AbstractState],
    ) -> Tuple[AbstractState, Precision]:
        """Widen registers whose values at this location exceed the threshold."""
        seen: Dict[str, Set[int]] = defaultdict(set)
        for r in itertools.chain(reached, [state]):
            for name, values in r.values.items():
                seen[name] |= values

        exceeded = {
            name for name, values in seen.items()
            if len(values) > precision.threshold and name not in precision.widened
        }
        if exceeded:
            logger.debug(f"[CPA] Widening {sorted(exceeded)} to top")
            precision = precision.widen(exceeded)
        return state.forget(precision.widened), precision
