"""
State transformer factories: which CFA edges leave an abstract state.

For a complete, static CFG the answer is a lookup (CFATransformerFactory
and its reverse). For binaries the CFG is not known in advance: the
resolving factories read the IL statement at the state's label and, for
computed jumps, ask the abstract state which targets are possible.

Resolution outcomes for a goto, per (condition, target) pair that the
state's concretization yields:
- condition false: fall through to the statement's next label
- condition true, target known: jump to that address
- condition true, target unknown: either drop the edge and become
  unsound, or (all_edges) add MAY edges to every known code address
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, Optional, Set
import logging

from ..cfa.edge import CFAEdge, EdgeKind
from ..cfa.graph import ControlFlowGraph
from ..cfa.location import Label, Location
from ..il.expressions import TRUE, create_and, create_equal, simplify
from ..il.statements import Assume, CallReturn, Goto, Halt
from ..options import AnalysisOptions
from ..program import Program
from .state import AbstractState, ControlFlowException, DisassemblyException

logger = logging.getLogger(__name__)


class StateTransformerFactory(ABC):

    @abstractmethod
    def get_transformers(self, state: AbstractState) -> Set[CFAEdge]:
        ...

    @abstractmethod
    def get_initial_location(self) -> Location:
        ...

    def is_sound(self) -> bool:
        return True


class CFATransformerFactory(StateTransformerFactory):
    """Out-edges of a fixed, fully known CFG."""

    def __init__(self, cfg: ControlFlowGraph):
        if cfg.entry is None:
            raise ValueError("CFG has no entry location")
        self.cfg = cfg

    def get_transformers(self, state: AbstractState) -> Set[CFAEdge]:
        return self.cfg.out_edges(state.location)

    def get_initial_location(self) -> Location:
        return self.cfg.entry


class ReverseCFATransformerFactory(StateTransformerFactory):
    """In-edges of a fixed CFG, for backward analyses starting at an exit."""

    def __init__(self, cfg: ControlFlowGraph, exit_location: Location):
        self.cfg = cfg
        self.exit_location = exit_location

    def get_transformers(self, state: AbstractState) -> Set[CFAEdge]:
        return self.cfg.in_edges(state.location)

    def get_initial_location(self) -> Location:
        return self.exit_location


class ResolvingTransformerFactory(StateTransformerFactory):
    """
    Builds the CFG on the fly from IL statements.

    Soundness and the set of unresolved branches belong to the factory
    instance, i.e. to one analysis run. Unresolved labels are mirrored
    into ``program.unresolved_branches`` for reporting.

    Attributes:
        program: Program providing statements and code addresses
        options: Run options (all_edges, debug, sanity threshold)
        sound: False once any branch target had to be dropped or
            over-approximated; never reverts
        unresolved_branches: Labels of gotos with unresolved targets
    """

    def __init__(self, program: Program, options: Optional[AnalysisOptions] = None):
        self.program = program
        self.options = options or AnalysisOptions()
        self.sound = True
        self.unresolved_branches: Set[Label] = set()
        self._out_edges: Dict[Location, Set[CFAEdge]] = defaultdict(set)

    def is_sound(self) -> bool:
        return self.sound

    def get_initial_location(self) -> Location:
        return self.program.start_label

    def get_transformers(self, state: AbstractState) -> Set[CFAEdge]:
        location = state.location
        stmt = self.program.get_statement(location.label)
        if stmt is None:
            raise DisassemblyException(f"No statement at {location.label}", state)

        if isinstance(stmt, Halt):
            edges: Set[CFAEdge] = set()
        elif isinstance(stmt, Goto):
            edges = self.resolve_goto(state, stmt)
        else:
            if stmt.next_label is None:
                raise DisassemblyException(f"Statement {stmt} at {stmt.label} has no successor", state)
            edges = {CFAEdge(stmt.label, stmt.next_label, stmt)}

        self._save_new_edges(location, edges)
        return edges

    def _save_new_edges(self, location: Location, edges: Iterable[CFAEdge]) -> None:
        known = self._out_edges[location]
        for edge in edges:
            if edge not in known:
                logger.debug(f"[RESOLVE] New edge {edge}")
                known.add(edge)

    def get_cfa(self) -> Set[CFAEdge]:
        """All edges handed out so far."""
        result: Set[CFAEdge] = set()
        for edges in self._out_edges.values():
            result |= edges
        return result

    def get_cfg(self) -> ControlFlowGraph:
        return ControlFlowGraph(self.get_cfa(), entry=self.get_initial_location())

    def _assume_edge(self, stmt: Goto, assumption, next_label: Label, kind: EdgeKind) -> CFAEdge:
        assume = Assume(label=stmt.label, next_label=next_label, assumption=assumption, source=stmt)
        return CFAEdge(stmt.label, next_label, assume, kind)

    def _mark_unresolved(self, label: Label) -> None:
        self.sound = False
        self.unresolved_branches.add(label)
        self.program.unresolved_branches.add(label)

    def resolve_goto(self, state: AbstractState, stmt: Goto) -> Set[CFAEdge]:
        """Edges for a goto, resolving computed targets against ``state``."""
        results: Set[CFAEdge] = set()
        condition = stmt.condition if stmt.condition is not None else TRUE

        pairs = _expand_unknown_conditions(state.projection_from_concretization(condition, stmt.target))
        for condition_value, target_value in sorted(pairs, key=_pair_sort_key):
            assumption = create_equal(condition, bool(condition_value))

            if condition_value is False:
                if stmt.next_label is None:
                    logger.debug(f"[RESOLVE] {stmt.label}: no fall-through for not-taken branch")
                    continue
                next_label = stmt.next_label
            elif target_value is None:
                if not self.options.all_edges:
                    logger.info(
                        f"[RESOLVE] {stmt.label}: Cannot resolve target expression {stmt.target}. "
                        f"Continuing with unsound underapproximation."
                    )
                    logger.debug(f"[RESOLVE] State is: {state}")
                    self._mark_unresolved(stmt.label)
                    if self.options.debug:
                        raise ControlFlowException(f"Unresolvable control flow from {stmt.label}", state)
                    continue

                logger.warning(
                    f"[RESOLVE] {stmt.label}: Cannot resolve target expression {stmt.target}. "
                    f"Adding over-approximate edges to all program locations!"
                )
                self.sound = False
                for address in self.program.code_addresses():
                    over_assumption = create_equal(stmt.target, address)
                    results.add(self._assume_edge(stmt, over_assumption, Label(address), EdgeKind.MAY))
                continue
            else:
                assumption = create_and(assumption, create_equal(stmt.target, target_value))
                next_label = Label(target_value)

            if next_label.address < self.options.sanity_address_threshold:
                logger.warning(f"[RESOLVE] Control flow from {state.location} reaches address 0x{next_label.address:x}!")

            results.add(self._assume_edge(stmt, simplify(assumption), next_label, EdgeKind.MUST))
        return results


class InterproceduralTransformerFactory(ResolvingTransformerFactory):
    """
    Resolving factory that also links calls to their return sites.

    Every call gets an extra CallReturn edge from the call site straight
    to the fall-through label, so interprocedural domains can treat the
    call as a single step.
    """

    def resolve_goto(self, state: AbstractState, stmt: Goto) -> Set[CFAEdge]:
        results: Set[CFAEdge] = set()

        if stmt.is_call:
            next_label = stmt.next_label
            if self.program.in_harness(stmt.label.address):
                fallthrough = self.program.harness.fallthrough_address(stmt.label.address)
                next_label = Label(fallthrough) if fallthrough is not None else None

            if next_label is not None:
                call_return = CallReturn(label=stmt.label, next_label=next_label)
                results.add(CFAEdge(stmt.label, next_label, call_return))
            else:
                logger.warning(
                    f"[RESOLVE] {stmt.label}: CALL instruction has no fall-through address, "
                    f"generating no callReturn edge!"
                )

        results |= super().resolve_goto(state, stmt)
        return results


def _expand_unknown_conditions(pairs) -> Set[tuple]:
    """An unknown branch condition may go either way."""
    expanded = set()
    for condition_value, target_value in pairs:
        if condition_value is None:
            expanded.add((True, target_value))
            expanded.add((False, target_value))
        else:
            expanded.add((bool(condition_value), target_value))
    return expanded


def _pair_sort_key(pair):
    # Deterministic processing order; None sorts first
    return tuple((v is not None, int(v) if v is not None else 0) for v in pair)
