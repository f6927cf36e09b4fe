"""
The CPA worklist algorithm.

Generic fixpoint loop over a composite analysis. Each iteration picks a
state, refines its precision, asks the transformer factory for the
outgoing edges (which, for a resolving factory, extends the CFG), runs
the transfer functions, merges successors into the reached set and
keeps those not covered by the stop operator.

Termination:
- COMPLETED: the worklist ran empty
- INTERRUPTED: stop() was called, the cancellation token was set, the
  timeout elapsed, or fail-fast mode observed unsoundness
- FAILED: an exception escaped the loop

Cancellation is cooperative. The stop flag is read once per iteration,
so an in-flight post/merge always finishes; the timeout is checked only
at the periodic housekeeping point.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional
import gc
import logging
import threading
import time

import psutil

from ..cfa.graph import ControlFlowGraph
from ..cfa.location import Location
from ..options import AnalysisOptions
from .art import AbstractReachabilityTree
from .composite import CompositeProgramAnalysis, CompositeState
from .cpa import ConfigurableProgramAnalysis
from .location import BackwardLocationAnalysis, LocationAnalysis
from .reached import ReachedSet
from .state import AbstractState, Precision, StateException
from .transformers import (
    CFATransformerFactory,
    ResolvingTransformerFactory,
    ReverseCFATransformerFactory,
    StateTransformerFactory,
)
from .worklist import DepthFirstWorklist, Worklist

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


def _allocated_megabytes() -> float:
    return psutil.Process().memory_info().rss / (1024.0 * 1024.0)


class CPAAlgorithm:
    """
    Worklist engine for one analysis run.

    The reached set, worklist, precision map and ART are owned by this
    instance and must not be shared with other runs.

    Attributes:
        cpa: Composite analysis (component 0 tracks locations)
        transformer_factory: Source of outgoing edges
        worklist: Frontier policy
        fail_fast: Stop exploring as soon as the run becomes unsound
        options: Run options (timeout, step threshold, trace modes)
    """

    def __init__(
        self,
        cpa: ConfigurableProgramAnalysis,
        transformer_factory: StateTransformerFactory,
        worklist: Worklist,
        fail_fast: bool = False,
        options: Optional[AnalysisOptions] = None,
    ):
        self.cpa = cpa
        self.transformer_factory = transformer_factory
        self.worklist = worklist
        self.options = options or AnalysisOptions()
        self.fail_fast = fail_fast or self.options.fail_fast

        self.reached = ReachedSet()
        if self.options.needs_art or getattr(cpa, "requires_art", False):
            self.art: Optional[AbstractReachabilityTree] = AbstractReachabilityTree()
        else:
            self.art = None

        self.status = RunStatus.IDLE
        self.states_visited = 0
        self._completed = False
        self._stop_requested = False
        self._precisions: Dict[Location, Precision] = {}

    # ------------------------------------------------------------------
    # Construction helpers for complete CFGs
    # ------------------------------------------------------------------

    @classmethod
    def create_forward_algorithm(cls, cfg: ControlFlowGraph, *cpas: ConfigurableProgramAnalysis) -> CPAAlgorithm:
        """Forward analysis over an already reconstructed CFG."""
        cpa = CompositeProgramAnalysis(LocationAnalysis(), *cpas)
        return cls(cpa, CFATransformerFactory(cfg), DepthFirstWorklist())

    @classmethod
    def create_backward_algorithm(
        cls,
        cfg: ControlFlowGraph,
        exit_location: Location,
        *cpas: ConfigurableProgramAnalysis,
    ) -> CPAAlgorithm:
        """Backward analysis over an already reconstructed CFG, starting at ``exit_location``."""
        cpa = CompositeProgramAnalysis(BackwardLocationAnalysis(), *cpas)
        return cls(cpa, ReverseCFATransformerFactory(cfg, exit_location), DepthFirstWorklist())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_reached_states(self) -> ReachedSet:
        return self.reached

    def get_art(self) -> Optional[AbstractReachabilityTree]:
        return self.art

    def get_number_of_states_visited(self) -> int:
        return self.states_visited

    def is_completed(self) -> bool:
        """True iff the last run ended with an empty worklist."""
        return self._completed

    def is_sound(self) -> bool:
        """False once the transformer factory had to drop or over-approximate a branch."""
        return self.transformer_factory.is_sound()

    def stop(self) -> None:
        """Request the loop to exit at the start of its next iteration."""
        logger.critical("[CPA] *** Interrupt! Stopping CPA Algorithm! ***")
        self._stop_requested = True

    # ------------------------------------------------------------------
    # Fixpoint loop
    # ------------------------------------------------------------------

    def _should_continue(self, cancel: Optional[threading.Event]) -> bool:
        if self.worklist.is_empty() or self._stop_requested:
            return False
        if cancel is not None and cancel.is_set():
            return False
        if self.fail_fast and not self.is_sound():
            return False
        return True

    def run(self, cancel: Optional[threading.Event] = None) -> RunStatus:
        """
        Run to a fixpoint, cancellation or failure.

        Args:
            cancel: Optional token polled once per iteration, like stop()

        Returns:
            The final RunStatus. Exceptions from the transformer factory or
            transfer functions propagate after the run is marked FAILED.
        """
        logger.debug("[CPA] Starting CPA algorithm.")
        self.status = RunStatus.RUNNING
        try:
            self._run(cancel)
        except BaseException:
            self.status = RunStatus.FAILED
            self._completed = False
            raise

        self._completed = self.worklist.is_empty()
        self.status = RunStatus.COMPLETED if self._completed else RunStatus.INTERRUPTED
        if not self._completed:
            logger.error("[CPA] Analysis interrupted, reached set might be incomplete!")
        return self.status

    def _run(self, cancel: Optional[threading.Event]) -> None:
        initial_location = self.transformer_factory.get_initial_location()
        start = self.cpa.init_start_state(initial_location)
        self.worklist.add(start)
        self.reached.add(start)
        if self.art is not None:
            self.art.set_root(start)

        self._precisions[start.location] = self.cpa.init_precision(initial_location, None)

        step_threshold = self.options.step_threshold
        steps = 0
        self.states_visited = 0
        start_time = time.monotonic()
        last_time = start_time
        last_visited = 0

        while self._should_continue(cancel):
            self.states_visited += 1
            steps += 1
            if steps == step_threshold:
                steps = 0
                last_time, last_visited = self._housekeeping(start_time, last_time, last_visited)

            # Keep the unrefined state as ART parent
            unadjusted = self.worklist.pick()
            precision = self._precisions.get(unadjusted.location)
            if precision is None:
                precision = self.cpa.init_precision(unadjusted.location, None)

            # The refined state is only used for successor computation, never stored
            state, precision = self.cpa.prec(unadjusted, precision, self.reached)
            self._precisions[state.location] = precision

            self._process(unadjusted, state)

        elapsed = time.monotonic() - start_time
        if elapsed > 0:
            logger.info(
                f"[CPA] Processed {self.states_visited} states at "
                f"{self.states_visited / elapsed:.0f} states/second"
            )
            logger.info(f"[CPA] Allocated memory: {_allocated_megabytes():.2f} MByte")

    def _record_failure(self, e: StateException, unadjusted: AbstractState, state: AbstractState, edge=None) -> None:
        """Attach the failing state to ``e`` and keep it as a terminal ART child."""
        if e.state is None:
            e.state = state
        if self.art is not None and e.state is not unadjusted:
            self.art.add_child(unadjusted, edge, e.state)

    def _process(self, unadjusted: AbstractState, state: AbstractState) -> None:
        try:
            edges = self.transformer_factory.get_transformers(state)
        except StateException as e:
            self._record_failure(e, unadjusted, state)
            raise

        for edge in sorted(edges, key=_edge_sort_key):
            target_precision = self._precisions.get(edge.target)
            if target_precision is None:
                target_precision = self.cpa.init_precision(edge.target, edge.transformer)
                self._precisions[edge.target] = target_precision

            try:
                successors = self.cpa.post(state, edge, target_precision)
            except StateException as e:
                self._record_failure(e, unadjusted, state, edge)
                raise

            if not successors:
                logger.debug(f"[CPA] No successors along edge {edge}")
                continue

            for succ in successors:
                self._integrate(unadjusted, edge, succ, target_precision)

    def _integrate(self, parent: AbstractState, edge, succ: AbstractState, precision: Precision) -> None:
        """Merge ``succ`` into the reached set and enqueue it unless covered."""
        to_remove = []
        to_add = []
        for r in self.reached.where(0, _location_component(succ)):
            merged = self.cpa.merge(succ, r, precision)
            if merged != r:
                to_remove.append(r)
                to_add.append(merged)

        for r in to_remove:
            self.reached.remove(r)
            self.worklist.remove(r)

        for m in to_add:
            # Only enqueue merge results that were not reached before
            if self.reached.add(m):
                self.worklist.add(m)
                if self.art is not None:
                    self.art.add_child(parent, edge, m)

        if not self.cpa.stop(succ, self.reached, precision):
            self.worklist.add(succ)
            self.reached.add(succ)
            if self.art is not None:
                self.art.add_child(parent, edge, succ)

    def _housekeeping(self, start_time: float, last_time: float, last_visited: int):
        before_gc = time.monotonic()
        gc.collect()
        logger.debug(f"[CPA] Time for GC: {(time.monotonic() - before_gc) * 1000:.0f}ms")

        now = time.monotonic()
        window = max(now - last_time, 1e-3)
        speed = (self.states_visited - last_visited) / window

        instructions = ""
        if isinstance(self.transformer_factory, ResolvingTransformerFactory):
            instructions = f", {self.transformer_factory.program.instruction_count} instructions"
        logger.warning(
            f"[CPA] *** Reached {len(self.reached)} states, processed {self.states_visited} states "
            f"after {(now - start_time) * 1000:.0f}ms, at {speed:.0f} states/second{instructions}."
        )
        logger.info(f"[CPA]     Allocated memory: {_allocated_megabytes():.2f} MByte")

        timeout = self.options.timeout
        if timeout > 0 and now - start_time > timeout:
            logger.error(f"[CPA] Timeout after {timeout}s!")
            self._stop_requested = True
        return now, self.states_visited


def _location_component(state: AbstractState):
    if isinstance(state, CompositeState):
        return state.component(0)
    return state


def _edge_sort_key(edge) -> tuple:
    return (edge.target.sort_key(), edge.kind.value, str(edge.transformer))
