"""
Control-flow reconstruction: one-call wiring of program, domains and engine.

Builds the composite analysis (forward location tracking plus the given
register domains), hands it an interprocedural resolving factory over the
program and runs the worklist algorithm. The outcome is summarized in a
ReconstructionResult:
- completed: the worklist ran empty
- sound: no indirect target had to be dropped or over-approximated
- cfg: every edge the analysis discovered
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set
import logging
import threading

from .analysis.algorithm import CPAAlgorithm, RunStatus
from .analysis.art import AbstractReachabilityTree, instruction_trace
from .analysis.composite import CompositeProgramAnalysis
from .analysis.cpa import ConfigurableProgramAnalysis
from .analysis.domains.valueset import ValueSetAnalysis
from .analysis.location import LocationAnalysis
from .analysis.reached import ReachedSet
from .analysis.state import AbstractState
from .analysis.transformers import InterproceduralTransformerFactory
from .analysis.worklist import DepthFirstWorklist, Worklist
from .cfa.graph import ControlFlowGraph
from .cfa.location import Label
from .options import AnalysisOptions
from .program import Program

logger = logging.getLogger(__name__)


@dataclass
class ReconstructionResult:
    """
    Outcome of one control-flow reconstruction run.

    Attributes:
        status: Final engine status
        completed: True iff the fixpoint was reached
        sound: False if some indirect target was dropped or over-approximated
        states_visited: Number of worklist picks
        reached: Reached set at the end of the run
        cfg: Discovered control-flow graph
        art: Reachability tree, if one was built
        unresolved_branches: Labels of gotos whose targets stayed unknown
    """
    status: RunStatus
    completed: bool
    sound: bool
    states_visited: int
    reached: ReachedSet
    cfg: ControlFlowGraph
    art: Optional[AbstractReachabilityTree] = None
    unresolved_branches: Set[Label] = field(default_factory=set)

    def summary(self) -> str:
        """Human-readable summary of the run."""
        lines = [
            f"Status: {self.status.value}",
            f"Sound: {'yes' if self.sound else 'no'}",
            f"States visited: {self.states_visited}",
            f"Reached states: {len(self.reached)}",
            f"CFG: {len(self.cfg.nodes)} locations, {len(self.cfg)} edges",
        ]
        if self.unresolved_branches:
            lines.append("Unresolved branches:")
            lines.extend(f"  {label}" for label in sorted(self.unresolved_branches))
        return "\n".join(lines)


class ControlFlowReconstruction:
    """
    Reconstructs the CFG of a program by abstract interpretation.

    Without explicit domains a bounded value-set analysis is used, which
    resolves jumps through small tables of constants.
    """

    def __init__(
        self,
        program: Program,
        options: Optional[AnalysisOptions] = None,
        cpas: Optional[Sequence[ConfigurableProgramAnalysis]] = None,
        worklist: Optional[Worklist] = None,
    ):
        self.program = program
        self.options = options or AnalysisOptions()
        self.cpas = list(cpas) if cpas is not None else [ValueSetAnalysis()]
        self.worklist = worklist
        self.factory: Optional[InterproceduralTransformerFactory] = None
        self.algorithm: Optional[CPAAlgorithm] = None
        self._pending_stop = False

    def run(self, cancel: Optional[threading.Event] = None) -> ReconstructionResult:
        """
        Run the analysis once.

        State exceptions (e.g. a jump into undecoded code) propagate after
        the engine has been marked FAILED; the partial result stays
        available through ``self.algorithm``.
        """
        self.factory = InterproceduralTransformerFactory(self.program, self.options)
        cpa = CompositeProgramAnalysis(LocationAnalysis(), *self.cpas)
        self.algorithm = CPAAlgorithm(
            cpa,
            self.factory,
            self.worklist if self.worklist is not None else DepthFirstWorklist(),
            options=self.options,
        )
        if self._pending_stop:
            self.algorithm.stop()

        logger.info(f"[CPA] Starting control-flow reconstruction of {self.program!r}")
        status = self.algorithm.run(cancel)

        result = ReconstructionResult(
            status=status,
            completed=self.algorithm.is_completed(),
            sound=self.algorithm.is_sound(),
            states_visited=self.algorithm.get_number_of_states_visited(),
            reached=self.algorithm.get_reached_states(),
            cfg=self.factory.get_cfg(),
            art=self.algorithm.get_art(),
            unresolved_branches=set(self.factory.unresolved_branches),
        )
        logger.info(f"[CPA] Reconstruction finished: {status.value}, sound={result.sound}")
        if result.unresolved_branches:
            logger.info(f"[CPA] {len(result.unresolved_branches)} unresolved branches")
        return result

    def stop(self) -> None:
        """Stop the active run; before run() it makes the run stop immediately."""
        if self.algorithm is None:
            self._pending_stop = True
        else:
            self.algorithm.stop()

    def trace_to(self, state: AbstractState) -> List[str]:
        """Instruction trace from the entry to ``state``; requires asm_trace or error_trace."""
        if self.algorithm is None or self.algorithm.get_art() is None:
            raise ValueError("No reachability tree: enable asm_trace or error_trace")
        return instruction_trace(self.algorithm.get_art(), state, self.program)
