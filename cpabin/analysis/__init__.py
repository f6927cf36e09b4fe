"""
CPA framework: abstract states, the composite domain, transformer
factories, the reachability tree and the worklist algorithm.
"""

from .state import (
    AbstractState,
    Precision,
    NullPrecision,
    StateException,
    ControlFlowException,
    DisassemblyException,
)
from .cpa import ConfigurableProgramAnalysis, merge_sep, merge_join, stop_sep, stop_join
from .location import LocationState, LocationAnalysis, BackwardLocationAnalysis
from .composite import CompositeState, CompositePrecision, CompositeProgramAnalysis
from .reached import ReachedSet
from .worklist import (
    Worklist,
    DepthFirstWorklist,
    BreadthFirstWorklist,
    PriorityWorklist,
    location_priority,
)
from .art import AbstractReachabilityTree, instruction_trace, reconstruct_vpc_cfg, vpc_of
from .transformers import (
    StateTransformerFactory,
    CFATransformerFactory,
    ReverseCFATransformerFactory,
    ResolvingTransformerFactory,
    InterproceduralTransformerFactory,
)
from .algorithm import CPAAlgorithm, RunStatus
from .monitor import stop_on_interrupt

__all__ = [
    # States and exceptions
    'AbstractState',
    'Precision',
    'NullPrecision',
    'StateException',
    'ControlFlowException',
    'DisassemblyException',
    # Analyses
    'ConfigurableProgramAnalysis',
    'merge_sep',
    'merge_join',
    'stop_sep',
    'stop_join',
    'LocationState',
    'LocationAnalysis',
    'BackwardLocationAnalysis',
    'CompositeState',
    'CompositePrecision',
    'CompositeProgramAnalysis',
    # Engine
    'ReachedSet',
    'Worklist',
    'DepthFirstWorklist',
    'BreadthFirstWorklist',
    'PriorityWorklist',
    'location_priority',
    'AbstractReachabilityTree',
    'instruction_trace',
    'reconstruct_vpc_cfg',
    'vpc_of',
    'StateTransformerFactory',
    'CFATransformerFactory',
    'ReverseCFATransformerFactory',
    'ResolvingTransformerFactory',
    'InterproceduralTransformerFactory',
    'CPAAlgorithm',
    'RunStatus',
    'stop_on_interrupt',
]
