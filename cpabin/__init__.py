"""
cpabin: Configurable Program Analysis over binaries with on-the-fly CFG reconstruction.

The analysis engine discovers the control-flow graph while it runs:
indirect jumps and calls are resolved from the abstract state reached at
the jump site, so the graph grows together with the fixpoint.

Main entry points:
1. ControlFlowReconstruction: one-call wiring of program, domains and engine
2. CPAAlgorithm: the generic worklist fixpoint engine
3. CompositeProgramAnalysis: positional product of abstract domains
"""

__version__ = "0.1.0"
