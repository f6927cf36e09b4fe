"""
Analysis options.

Read-only configuration consulted by the engine and the transformer
factories. A run never mutates its options; derive a modified copy with
``with_overrides`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class AnalysisOptions:
    """
    Configuration for one analysis run.

    Attributes:
        all_edges: Over-approximate unresolved indirect targets by edges to
            every known code address instead of dropping them
        debug: Raise ControlFlowException on unresolved targets
        timeout: Wall-clock limit in seconds (0 disables the limit)
        fail_fast: Abort the fixpoint loop as soon as it becomes unsound
        error_trace: Build the ART for error-trace extraction
        asm_trace: Build the ART for instruction-trace extraction
        step_threshold: Iterations between two housekeeping points
        sanity_address_threshold: Targets below this address are reported
            as suspicious
    """
    all_edges: bool = False
    debug: bool = False
    timeout: int = 0
    fail_fast: bool = False
    error_trace: bool = False
    asm_trace: bool = False
    step_threshold: int = 1000
    sanity_address_threshold: int = 10

    def __post_init__(self):
        if self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")
        if self.step_threshold < 1:
            raise ValueError(f"step_threshold must be >= 1, got {self.step_threshold}")

    @property
    def needs_art(self) -> bool:
        return self.error_trace or self.asm_trace

    def with_overrides(self, **changes) -> AnalysisOptions:
        return replace(self, **changes)
