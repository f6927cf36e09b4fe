"""
Control-flow automaton edges.

An edge connects two locations and carries the IL statement that
transforms abstract states along it. Its kind records whether the
transition is exact (MUST) or the product of over-approximating an
unresolved target (MAY).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .location import Location


class EdgeKind(Enum):
    """Precision of a control-flow edge."""
    MUST = "MUST"   # Holds in all concretizations of the outgoing condition
    MAY = "MAY"     # Added by over-approximation of an unresolved target


@dataclass(frozen=True)
class CFAEdge:
    """
    A directed, labeled transition between two locations.

    Attributes:
        source: Location the edge leaves
        target: Location the edge enters
        transformer: IL statement applied along the edge
        kind: MUST or MAY; never unset
    """
    source: Location
    target: Location
    transformer: Any
    kind: EdgeKind = EdgeKind.MUST

    def __post_init__(self):
        if not isinstance(self.kind, EdgeKind):
            raise ValueError(f"Edge {self.source} -> {self.target} has invalid kind {self.kind!r}")
        if self.source is None or self.target is None:
            raise ValueError("Edge endpoints must be set")

    def reversed(self) -> CFAEdge:
        """Same transformer and kind, with swapped endpoints."""
        return CFAEdge(self.target, self.source, self.transformer, self.kind)

    def __str__(self):
        return f"{self.source} -> {self.target} [{self.kind.value}]: {self.transformer}"
