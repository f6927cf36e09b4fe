"""
Read-only control-flow graph over a set of discovered edges.

The graph is a view: it is assembled from the edges a transformer
factory handed out during one analysis run and is never mutated
afterwards.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .edge import CFAEdge, EdgeKind
from .location import Location


class ControlFlowGraph:
    """
    Control-flow graph built from edges.

    Attributes:
        entry: Entry location (None if unknown)
    """

    def __init__(self, edges: Iterable[CFAEdge], entry: Optional[Location] = None):
        self.entry = entry
        self._edges: Set[CFAEdge] = set(edges)
        self._out: Dict[Location, Set[CFAEdge]] = defaultdict(set)
        self._in: Dict[Location, Set[CFAEdge]] = defaultdict(set)
        self._nodes: Set[Location] = set()
        if entry is not None:
            self._nodes.add(entry)
        for edge in self._edges:
            self._out[edge.source].add(edge)
            self._in[edge.target].add(edge)
            self._nodes.add(edge.source)
            self._nodes.add(edge.target)

    @property
    def edges(self) -> Set[CFAEdge]:
        return set(self._edges)

    @property
    def nodes(self) -> Set[Location]:
        return set(self._nodes)

    def out_edges(self, location: Location) -> Set[CFAEdge]:
        return set(self._out.get(location, ()))

    def in_edges(self, location: Location) -> Set[CFAEdge]:
        return set(self._in.get(location, ()))

    def successors(self, location: Location) -> List[Location]:
        return sorted({e.target for e in self._out.get(location, ())})

    def predecessors(self, location: Location) -> List[Location]:
        return sorted({e.source for e in self._in.get(location, ())})

    def must_leaves(self) -> Set[Location]:
        """
        Locations with an incoming MUST edge but no outgoing one.

        These are the points where the exact part of the reconstruction
        ends, typically right before an unresolved indirect branch.
        """
        leaves = set()
        for location in self._nodes:
            if not any(e.kind is EdgeKind.MUST for e in self._in.get(location, ())):
                continue
            if not any(e.kind is EdgeKind.MUST for e in self._out.get(location, ())):
                leaves.add(location)
        return leaves

    def __len__(self):
        return len(self._edges)

    def __contains__(self, item):
        if isinstance(item, CFAEdge):
            return item in self._edges
        return item in self._nodes

    def __repr__(self):
        return f"ControlFlowGraph(nodes={len(self._nodes)}, edges={len(self._edges)})"
