"""
Abstract Reachability Tree (ART).

Records which accepted state was produced from which parent along which
edge. Nodes live in an arena and are addressed by integer index; each
node keeps the ordered list of its (edge, child) pairs. The tree is
append-only: a node, once added, is never changed or removed.

The ART reflects provenance, not current reached-set membership. A state
that was later merged away stays in the tree together with its children.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple
import logging

import z3

from ..cfa.edge import CFAEdge
from ..cfa.graph import ControlFlowGraph
from ..cfa.location import VpcLocation
from .state import AbstractState

logger = logging.getLogger(__name__)


@dataclass
class _Node:
    state: AbstractState
    children: List[Tuple[CFAEdge, int]] = field(default_factory=list)


class AbstractReachabilityTree:

    def __init__(self):
        self._nodes: List[_Node] = []
        self._index: Dict[int, int] = {}   # state identifier -> arena index

    def set_root(self, state: AbstractState) -> None:
        if self._nodes:
            raise ValueError("ART root is already set")
        self._add_node(state)

    @property
    def root(self) -> Optional[AbstractState]:
        return self._nodes[0].state if self._nodes else None

    def _add_node(self, state: AbstractState) -> int:
        idx = len(self._nodes)
        self._nodes.append(_Node(state))
        self._index[state.identifier] = idx
        return idx

    def _node_index(self, state: AbstractState) -> int:
        try:
            return self._index[state.identifier]
        except KeyError:
            raise KeyError(f"State #{state.identifier} is not in the ART") from None

    def add_child(self, parent: AbstractState, edge: CFAEdge, child: AbstractState) -> None:
        parent_idx = self._node_index(parent)
        child_idx = self._index.get(child.identifier)
        if child_idx is None:
            child_idx = self._add_node(child)
        self._nodes[parent_idx].children.append((edge, child_idx))

    def get_children(self, state: AbstractState) -> List[Tuple[CFAEdge, AbstractState]]:
        node = self._nodes[self._node_index(state)]
        return [(edge, self._nodes[idx].state) for edge, idx in node.children]

    def __contains__(self, state) -> bool:
        return getattr(state, "identifier", None) in self._index

    def __len__(self):
        return len(self._nodes)

    def states(self) -> List[AbstractState]:
        return [node.state for node in self._nodes]

    def bfs(self) -> Iterator[Tuple[AbstractState, CFAEdge, AbstractState]]:
        """Breadth-first (parent, edge, child) triples starting at the root."""
        if not self._nodes:
            return
        seen = {0}
        queue = deque([0])
        while queue:
            idx = queue.popleft()
            node = self._nodes[idx]
            for edge, child_idx in node.children:
                yield node.state, edge, self._nodes[child_idx].state
                if child_idx not in seen:
                    seen.add(child_idx)
                    queue.append(child_idx)

    def path_to(self, state: AbstractState) -> List[Tuple[Optional[CFAEdge], AbstractState]]:
        """
        Edge/state sequence from the root to ``state``.

        The first entry is ``(None, root)``. Raises KeyError if the state is
        not in the tree.
        """
        target = self._node_index(state)
        predecessor: Dict[int, Tuple[int, CFAEdge]] = {}
        seen = {0}
        queue = deque([0])
        while queue and target not in seen:
            idx = queue.popleft()
            for edge, child_idx in self._nodes[idx].children:
                if child_idx not in seen:
                    seen.add(child_idx)
                    predecessor[child_idx] = (idx, edge)
                    queue.append(child_idx)
        if target not in seen:
            raise KeyError(f"State #{state.identifier} is not reachable from the ART root")

        path: List[Tuple[Optional[CFAEdge], AbstractState]] = []
        idx = target
        while idx != 0:
            parent_idx, edge = predecessor[idx]
            path.append((edge, self._nodes[idx].state))
            idx = parent_idx
        path.append((None, self._nodes[0].state))
        path.reverse()
        return path

    def __repr__(self):
        return f"AbstractReachabilityTree(nodes={len(self._nodes)})"


def instruction_trace(art: AbstractReachabilityTree, state: AbstractState, program) -> List[str]:
    """
    Instruction-level trace from the entry to ``state``.

    Consecutive IL steps inside one instruction collapse to a single
    line; addresses without a decoded instruction (harness, stubs) are
    rendered by symbol.
    """
    lines: List[str] = []
    last_address = None
    for _, s in art.path_to(state):
        location = s.location
        if location is None or location.address == last_address:
            continue
        last_address = location.address
        instruction = program.get_instruction(location.address)
        symbol = program.get_symbol_for(location.address)
        text = str(instruction) if instruction is not None else "<no instruction>"
        lines.append(f"0x{location.address:08x} {symbol}: {text}")
    return lines


def vpc_of(state: AbstractState, vpc: z3.ExprRef) -> Optional[int]:
    """Value of ``vpc`` in ``state`` if the state pins it to one number."""
    projection = state.projection_from_concretization(vpc)
    if not projection or len(projection) != 1:
        return None
    (value,) = next(iter(projection))
    if isinstance(value, bool):
        return None
    return value


def reconstruct_vpc_cfg(art: AbstractReachabilityTree, vpc: z3.ExprRef) -> ControlFlowGraph:
    """
    VPC-sensitive CFG lifted from the ART.

    Every ART state is mapped to ``VpcLocation(value of vpc, label)``, so a
    single instruction reached with different virtual program counters
    becomes several nodes. Terminal children recorded for failures carry
    no edge and are left out.
    """
    if art.root is None:
        return ControlFlowGraph([])

    cache: Dict[int, VpcLocation] = {}

    def lift(state: AbstractState) -> VpcLocation:
        location = cache.get(state.identifier)
        if location is None:
            location = VpcLocation(vpc_of(state, vpc), state.location.label)
            cache[state.identifier] = location
        return location

    edges = set()
    for parent, edge, child in art.bfs():
        if edge is None:
            continue
        edges.add(CFAEdge(lift(parent), lift(child), edge.transformer, edge.kind))

    cfg = ControlFlowGraph(edges, entry=lift(art.root))
    logger.info(f"[CPA] Reconstructed VPC CFG with {len(cfg.nodes)} locations and {len(cfg)} edges")
    return cfg
