"""CFA: locations, edges and the discovered control-flow graph."""

from .location import Location, Label, VpcLocation
from .edge import CFAEdge, EdgeKind
from .graph import ControlFlowGraph

__all__ = [
    'Location',
    'Label',
    'VpcLocation',
    'CFAEdge',
    'EdgeKind',
    'ControlFlowGraph',
]
