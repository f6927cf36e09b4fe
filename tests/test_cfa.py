"""
Tests for locations, edges and the control-flow graph view.

Tests cover:
1. Location ordering and equality
2. Edge kind invariant
3. CFG adjacency and must-leaves
"""

import pytest
from cpabin.cfa import CFAEdge, ControlFlowGraph, EdgeKind, Label, VpcLocation
from cpabin.il import Skip


def skip_edge(src, dst, kind=EdgeKind.MUST):
    return CFAEdge(src, dst, Skip(label=src, next_label=dst), kind)


class TestLocations:
    """Tests for Label and VpcLocation."""

    def test_label_equality_is_structural(self):
        assert Label(0x1000, 1) == Label(0x1000, 1)
        assert hash(Label(0x1000, 1)) == hash(Label(0x1000, 1))
        assert Label(0x1000, 0) != Label(0x1000, 1)

    def test_label_order(self):
        """Labels sort by address, then statement index."""
        labels = [Label(0x1004), Label(0x1000, 2), Label(0x1000)]
        assert sorted(labels) == [Label(0x1000), Label(0x1000, 2), Label(0x1004)]

    def test_negative_address_rejected(self):
        with pytest.raises(ValueError):
            Label(-1)

    def test_vpc_location_sorts_after_its_label(self):
        vpc = VpcLocation(7, Label(0x1000))
        assert Label(0x1000) < vpc
        assert vpc < Label(0x1000, 1)
        assert vpc.label == Label(0x1000)
        assert vpc.address == 0x1000

    def test_unknown_vpc_is_distinct(self):
        assert VpcLocation(None, Label(0x1000)) != VpcLocation(0, Label(0x1000))

    def test_label_str(self):
        assert str(Label(0x401000, 3)) == "0x00401000_3"


class TestEdges:
    """Tests for CFAEdge."""

    def test_default_kind_is_must(self):
        edge = skip_edge(Label(1), Label(2))
        assert edge.kind is EdgeKind.MUST

    def test_invalid_kind_rejected(self):
        with pytest.raises(ValueError):
            CFAEdge(Label(1), Label(2), None, "MAYBE")

    def test_missing_endpoint_rejected(self):
        with pytest.raises(ValueError):
            CFAEdge(Label(1), None, None)

    def test_reversed_keeps_kind_and_transformer(self):
        edge = skip_edge(Label(1), Label(2), EdgeKind.MAY)
        rev = edge.reversed()
        assert rev.source == Label(2)
        assert rev.target == Label(1)
        assert rev.kind is EdgeKind.MAY
        assert rev.transformer == edge.transformer

    def test_equal_edges_deduplicate(self):
        a = skip_edge(Label(1), Label(2))
        b = skip_edge(Label(1), Label(2))
        assert len({a, b}) == 1


class TestControlFlowGraph:
    """Tests for the CFG view."""

    def test_adjacency(self):
        e1 = skip_edge(Label(1), Label(2))
        e2 = skip_edge(Label(2), Label(3))
        cfg = ControlFlowGraph([e1, e2], entry=Label(1))

        assert cfg.out_edges(Label(1)) == {e1}
        assert cfg.in_edges(Label(3)) == {e2}
        assert cfg.successors(Label(2)) == [Label(3)]
        assert cfg.predecessors(Label(2)) == [Label(1)]
        assert cfg.nodes == {Label(1), Label(2), Label(3)}
        assert len(cfg) == 2
        assert e1 in cfg and Label(3) in cfg

    def test_unknown_location_has_no_edges(self):
        cfg = ControlFlowGraph([], entry=Label(1))
        assert cfg.out_edges(Label(9)) == set()
        assert Label(1) in cfg

    def test_must_leaves(self):
        """A node reached by MUST but left only by MAY edges is a must-leaf."""
        edges = [
            skip_edge(Label(1), Label(2)),
            skip_edge(Label(2), Label(3), EdgeKind.MAY),
            skip_edge(Label(2), Label(4), EdgeKind.MAY),
            skip_edge(Label(3), Label(4)),
        ]
        cfg = ControlFlowGraph(edges, entry=Label(1))
        assert cfg.must_leaves() == {Label(2), Label(4)}
