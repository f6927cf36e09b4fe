"""
Tests for the abstract reachability tree and instruction traces.
"""

import pytest
from cpabin.analysis import (
    AbstractReachabilityTree,
    CompositeState,
    LocationState,
    instruction_trace,
    reconstruct_vpc_cfg,
    vpc_of,
)
from cpabin.analysis.domains import ValueSetState
from cpabin.cfa import CFAEdge, EdgeKind, Label, VpcLocation
from cpabin.il import Skip, register
from cpabin.program import Instruction, Program


def edge(src, dst):
    return CFAEdge(Label(src), Label(dst), Skip(label=Label(src), next_label=Label(dst)))


class TestAbstractReachabilityTree:
    """Tree construction and paths."""

    def test_root(self):
        art = AbstractReachabilityTree()
        assert art.root is None
        root = LocationState(Label(1))
        art.set_root(root)
        assert art.root is root
        with pytest.raises(ValueError):
            art.set_root(LocationState(Label(2)))

    def test_children_keep_insertion_order(self):
        art = AbstractReachabilityTree()
        root = LocationState(Label(1))
        a, b = LocationState(Label(2)), LocationState(Label(3))
        art.set_root(root)
        art.add_child(root, edge(1, 2), a)
        art.add_child(root, edge(1, 3), b)
        assert [child for _, child in art.get_children(root)] == [a, b]
        assert len(art) == 3

    def test_unknown_parent(self):
        art = AbstractReachabilityTree()
        art.set_root(LocationState(Label(1)))
        with pytest.raises(KeyError):
            art.add_child(LocationState(Label(5)), edge(5, 6), LocationState(Label(6)))

    def test_equal_states_are_distinct_nodes(self):
        """Nodes are identified by state identity, not structural equality."""
        art = AbstractReachabilityTree()
        root = LocationState(Label(1))
        art.set_root(root)
        first, second = LocationState(Label(2)), LocationState(Label(2))
        art.add_child(root, edge(1, 2), first)
        art.add_child(root, edge(1, 2), second)
        assert len(art) == 3
        assert first in art and second in art

    def test_path_to(self):
        art = AbstractReachabilityTree()
        s1, s2, s3 = LocationState(Label(1)), LocationState(Label(2)), LocationState(Label(3))
        art.set_root(s1)
        art.add_child(s1, edge(1, 2), s2)
        art.add_child(s2, edge(2, 3), s3)

        path = art.path_to(s3)
        assert [s for _, s in path] == [s1, s2, s3]
        assert path[0][0] is None
        assert path[2][0] == edge(2, 3)

    def test_path_to_unknown_state(self):
        art = AbstractReachabilityTree()
        art.set_root(LocationState(Label(1)))
        with pytest.raises(KeyError):
            art.path_to(LocationState(Label(2)))

    def test_bfs_order(self):
        art = AbstractReachabilityTree()
        s1, s2, s3 = LocationState(Label(1)), LocationState(Label(2)), LocationState(Label(3))
        art.set_root(s1)
        art.add_child(s1, edge(1, 2), s2)
        art.add_child(s2, edge(2, 3), s3)
        assert [(p, c) for p, _, c in art.bfs()] == [(s1, s2), (s2, s3)]


class TestInstructionTrace:
    """Instruction-level traces through the ART."""

    def test_collapses_statements_of_one_instruction(self):
        program = Program(entry_address=0x1000)
        program.add_instruction(Instruction(0x1000, 2, "inc eax"))
        program.add_instruction(Instruction(0x1002, 1, "ret"))
        program.add_symbol(0x1000, "main")

        art = AbstractReachabilityTree()
        s1 = LocationState(Label(0x1000, 0))
        s2 = LocationState(Label(0x1000, 1))
        s3 = LocationState(Label(0x1002, 0))
        art.set_root(s1)
        art.add_child(s1, CFAEdge(Label(0x1000, 0), Label(0x1000, 1), None), s2)
        art.add_child(s2, CFAEdge(Label(0x1000, 1), Label(0x1002, 0), None), s3)

        assert instruction_trace(art, s3, program) == [
            "0x00001000 main: inc eax",
            "0x00001002 main+0x2: ret",
        ]


VPC = register("vpc")


def vpc_state(address, **values):
    return CompositeState([LocationState(Label(address)), ValueSetState(values)])


class TestVpcReconstruction:
    """VPC-sensitive CFG lifted from the tree."""

    def test_vpc_of(self):
        assert vpc_of(vpc_state(1, vpc={7}), VPC) == 7
        assert vpc_of(vpc_state(1, vpc={7, 8}), VPC) is None
        assert vpc_of(vpc_state(1), VPC) is None

    def test_same_label_splits_by_vpc(self):
        art = AbstractReachabilityTree()
        root = vpc_state(1)
        first, second = vpc_state(2, vpc={1}), vpc_state(2, vpc={2})
        after_first, after_second = vpc_state(3, vpc={1}), vpc_state(3, vpc={1})
        art.set_root(root)
        art.add_child(root, edge(1, 2), first)
        art.add_child(root, edge(1, 2), second)
        art.add_child(first, edge(2, 3), after_first)
        art.add_child(second, edge(2, 3), after_second)
        # Failure children carry no edge
        art.add_child(after_first, None, vpc_state(9))

        cfg = reconstruct_vpc_cfg(art, VPC)

        assert cfg.entry == VpcLocation(None, Label(1))
        assert cfg.nodes == {
            VpcLocation(None, Label(1)),
            VpcLocation(1, Label(2)),
            VpcLocation(2, Label(2)),
            VpcLocation(1, Label(3)),
        }
        assert len(cfg) == 4
        assert cfg.predecessors(VpcLocation(1, Label(3))) == [VpcLocation(1, Label(2)), VpcLocation(2, Label(2))]
        assert all(e.kind is EdgeKind.MUST for e in cfg.edges)

    def test_empty_tree(self):
        cfg = reconstruct_vpc_cfg(AbstractReachabilityTree(), VPC)
        assert len(cfg) == 0
        assert cfg.entry is None
