"""
Tests for the reached set and worklist policies.
"""

import pytest
from cpabin.analysis import (
    BreadthFirstWorklist,
    CompositeState,
    DepthFirstWorklist,
    LocationState,
    PriorityWorklist,
    ReachedSet,
    location_priority,
)
from cpabin.analysis.domains import ConstantState
from cpabin.cfa import Label


def state_at(address, **values):
    return CompositeState([LocationState(Label(address)), ConstantState(values)])


class TestReachedSet:
    """Reached set membership and indexing."""

    def test_add_is_idempotent(self):
        reached = ReachedSet()
        assert reached.add(state_at(1, eax=1))
        assert not reached.add(state_at(1, eax=1))
        assert len(reached) == 1

    def test_remove(self):
        reached = ReachedSet()
        s = state_at(1)
        reached.add(s)
        assert reached.remove(s)
        assert not reached.remove(s)
        assert reached.is_empty()
        assert s not in reached

    def test_where_groups_by_component(self):
        reached = ReachedSet()
        a, b, c = state_at(1, eax=1), state_at(1, eax=2), state_at(2, eax=1)
        for s in (a, b, c):
            reached.add(s)
        assert set(reached.where(0, LocationState(Label(1)))) == {a, b}
        assert set(reached.where(1, ConstantState({"eax": 1}))) == {a, c}

    def test_index_tracks_updates(self):
        """An index built on first use stays current afterwards."""
        reached = ReachedSet()
        a = state_at(1, eax=1)
        reached.add(a)
        loc = LocationState(Label(1))
        assert reached.where(0, loc) == [a]

        b = state_at(1, eax=2)
        reached.add(b)
        reached.remove(a)
        assert reached.where(0, loc) == [b]

    def test_at_and_locations(self):
        reached = ReachedSet()
        reached.add(state_at(1))
        reached.add(state_at(2))
        assert len(reached.at(Label(1))) == 1
        assert reached.at(Label(9)) == []
        assert set(reached.locations()) == {Label(1), Label(2)}

    def test_select(self):
        reached = ReachedSet()
        reached.add(state_at(1))
        assert reached.select(0) == [LocationState(Label(1))]


class TestWorklists:
    """Pick order and membership for each policy."""

    def test_depth_first(self):
        wl = DepthFirstWorklist()
        for x in (1, 2, 3):
            wl.add(x)
        assert [wl.pick(), wl.pick(), wl.pick()] == [3, 2, 1]

    def test_breadth_first(self):
        wl = BreadthFirstWorklist()
        for x in (1, 2, 3):
            wl.add(x)
        assert [wl.pick(), wl.pick(), wl.pick()] == [1, 2, 3]

    def test_duplicate_add_ignored(self):
        wl = DepthFirstWorklist()
        assert wl.add(1)
        assert not wl.add(1)
        assert len(wl) == 1

    def test_remove(self):
        wl = BreadthFirstWorklist()
        wl.add(1)
        wl.add(2)
        assert wl.remove(1)
        assert not wl.remove(1)
        assert 1 not in wl
        assert wl.pick() == 2
        assert wl.is_empty()

    def test_pick_empty_raises(self):
        with pytest.raises(IndexError):
            DepthFirstWorklist().pick()
        with pytest.raises(IndexError):
            PriorityWorklist(key=lambda x: x).pick()

    def test_priority_lazy_removal(self):
        wl = PriorityWorklist(key=lambda x: x)
        for x in (5, 1, 3):
            wl.add(x)
        wl.remove(1)
        assert len(wl) == 2
        assert wl.pick() == 3
        assert wl.pick() == 5

    def test_location_priority(self):
        wl = PriorityWorklist(key=location_priority)
        far, near = state_at(0x2000), state_at(0x1000)
        wl.add(far)
        wl.add(near)
        assert wl.pick() is near
