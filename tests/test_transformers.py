"""
Tests for state transformer factories.

Tests cover:
1. Static CFG lookups (forward and reverse)
2. Resolution of direct, computed and conditional gotos
3. Unresolved targets in strict, debug and over-approximating mode
4. Call-return edges, including the harness fall-through
"""

import pytest
from cpabin.analysis import (
    CFATransformerFactory,
    CompositeProgramAnalysis,
    CompositeState,
    ControlFlowException,
    DisassemblyException,
    InterproceduralTransformerFactory,
    LocationAnalysis,
    ResolvingTransformerFactory,
    ReverseCFATransformerFactory,
)
from cpabin.analysis.domains import ConstantAnalysis, ConstantState
from cpabin.cfa import CFAEdge, ControlFlowGraph, EdgeKind, Label
from cpabin.il import Assume, CallReturn, Goto, GotoType, Halt, Skip, number, register
from cpabin.options import AnalysisOptions
from cpabin.program import DefaultHarness, Instruction, Program


EAX = register("eax")
EBX = register("ebx")


def build_program(statements_by_address, entry=0x1000, size=4):
    """Program with one instruction per address holding the given statements."""
    program = Program(entry_address=entry)
    for address, stmts in sorted(statements_by_address.items()):
        program.add_instruction(Instruction(address, size, "insn"), stmts)
    return program


def state_at(label, **values):
    cpa = CompositeProgramAnalysis(LocationAnalysis(), ConstantAnalysis())
    state = cpa.init_start_state(label)
    if values:
        state = CompositeState([state.component(0), ConstantState(values)])
    return state


def jump(address, target, condition=None, next_address=None, goto_type=GotoType.JUMP):
    kwargs = {}
    if condition is not None:
        kwargs["condition"] = condition
    return Goto(
        label=Label(address),
        next_label=Label(next_address if next_address is not None else address + 4),
        target=target,
        goto_type=goto_type,
        **kwargs,
    )


class TestStaticFactories:
    """CFATransformerFactory and its reverse."""

    def test_forward_and_reverse(self):
        e = CFAEdge(Label(1), Label(2), Skip(label=Label(1), next_label=Label(2)))
        cfg = ControlFlowGraph([e], entry=Label(1))

        forward = CFATransformerFactory(cfg)
        assert forward.get_initial_location() == Label(1)
        assert forward.get_transformers(state_at(Label(1))) == {e}
        assert forward.is_sound()

        backward = ReverseCFATransformerFactory(cfg, Label(2))
        assert backward.get_initial_location() == Label(2)
        assert backward.get_transformers(state_at(Label(2))) == {e}

    def test_forward_requires_entry(self):
        with pytest.raises(ValueError):
            CFATransformerFactory(ControlFlowGraph([]))


class TestResolvingFactory:
    """On-the-fly edge construction from IL statements."""

    def test_sequential_statement(self):
        program = build_program({0x1000: [Skip(label=Label(0x1000), next_label=Label(0x1004))]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000)))
        assert edges == {CFAEdge(Label(0x1000), Label(0x1004), Skip(label=Label(0x1000), next_label=Label(0x1004)))}

    def test_halt_has_no_edges(self):
        program = build_program({0x1000: [Halt(label=Label(0x1000))]})
        assert ResolvingTransformerFactory(program).get_transformers(state_at(Label(0x1000))) == set()

    def test_missing_statement(self):
        program = build_program({0x1000: [Halt(label=Label(0x1000))]})
        factory = ResolvingTransformerFactory(program)
        with pytest.raises(DisassemblyException) as info:
            factory.get_transformers(state_at(Label(0x2000)))
        assert info.value.state.location == Label(0x2000)

    def test_direct_jump(self):
        program = build_program({0x1000: [jump(0x1000, number(0x1008))], 0x1008: [Halt(label=Label(0x1008))]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000)))

        assert len(edges) == 1
        edge = next(iter(edges))
        assert edge.target == Label(0x1008)
        assert edge.kind is EdgeKind.MUST
        assert isinstance(edge.transformer, Assume)
        assert edge.transformer.source == jump(0x1000, number(0x1008))
        assert factory.is_sound()

    def test_computed_jump_with_known_register(self):
        program = build_program({0x1000: [jump(0x1000, EAX)], 0x2000: [Halt(label=Label(0x2000))]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000), eax=0x2000))
        assert {e.target for e in edges} == {Label(0x2000)}
        assert factory.is_sound()

    def test_conditional_branch_with_unknown_condition(self):
        """An undecided condition yields both the taken and the fall-through edge."""
        program = build_program({0x1000: [jump(0x1000, number(0x1010), condition=EBX == 0)]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000)))
        assert {e.target for e in edges} == {Label(0x1004), Label(0x1010)}
        assert all(e.kind is EdgeKind.MUST for e in edges)

    def test_conditional_branch_decided_by_state(self):
        program = build_program({0x1000: [jump(0x1000, number(0x1010), condition=EBX == 0)]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000), ebx=1))
        assert {e.target for e in edges} == {Label(0x1004)}

    def test_unresolved_target_strict(self):
        """Strict mode drops the edge and records the branch."""
        program = build_program({0x1000: [jump(0x1000, EAX)]})
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000)))

        assert edges == set()
        assert not factory.is_sound()
        assert factory.unresolved_branches == {Label(0x1000)}
        assert program.unresolved_branches == {Label(0x1000)}

    def test_unresolved_target_debug(self):
        program = build_program({0x1000: [jump(0x1000, EAX)]})
        factory = ResolvingTransformerFactory(program, AnalysisOptions(debug=True))
        with pytest.raises(ControlFlowException):
            factory.get_transformers(state_at(Label(0x1000)))
        assert not factory.is_sound()

    def test_over_approximation_is_total(self):
        """all_edges adds one MAY edge per known code address."""
        program = build_program({
            0x1000: [jump(0x1000, EAX)],
            0x1004: [Halt(label=Label(0x1004))],
            0x1008: [Halt(label=Label(0x1008))],
        })
        factory = ResolvingTransformerFactory(program, AnalysisOptions(all_edges=True))
        edges = factory.get_transformers(state_at(Label(0x1000)))

        assert len(edges) == len(list(program.code_addresses()))
        assert all(e.kind is EdgeKind.MAY for e in edges)
        assert {e.source for e in edges} == {Label(0x1000)}
        assert {e.target.address for e in edges} == set(program.code_addresses())
        assert not factory.is_sound()

    def test_edges_are_recorded(self):
        program = build_program({0x1000: [jump(0x1000, number(0x1008))], 0x1008: [Halt(label=Label(0x1008))]})
        factory = ResolvingTransformerFactory(program)
        factory.get_transformers(state_at(Label(0x1000)))
        cfg = factory.get_cfg()
        assert cfg.entry == Label(0x1000)
        assert [e.target for e in cfg.edges] == [Label(0x1008)]

    def test_garbage_target_is_reported(self, caplog):
        program = build_program({0x1000: [jump(0x1000, number(4))]})
        factory = ResolvingTransformerFactory(program)
        with caplog.at_level("WARNING"):
            edges = factory.get_transformers(state_at(Label(0x1000)))
        assert {e.target for e in edges} == {Label(4)}
        assert "reaches address 0x4" in caplog.text


class TestInterproceduralFactory:
    """Call-return edges."""

    def test_call_gets_call_return_edge(self):
        call = jump(0x1000, number(0x2000), next_address=0x1005, goto_type=GotoType.CALL)
        program = build_program({0x1000: [call], 0x2000: [Halt(label=Label(0x2000))]})
        factory = InterproceduralTransformerFactory(program)
        edges = factory.get_transformers(state_at(Label(0x1000)))

        call_returns = [e for e in edges if isinstance(e.transformer, CallReturn)]
        assert len(call_returns) == 1
        assert call_returns[0].target == Label(0x1005)
        assert call_returns[0].kind is EdgeKind.MUST
        assert Label(0x2000) in {e.target for e in edges}

    def test_harness_call_returns_to_epilogue(self):
        program = build_program({0x1000: [Halt(label=Label(0x1000))]})
        program.install_harness(DefaultHarness())
        factory = InterproceduralTransformerFactory(program)
        prologue = factory.get_initial_location()
        edges = factory.get_transformers(state_at(prologue))

        targets = {e.target: e for e in edges}
        assert set(targets) == {Label(0x1000), Label(DefaultHarness.EPILOGUE_ADDRESS)}
        assert isinstance(targets[Label(DefaultHarness.EPILOGUE_ADDRESS)].transformer, CallReturn)

    def test_call_without_fallthrough(self, caplog):
        call = Goto(label=Label(0x1000), next_label=None, target=number(0x2000), goto_type=GotoType.CALL)
        program = build_program({0x1000: [call], 0x2000: [Halt(label=Label(0x2000))]})
        factory = InterproceduralTransformerFactory(program)
        with caplog.at_level("WARNING"):
            edges = factory.get_transformers(state_at(Label(0x1000)))
        assert {e.target for e in edges} == {Label(0x2000)}
        assert "no callReturn edge" in caplog.text

    def test_jumps_get_no_call_return(self):
        program = build_program({0x1000: [jump(0x1000, number(0x1008))]})
        edges = InterproceduralTransformerFactory(program).get_transformers(state_at(Label(0x1000)))
        assert not any(isinstance(e.transformer, CallReturn) for e in edges)


class TestLocationOnlyComposite:
    """Resolution with no value domain besides the location."""

    @staticmethod
    def location_state(label):
        return CompositeProgramAnalysis(LocationAnalysis()).init_start_state(label)

    def test_direct_jump_uses_literal_target(self):
        program = build_program({
            0x1000: [jump(0x1000, number(0x1008), next_address=0x1002)],
            0x1008: [Halt(label=Label(0x1008))],
        })
        factory = ResolvingTransformerFactory(program)
        edges = factory.get_transformers(self.location_state(Label(0x1000)))

        assert {(e.target, e.kind) for e in edges} == {(Label(0x1008), EdgeKind.MUST)}
        assert factory.is_sound()

    def test_over_approximation_adds_only_may_edges(self):
        program = build_program({0x1000: [jump(0x1000, EAX)], 0x1004: [Halt(label=Label(0x1004))]})
        factory = ResolvingTransformerFactory(program, AnalysisOptions(all_edges=True))
        edges = factory.get_transformers(self.location_state(Label(0x1000)))

        assert len(edges) == 2
        assert all(e.kind is EdgeKind.MAY for e in edges)
        assert not factory.is_sound()
