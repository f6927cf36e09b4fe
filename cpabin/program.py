"""
Program model consumed by the analysis.

Holds what the decoding front end produced for one executable: machine
instructions by address, the IL statements they translate to by label,
symbol names, stub addresses and the synthetic entry harness. The
analysis in turn reports the branches it could not resolve into
``unresolved_branches``.

A Program belongs to one analysis session; it is not a process-wide
singleton.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set
import logging

from .cfa.location import Label
from .il.expressions import TRUE, number
from .il.statements import Goto, GotoType, Halt, Statement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instruction:
    """
    A decoded machine instruction.

    Only what the analysis needs for bookkeeping and traces is kept;
    the semantics live in the IL statements.
    """
    address: int
    size: int
    mnemonic: str = ""

    @property
    def fallthrough_address(self) -> int:
        return self.address + self.size

    def __str__(self):
        return self.mnemonic or f"<insn@0x{self.address:x}>"


class Harness(ABC):
    """Synthetic code surrounding the program entry point."""

    @abstractmethod
    def install(self, program: Program) -> None:
        ...

    @abstractmethod
    def contains(self, address: int) -> bool:
        ...

    @abstractmethod
    def fallthrough_address(self, address: int) -> Optional[int]:
        ...

    @property
    @abstractmethod
    def start_label(self) -> Label:
        ...


class DefaultHarness(Harness):
    """
    ``call entry; halt`` around the entry point.

    The call at the prologue has no fall-through in the instruction
    stream; the harness maps it to the epilogue, where execution halts.
    """

    PROLOGUE_ADDRESS = 0xFACE0000
    EPILOGUE_ADDRESS = 0xFACE1000

    def __init__(self, prologue_address: int = PROLOGUE_ADDRESS, epilogue_address: int = EPILOGUE_ADDRESS):
        self.prologue_address = prologue_address
        self.epilogue_address = epilogue_address

    def install(self, program: Program) -> None:
        call_entry = Goto(
            label=Label(self.prologue_address),
            next_label=None,
            condition=TRUE,
            target=number(program.entry_address),
            goto_type=GotoType.CALL,
        )
        halt = Halt(label=Label(self.epilogue_address))
        program.add_statements([call_entry, halt])

    def contains(self, address: int) -> bool:
        return address in (self.prologue_address, self.epilogue_address)

    def fallthrough_address(self, address: int) -> Optional[int]:
        if address == self.prologue_address:
            return self.epilogue_address
        return None

    @property
    def start_label(self) -> Label:
        return Label(self.prologue_address)


class Program:
    """
    Instructions, IL statements and metadata of one executable.

    Attributes:
        entry_address: Address of the program entry point
        unresolved_branches: Labels of branches whose targets the analysis
            could not determine (filled in by the analysis)
    """

    def __init__(self, entry_address: int, name: str = ""):
        self.entry_address = entry_address
        self.name = name
        self.unresolved_branches: Set[Label] = set()
        self._instructions: Dict[int, Instruction] = {}
        self._statements: Dict[Label, Statement] = {}
        self._symbols: Dict[int, str] = {}
        self._stubs: Dict[int, str] = {}
        self._harness: Optional[Harness] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_instruction(
        self,
        instruction: Instruction,
        statements: Sequence[Statement] = (),
    ) -> None:
        """Register a decoded instruction and the IL statements it translates to."""
        self._instructions[instruction.address] = instruction
        self.add_statements(statements)

    def add_statements(self, statements: Iterable[Statement]) -> None:
        for stmt in statements:
            if stmt.label in self._statements:
                logger.debug(f"Replacing statement at {stmt.label}")
            self._statements[stmt.label] = stmt

    def add_symbol(self, address: int, name: str) -> None:
        self._symbols[address] = name

    def add_stub(self, address: int, name: str, statements: Sequence[Statement] = ()) -> None:
        """Register a library stub; stubs are not part of the code address space."""
        self._stubs[address] = name
        self._symbols.setdefault(address, name)
        self.add_statements(statements)

    def install_harness(self, harness: Harness) -> None:
        self._harness = harness
        harness.install(self)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def harness(self) -> Optional[Harness]:
        return self._harness

    @property
    def start_label(self) -> Label:
        if self._harness is not None:
            return self._harness.start_label
        return Label(self.entry_address)

    @property
    def instruction_count(self) -> int:
        return len(self._instructions)

    @property
    def stub_addresses(self) -> Set[int]:
        return set(self._stubs)

    def get_instruction(self, address: int) -> Optional[Instruction]:
        return self._instructions.get(address)

    def get_statement(self, label: Label) -> Optional[Statement]:
        return self._statements.get(label)

    def code_addresses(self) -> Iterator[int]:
        """All known instruction addresses, ascending."""
        return iter(sorted(self._instructions))

    def is_stub(self, address: int) -> bool:
        return address in self._stubs

    def in_harness(self, address: int) -> bool:
        return self._harness is not None and self._harness.contains(address)

    def get_symbol_for(self, address: int) -> str:
        if address in self._symbols:
            return self._symbols[address]
        # Nearest preceding symbol with offset
        preceding = [a for a in self._symbols if a <= address]
        if preceding:
            base = max(preceding)
            return f"{self._symbols[base]}+0x{address - base:x}"
        return f"0x{address:08x}"

    def statements(self) -> List[Statement]:
        return [self._statements[label] for label in sorted(self._statements)]

    def __repr__(self):
        return (
            f"Program(name={self.name!r}, entry=0x{self.entry_address:x}, "
            f"instructions={len(self._instructions)}, statements={len(self._statements)})"
        )
