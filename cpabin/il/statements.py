"""
IL statements.

Every machine instruction is translated into a short sequence of IL
statements. Each statement knows its own label and the label of its
static successor (``next_label``); control transfers additionally carry
a condition and a target expression.

Statements are immutable. Equality is structural: z3 operands compare by
AST identity, which is structural because z3 hash-conses terms.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import z3

from ..cfa.location import Label
from .expressions import TRUE, expression_key


class GotoType(Enum):
    """Kind of control transfer."""
    JUMP = "jump"
    CALL = "call"
    RETURN = "return"


@dataclass(frozen=True, eq=False)
class Statement:
    label: Label
    next_label: Optional[Label]

    def operands(self) -> Tuple[z3.ExprRef, ...]:
        return ()

    def _key(self) -> tuple:
        return (
            type(self),
            self.label,
            self.next_label,
            tuple(expression_key(op) for op in self.operands()),
        ) + self._extra_key()

    def _extra_key(self) -> tuple:
        return ()

    def __eq__(self, other):
        if not isinstance(other, Statement):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())


@dataclass(frozen=True, eq=False)
class Assignment(Statement):
    """``variable := value``"""
    variable: z3.ExprRef = None
    value: z3.ExprRef = None

    def operands(self):
        return (self.variable, self.value)

    def __str__(self):
        return f"{self.variable} := {self.value}"


@dataclass(frozen=True, eq=False)
class Havoc(Statement):
    """``variable := nondet``: the register may hold any value afterwards."""
    variable: z3.ExprRef = None

    def operands(self):
        return (self.variable,)

    def __str__(self):
        return f"{self.variable} := nondet({self.variable.size()})"


@dataclass(frozen=True, eq=False)
class Assume(Statement):
    """
    Restricts execution to states satisfying ``assumption``.

    Attributes:
        assumption: Boolean z3 term
        source: The goto this assumption was derived from, if any
    """
    assumption: z3.BoolRef = TRUE
    source: Optional[Goto] = None

    def operands(self):
        return (self.assumption,)

    def _extra_key(self):
        return (self.source,)

    def __str__(self):
        return f"assume({self.assumption})"


@dataclass(frozen=True, eq=False)
class Goto(Statement):
    """
    Conditional control transfer to a possibly computed target.

    When ``condition`` is false execution falls through to ``next_label``;
    otherwise it continues at the address ``target`` evaluates to.
    """
    condition: z3.BoolRef = TRUE
    target: z3.ExprRef = None
    goto_type: GotoType = GotoType.JUMP

    def operands(self):
        return (self.condition, self.target)

    def _extra_key(self):
        return (self.goto_type,)

    @property
    def is_call(self) -> bool:
        return self.goto_type is GotoType.CALL

    def __str__(self):
        prefix = "" if z3.is_true(self.condition) else f"if {self.condition} "
        return f"{prefix}{self.goto_type.value} {self.target}"


@dataclass(frozen=True, eq=False)
class CallReturn(Statement):
    """Pseudo statement summarizing a call from call site to fall-through."""

    def __str__(self):
        return f"callreturn -> {self.next_label}"


@dataclass(frozen=True, eq=False)
class Skip(Statement):

    def __str__(self):
        return "skip"


@dataclass(frozen=True, eq=False)
class Halt(Statement):
    next_label: Optional[Label] = None

    def __str__(self):
        return "halt"
