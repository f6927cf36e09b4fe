"""
Abstract states, precisions and state-level exceptions.

An abstract state is an immutable lattice element. Beyond lattice
operations it must be able to project itself onto concrete values of
given expressions, which is how indirect branch targets are resolved.

Every state receives a unique identifier at construction. The identifier
names the state in the ART and in logs and is unrelated to structural
equality: two equal states built at different times have different
identifiers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Set, Tuple
import itertools

import z3

from ..cfa.location import Location
from ..il.expressions import ConcreteValue


_identifiers = itertools.count()


def next_identifier() -> int:
    return next(_identifiers)


class AbstractState(ABC):
    """
    Lattice element of one abstract domain.

    Subclasses must be immutable and implement structural ``__eq__`` and
    ``__hash__``; they must call ``super().__init__()`` to obtain an
    identifier.
    """

    def __init__(self):
        self._identifier = next_identifier()

    @property
    def identifier(self) -> int:
        return self._identifier

    @property
    def location(self) -> Optional[Location]:
        """Control location; None for components that do not track it."""
        return None

    @abstractmethod
    def join(self, other: AbstractState) -> AbstractState:
        ...

    @abstractmethod
    def less_or_equal(self, other: AbstractState) -> bool:
        ...

    def is_top(self) -> bool:
        return False

    def is_bottom(self) -> bool:
        return False

    def projection_from_concretization(
        self, *expressions: z3.ExprRef
    ) -> Optional[Set[Tuple[ConcreteValue, ...]]]:
        """
        Concrete value tuples of ``expressions`` consistent with this state.

        Returns None if the domain has no information about the expressions.
        A None inside a tuple means that position is unknown. The enumeration
        may be incomplete for abstractions that cannot enumerate precisely.
        """
        return None


class Precision(ABC):
    """Per-location abstraction granularity. Precisions are immutable."""


class NullPrecision(Precision):
    """Precision of domains without tunable granularity."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __eq__(self, other):
        return isinstance(other, NullPrecision)

    def __hash__(self):
        return hash(NullPrecision)

    def __repr__(self):
        return "NullPrecision()"


# ============================================================================
# Exceptions
# ============================================================================

class StateException(Exception):
    """
    Runtime fault discovered while processing an abstract state.

    The state may be unknown where the fault is raised; the engine then
    attaches the pre-transfer state before propagating.
    """

    def __init__(self, message: str, state: Optional[AbstractState] = None):
        super().__init__(message)
        self.message = message
        self.state = state

    def __str__(self):
        if self.state is not None and self.state.location is not None:
            return f"{self.state.location}: {self.message}"
        return self.message


class ControlFlowException(StateException):
    """Indirect control flow that could not be resolved (strict/debug mode)."""


class DisassemblyException(StateException):
    """No IL statement exists at a reached label."""
