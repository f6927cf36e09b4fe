"""
Program locations.

A location names a program point. Two variants exist:
- Label: an instruction address plus the index of the IL statement
  inside that instruction
- VpcLocation: a label augmented with a virtual program counter value,
  used for path-sensitive unrolling of interpreter-style dispatch loops

Locations are value objects: equality and hashing are structural, and
all variants share one total order so they can be sorted together.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering
from typing import Optional


@total_ordering
class Location:
    """Base class of all program points."""

    __slots__ = ()

    @property
    def label(self) -> Label:
        """The plain instruction label underlying this location."""
        raise NotImplementedError

    def sort_key(self) -> tuple:
        raise NotImplementedError

    def __lt__(self, other):
        if not isinstance(other, Location):
            return NotImplemented
        return self.sort_key() < other.sort_key()


@dataclass(frozen=True, eq=True)
class Label(Location):
    """
    Instruction-address label.

    Attributes:
        address: Address of the machine instruction
        index: Position of the IL statement within the instruction's
            statement sequence (0 for the first statement)
    """
    address: int
    index: int = 0

    def __post_init__(self):
        if self.address < 0:
            raise ValueError(f"Negative address: {self.address}")
        if self.index < 0:
            raise ValueError(f"Negative statement index: {self.index}")

    @property
    def label(self) -> Label:
        return self

    def sort_key(self) -> tuple:
        # Plain labels sort before vpc locations sharing the same label
        return (self.address, self.index, 0, -1)

    def __str__(self):
        return f"0x{self.address:08x}_{self.index}"


@dataclass(frozen=True, eq=True)
class VpcLocation(Location):
    """
    Label plus virtual program counter.

    A vpc of None stands for "no virtual program counter known" and is
    distinct from every concrete vpc value.
    """
    vpc: Optional[int]
    location: Label

    @property
    def address(self) -> int:
        return self.location.address

    @property
    def label(self) -> Label:
        return self.location

    def sort_key(self) -> tuple:
        vpc_key = -1 if self.vpc is None else self.vpc
        return (self.location.address, self.location.index, 1, vpc_key)

    def __str__(self):
        vpc = "?" if self.vpc is None else f"0x{self.vpc:x}"
        return f"{self.location}@{vpc}"
