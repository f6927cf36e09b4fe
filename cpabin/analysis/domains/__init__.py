"""Register domains usable as composite components."""

from .constants import ConstantAnalysis, ConstantState
from .valueset import ValueSetAnalysis, ValueSetPrecision, ValueSetState

__all__ = [
    'ConstantAnalysis',
    'ConstantState',
    'ValueSetAnalysis',
    'ValueSetPrecision',
    'ValueSetState',
]
