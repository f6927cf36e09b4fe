"""
IL expressions as z3 terms.

Registers are z3 bit-vector constants, numbers are bit-vector values and
branch conditions are z3 booleans. Construction helpers mirror the small
algebra the analysis needs: equality, conjunction, simplification and
evaluation under a partial valuation of registers.

Evaluation results are plain Python values:
- bool for conditions that simplify to true/false
- int for bit-vector terms that simplify to a numeral
- None when the valuation does not determine the value
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Set, Tuple, Union
import itertools

import z3


DEFAULT_WIDTH = 32

TRUE = z3.BoolVal(True)
FALSE = z3.BoolVal(False)

ConcreteValue = Union[bool, int, None]


def register(name: str, width: int = DEFAULT_WIDTH) -> z3.BitVecRef:
    """Register (machine variable) of the given bit width."""
    return z3.BitVec(name, width)


def number(value: int, width: int = DEFAULT_WIDTH) -> z3.BitVecNumRef:
    """Bit-vector numeral; values wrap modulo 2**width."""
    return z3.BitVecVal(value, width)


def is_condition(expr: z3.ExprRef) -> bool:
    """True for boolean-sorted expressions (branch conditions, assumptions)."""
    return z3.is_bool(expr)


def create_equal(left: z3.ExprRef, right: Union[z3.ExprRef, bool, int]) -> z3.BoolRef:
    """
    Build ``left == right``.

    Python constants on the right are lifted to the sort of ``left``.
    """
    if isinstance(right, bool):
        right = z3.BoolVal(right)
    elif isinstance(right, int):
        right = z3.BitVecVal(right, left.size())
    return left == right


def create_and(*operands: z3.BoolRef) -> z3.BoolRef:
    if len(operands) == 1:
        return operands[0]
    return z3.And(*operands)


def simplify(expr: z3.ExprRef) -> z3.ExprRef:
    return z3.simplify(expr)


def _is_register(node: z3.ExprRef) -> bool:
    return z3.is_const(node) and node.decl().kind() == z3.Z3_OP_UNINTERPRETED


def free_registers(expr: z3.ExprRef) -> Set[str]:
    """Names of the uninterpreted constants (registers) occurring in expr."""
    names: Set[str] = set()
    seen: Set[int] = set()
    todo = [expr]
    while todo:
        node = todo.pop()
        if node.get_id() in seen:
            continue
        seen.add(node.get_id())
        if _is_register(node):
            names.add(node.decl().name())
        else:
            todo.extend(node.children())
    return names


def _registers_by_name(expr: z3.ExprRef) -> Dict[str, z3.ExprRef]:
    found: Dict[str, z3.ExprRef] = {}
    todo = [expr]
    while todo:
        node = todo.pop()
        if _is_register(node):
            found[node.decl().name()] = node
        else:
            todo.extend(node.children())
    return found


def substitute_constants(expr: z3.ExprRef, valuation: Mapping[str, int]) -> z3.ExprRef:
    """Replace every register with a known value by its numeral and simplify."""
    pairs = []
    for name, reg in _registers_by_name(expr).items():
        if name in valuation:
            value = valuation[name]
            if z3.is_bv(reg):
                pairs.append((reg, z3.BitVecVal(value, reg.size())))
            elif z3.is_bool(reg):
                pairs.append((reg, z3.BoolVal(bool(value))))
    if pairs:
        expr = z3.substitute(expr, *pairs)
    return z3.simplify(expr)


def as_concrete(expr: z3.ExprRef) -> ConcreteValue:
    """Python value of a simplified expression, or None if it is not a literal."""
    if z3.is_true(expr):
        return True
    if z3.is_false(expr):
        return False
    if z3.is_bv_value(expr):
        return expr.as_long()
    return None


def evaluate(expr: z3.ExprRef, valuation: Mapping[str, int]) -> ConcreteValue:
    """Evaluate expr under a partial register valuation."""
    return as_concrete(substitute_constants(expr, valuation))


def enumerate_valuations(
    names: Iterable[str],
    values: Mapping[str, Iterable[int]],
) -> Iterable[Dict[str, int]]:
    """Cartesian product of per-register value sets as valuation dicts."""
    names = sorted(names)
    domains = [sorted(values[name]) for name in names]
    for combo in itertools.product(*domains):
        yield dict(zip(names, combo))


def unknown_projection(expressions: Tuple[z3.ExprRef, ...]) -> Set[Tuple[ConcreteValue, ...]]:
    """
    Projection used when nothing is known about the operands.

    Literals keep their value. Other conditions may be either truth value;
    other bit-vector values are unknown (None).
    """
    choices = []
    for expr in expressions:
        value = as_concrete(z3.simplify(expr))
        if value is not None:
            choices.append((value,))
        elif is_condition(expr):
            choices.append((True, False))
        else:
            choices.append((None,))
    return set(itertools.product(*choices))


def expression_key(expr: Optional[z3.ExprRef]) -> Optional[int]:
    """
    Hashable identity of an expression.

    z3 hash-conses terms, so structurally equal live expressions share
    the same AST id within a context.
    """
    if expr is None:
        return None
    return expr.get_id()


def equality_facts(expr: z3.ExprRef) -> Dict[str, int]:
    """
    Register values implied by a conjunction of ``register == numeral`` terms.

    Conjuncts of any other shape are ignored.
    """
    facts: Dict[str, int] = {}
    todo = [expr]
    while todo:
        node = todo.pop()
        if z3.is_and(node):
            todo.extend(node.children())
        elif z3.is_eq(node):
            lhs, rhs = node.children()
            for reg, value in ((lhs, rhs), (rhs, lhs)):
                if _is_register(reg) and z3.is_bv_value(value):
                    facts[reg.decl().name()] = value.as_long()
    return facts


def register_name(expr: z3.ExprRef) -> str:
    """Name of a register expression; ValueError for anything else."""
    if not _is_register(expr):
        raise ValueError(f"{expr} is not a register")
    return expr.decl().name()
