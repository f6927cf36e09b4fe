"""IL: z3-backed expressions and the statements transformers are built from."""

from .expressions import (
    DEFAULT_WIDTH,
    TRUE,
    FALSE,
    register,
    number,
    is_condition,
    create_equal,
    create_and,
    simplify,
    free_registers,
    substitute_constants,
    as_concrete,
    evaluate,
    enumerate_valuations,
    unknown_projection,
    equality_facts,
    register_name,
)

from .statements import (
    GotoType,
    Statement,
    Assignment,
    Havoc,
    Assume,
    Goto,
    CallReturn,
    Skip,
    Halt,
)

__all__ = [
    # Expressions
    'DEFAULT_WIDTH',
    'TRUE',
    'FALSE',
    'register',
    'number',
    'is_condition',
    'create_equal',
    'create_and',
    'simplify',
    'free_registers',
    'substitute_constants',
    'as_concrete',
    'evaluate',
    'enumerate_valuations',
    'unknown_projection',
    'equality_facts',
    'register_name',
    # Statements
    'GotoType',
    'Statement',
    'Assignment',
    'Havoc',
    'Assume',
    'Goto',
    'CallReturn',
    'Skip',
    'Halt',
]
