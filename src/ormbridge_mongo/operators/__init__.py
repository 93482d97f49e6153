"""MongoDB operator compilers for filter clauses."""

from __future__ import annotations

from .set import compile_membership
from .standard import (
    compile_between,
    compile_comparison,
    compile_index_range,
    validate_range_operand,
)
from .vocabulary import INDEX_ELIGIBLE, MEMBERSHIP, Operator, parse_operator

__all__ = [
    "INDEX_ELIGIBLE",
    "MEMBERSHIP",
    "Operator",
    "parse_operator",
    "compile_comparison",
    "compile_between",
    "compile_index_range",
    "compile_membership",
    "validate_range_operand",
]
