"""Comparison and range operators -> MongoDB query fragments."""

from __future__ import annotations

from typing import Any

from ..exceptions import InvalidOperandError
from .vocabulary import Operator

_MONGO_OP_MAP: dict[Operator, str] = {
    Operator.EQ: "$eq",
    Operator.NEQ: "$ne",
    Operator.GT: "$gt",
    Operator.GTE: "$gte",
    Operator.LT: "$lt",
    Operator.LTE: "$lte",
}


def compile_comparison(field: str, op: Operator, val: Any) -> dict[str, Any]:
    """Compile a single-value comparison, e.g. ``{"age": {"$gte": 18}}``."""
    mongo_op = _MONGO_OP_MAP.get(op)
    if mongo_op is None:
        raise InvalidOperandError(f"{op.value} is not a comparison operator")
    return {field: {mongo_op: val}}


def compile_between(field: str, val: Any) -> dict[str, Any]:
    """Inclusive range as a conjunction of two comparisons."""
    lo, hi = validate_range_operand(val)
    return {"$and": [{field: {"$gte": lo}}, {field: {"$lte": hi}}]}


def compile_index_range(field: str, val: Any) -> dict[str, Any]:
    """Inclusive range on a single key, the shape an index bound scan uses."""
    lo, hi = validate_range_operand(val)
    return {field: {"$gte": lo, "$lte": hi}}


def validate_range_operand(val: Any) -> tuple[Any, Any]:
    if isinstance(val, (str, bytes)) or not isinstance(val, (list, tuple)):
        raise InvalidOperandError("between requires a list of two values")
    if len(val) != 2:
        raise InvalidOperandError("between requires a list of two values")
    return val[0], val[1]
