"""Set membership operators -> $in, $nin."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..exceptions import InvalidOperandError
from .vocabulary import Operator


def compile_membership(field: str, op: Operator, val: Any) -> dict[str, Any]:
    """Compile In/NotIn against a literal value set.

    A scalar operand is treated as a one-element set.
    """
    if op is Operator.IN:
        return {field: {"$in": _as_list(val)}}
    if op is Operator.NOT_IN:
        return {field: {"$nin": _as_list(val)}}
    raise InvalidOperandError(f"{op.value} is not a membership operator")


def _as_list(val: Any) -> list[Any]:
    if isinstance(val, (str, bytes)) or not isinstance(val, Iterable):
        return [val]
    if isinstance(val, dict):
        raise InvalidOperandError("membership operand must be a collection of values")
    return list(val)
