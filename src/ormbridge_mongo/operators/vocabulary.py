"""Filter operator vocabulary and key parsing."""

from __future__ import annotations

from enum import Enum

from ..exceptions import UnsupportedOperatorError


class Operator(str, Enum):
    """Operators accepted in a filter descriptor."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"


_ALIASES: dict[str, Operator] = {
    "eq": Operator.EQ,
    "=": Operator.EQ,
    "neq": Operator.NEQ,
    "ne": Operator.NEQ,
    "!=": Operator.NEQ,
    "gt": Operator.GT,
    ">": Operator.GT,
    "gte": Operator.GTE,
    "ge": Operator.GTE,
    ">=": Operator.GTE,
    "lt": Operator.LT,
    "<": Operator.LT,
    "lte": Operator.LTE,
    "le": Operator.LTE,
    "<=": Operator.LTE,
    "between": Operator.BETWEEN,
    "inq": Operator.IN,
    "in": Operator.IN,
    "nin": Operator.NOT_IN,
    "not_in": Operator.NOT_IN,
}

# Operators that may be served by a single-field index lookup.
INDEX_ELIGIBLE = frozenset({Operator.EQ, Operator.BETWEEN})

# Operators compiled into standalone membership stages.
MEMBERSHIP = frozenset({Operator.IN, Operator.NOT_IN})


def parse_operator(key: str | Operator) -> Operator:
    """Resolve an operator key (case-insensitive, with aliases)."""
    if isinstance(key, Operator):
        return key
    op = _ALIASES.get(str(key).strip().lower())
    if op is None:
        raise UnsupportedOperatorError(str(key), sorted(_ALIASES))
    return op
