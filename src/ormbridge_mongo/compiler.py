"""Predicate compiler — filter descriptors to MongoDB match fragments.

A compiled predicate has three parts:

- ``indexed``: at most one clause answered by a single-field index. The first
  ``Eq``/``Between`` clause on an index-eligible field wins; every later
  eligible clause degrades to a residual predicate.
- ``residual``: all other comparison clauses, conjoined with ``$and``.
- ``extras``: ``In``/``NotIn`` membership tests, each applied as its own
  conjunctive stage.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .operators import (
    INDEX_ELIGIBLE,
    MEMBERSHIP,
    Operator,
    compile_between,
    compile_comparison,
    compile_index_range,
    compile_membership,
    parse_operator,
)
from .serialization import coerce_value

if TYPE_CHECKING:
    from .schema import ModelSchema

logger = logging.getLogger("ormbridge.mongo.compiler")

Where = Mapping[str, Any] | Sequence["FilterClause"] | None


@dataclass(frozen=True)
class FilterClause:
    """One ``field <operator> operand`` condition."""

    field: str
    operator: Operator
    operand: Any = None

    @classmethod
    def of(cls, field: str, operator: str | Operator, operand: Any) -> FilterClause:
        return cls(field, parse_operator(operator), operand)


@dataclass(frozen=True)
class IndexedAccess:
    """The clause served through a secondary index."""

    field: str
    index_key: str
    operator: Operator
    fragment: dict[str, Any]

    @property
    def hint(self) -> list[tuple[str, int]]:
        """Key pattern of the single-field index to use."""
        return [(self.index_key, 1)]


@dataclass(frozen=True)
class CompiledPredicate:
    """Immutable result of compiling a filter descriptor.

    Each ``with_*`` step returns a new value; instances are safe to share
    between concurrent callers.
    """

    model: str
    indexed: IndexedAccess | None = None
    residual_parts: tuple[dict[str, Any], ...] = ()
    extras: tuple[dict[str, Any], ...] = ()

    def with_indexed(self, access: IndexedAccess) -> CompiledPredicate:
        return replace(self, indexed=access)

    def with_residual(self, fragment: dict[str, Any]) -> CompiledPredicate:
        return replace(self, residual_parts=(*self.residual_parts, fragment))

    def with_extra(self, fragment: dict[str, Any]) -> CompiledPredicate:
        return replace(self, extras=(*self.extras, fragment))

    @property
    def residual(self) -> dict[str, Any] | None:
        """Residual predicates combined with logical AND, or None."""
        if not self.residual_parts:
            return None
        if len(self.residual_parts) == 1:
            return self.residual_parts[0]
        return {"$and": list(self.residual_parts)}

    @property
    def is_empty(self) -> bool:
        return self.indexed is None and not self.residual_parts and not self.extras

    def match_stages(self) -> list[dict[str, Any]]:
        """``$match`` stages in evaluation order; never an empty stage."""
        stages: list[dict[str, Any]] = []
        if self.indexed is not None:
            stages.append({"$match": self.indexed.fragment})
        residual = self.residual
        if residual is not None:
            stages.append({"$match": residual})
        stages.extend({"$match": extra} for extra in self.extras)
        return stages

    def filter_document(self) -> dict[str, Any]:
        """All parts as one filter document (for count/delete)."""
        parts = [stage["$match"] for stage in self.match_stages()]
        if not parts:
            return {}
        if len(parts) == 1:
            return parts[0]
        return {"$and": parts}


def filter_fields(where: Where) -> list[str]:
    """Field names referenced by ``where``, without interpreting operators."""
    if not where:
        return []
    if isinstance(where, Mapping):
        return list(where)
    return [clause.field for clause in where]


def parse_filters(where: Where) -> list[FilterClause]:
    """Flatten a filter descriptor into clauses grouped by field.

    Fields keep their first-appearance order and each field's operators keep
    their listed order. A non-mapping value is an equality test.
    """
    if not where:
        return []
    if isinstance(where, Mapping):
        clauses: list[FilterClause] = []
        for fname, cond in where.items():
            if isinstance(cond, Mapping):
                for key, operand in cond.items():
                    clauses.append(FilterClause.of(fname, key, operand))
            else:
                clauses.append(FilterClause(fname, Operator.EQ, cond))
        return clauses

    grouped: dict[str, list[FilterClause]] = {}
    for clause in where:
        if not isinstance(clause.operator, Operator):
            clause = FilterClause.of(clause.field, clause.operator, clause.operand)
        grouped.setdefault(clause.field, []).append(clause)
    return [clause for group in grouped.values() for clause in group]


def compile_predicate(schema: ModelSchema, where: Where) -> CompiledPredicate:
    """Compile ``where`` against ``schema``.

    Raises:
        SchemaMismatchError: a clause names a field the model does not declare.
        UnsupportedOperatorError: an operator key is not recognised.
        InvalidOperandError: a Between or membership operand is malformed.
    """
    for fname in filter_fields(where):
        schema.get_field(fname)
    clauses = parse_filters(where)

    predicate = CompiledPredicate(model=schema.name)
    for clause in clauses:
        key = schema.document_field(clause.field)
        operand = coerce_value(clause.operand)
        op = clause.operator

        if op in MEMBERSHIP:
            predicate = predicate.with_extra(compile_membership(key, op, operand))
            continue

        if (
            predicate.indexed is None
            and op in INDEX_ELIGIBLE
            and schema.has_index(clause.field)
        ):
            if op is Operator.EQ:
                fragment = {key: {"$eq": operand}}
            else:
                fragment = compile_index_range(key, operand)
            predicate = predicate.with_indexed(
                IndexedAccess(clause.field, key, op, fragment)
            )
            continue

        if op is Operator.BETWEEN:
            predicate = predicate.with_residual(compile_between(key, operand))
        else:
            predicate = predicate.with_residual(compile_comparison(key, op, operand))

    logger.debug(
        "Compiled %s filter: indexed=%s residual=%s extras=%d",
        schema.name,
        predicate.indexed.field if predicate.indexed else None,
        predicate.residual,
        len(predicate.extras),
    )
    return predicate
