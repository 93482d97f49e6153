"""Wraps a compiled predicate with ordering and pagination."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .compiler import CompiledPredicate, Where, compile_predicate
from .exceptions import InvalidPaginationError
from .schema import ID_DOCUMENT_FIELD

if TYPE_CHECKING:
    from .schema import ModelSchema

OrderSpec = str | Sequence[str | tuple[str, str]] | None

_DIRECTION = re.compile(r"\s+(ASC|DESC)$", re.IGNORECASE)


@dataclass(frozen=True)
class QueryDescriptor:
    """Backend-neutral description of a read.

    ``offset`` is accepted as an alias and only used when ``skip`` is None.
    """

    where: Where = None
    order: OrderSpec = None
    skip: int | None = None
    limit: int | None = None
    offset: int | None = None

    @classmethod
    def coerce(
        cls, value: QueryDescriptor | Mapping[str, Any] | None
    ) -> QueryDescriptor:
        """Accept a descriptor or an ORM-style ``{"where": ..., "order": ...}``."""
        if value is None:
            return cls()
        if isinstance(value, QueryDescriptor):
            return value
        return cls(
            where=value.get("where"),
            order=value.get("order"),
            skip=value.get("skip"),
            limit=value.get("limit"),
            offset=value.get("offset"),
        )

    @property
    def effective_skip(self) -> int | None:
        return self.skip if self.skip is not None else self.offset


@dataclass(frozen=True)
class ExecutableQuery:
    """A compiled read: match stages, sort, skip, limit."""

    table: str
    predicate: CompiledPredicate
    sort: tuple[tuple[str, int], ...] = ()
    skip: int | None = None
    limit: int | None = None

    @property
    def hint(self) -> list[tuple[str, int]] | None:
        if self.predicate.indexed is None:
            return None
        return self.predicate.indexed.hint

    def pipeline(self) -> list[dict[str, Any]]:
        """Aggregation pipeline: filter, then sort, then skip, then limit."""
        stages = self.predicate.match_stages()
        if self.sort:
            stages.append({"$sort": dict(self.sort)})
        if self.skip:
            stages.append({"$skip": self.skip})
        if self.limit:
            stages.append({"$limit": self.limit})
        return stages

    def filter_document(self) -> dict[str, Any]:
        return self.predicate.filter_document()

    @property
    def is_paginated(self) -> bool:
        return bool(self.skip or self.limit)


def _validate_pagination(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidPaginationError(name, value)
    return value


class MongoQueryBuilder:
    """Builds ExecutableQuery values. Never mutates the predicate it wraps."""

    def build_sort(
        self, schema: ModelSchema, order: OrderSpec
    ) -> tuple[tuple[str, int], ...]:
        """Parse ordering into MongoDB sort tuples.

        Entries are ``"field"``, ``"field ASC"``, ``"field desc"`` or
        ``(field, "asc"|"desc")``; a single string may hold comma-separated
        entries. With no ordering the identity field ascending is used, and
        the identity is always the final tie-breaker so pagination is stable.
        """
        if isinstance(order, str):
            entries: Sequence[Any] = order.split(",")
        else:
            entries = order or ()

        result: list[tuple[str, int]] = []
        for entry in entries:
            if isinstance(entry, tuple):
                name, direction = entry[0], str(entry[1]).upper()
            else:
                text = str(entry).strip()
                if not text:
                    continue
                match = _DIRECTION.search(text)
                direction = match.group(1).upper() if match else "ASC"
                name = _DIRECTION.sub("", text).strip()
            key = schema.document_field(name)
            if any(existing == key for existing, _ in result):
                continue
            result.append((key, -1 if direction == "DESC" else 1))

        if not any(key == ID_DOCUMENT_FIELD for key, _ in result):
            result.append((ID_DOCUMENT_FIELD, 1))
        return tuple(result)

    def build(
        self,
        schema: ModelSchema,
        predicate: CompiledPredicate,
        order: OrderSpec = None,
        skip: int | None = None,
        limit: int | None = None,
    ) -> ExecutableQuery:
        """Wrap ``predicate`` with ordering and pagination.

        Raises:
            InvalidPaginationError: skip or limit is negative or not an int.
        """
        return ExecutableQuery(
            table=schema.table,
            predicate=predicate,
            sort=self.build_sort(schema, order),
            skip=_validate_pagination("skip", skip),
            limit=_validate_pagination("limit", limit),
        )

    def build_descriptor(
        self,
        schema: ModelSchema,
        descriptor: QueryDescriptor | Mapping[str, Any] | None,
    ) -> ExecutableQuery:
        """Compile the descriptor's filters and wrap them in one step."""
        descriptor = QueryDescriptor.coerce(descriptor)
        predicate = compile_predicate(schema, descriptor.where)
        return self.build(
            schema,
            predicate,
            order=descriptor.order,
            skip=descriptor.effective_skip,
            limit=descriptor.limit,
        )
