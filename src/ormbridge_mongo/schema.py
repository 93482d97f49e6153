"""Declared model fields, index flags and foreign keys."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import SchemaMismatchError, UnknownModelError

logger = logging.getLogger("ormbridge.mongo.schema")

ID_DOCUMENT_FIELD = "_id"


class FieldType(str, Enum):
    """Value kinds the bridge distinguishes when coercing values."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OTHER = "other"


_PY_TYPES: dict[type, FieldType] = {
    str: FieldType.STRING,
    int: FieldType.NUMBER,
    float: FieldType.NUMBER,
    Decimal: FieldType.NUMBER,
    bool: FieldType.BOOLEAN,
    datetime: FieldType.DATE,
    date: FieldType.DATE,
}


@dataclass(frozen=True)
class FieldSchema:
    """One declared field. Immutable once registered."""

    name: str
    type: FieldType = FieldType.OTHER
    indexed: bool = False


@dataclass
class ModelSchema:
    """Declared shape of one model.

    ``fields`` is read-only after registration; ``foreign_keys`` grows as
    relations are declared and makes a field index-eligible even when its
    ``FieldSchema.indexed`` flag is false.
    """

    name: str
    fields: Mapping[str, FieldSchema]
    table: str
    id_field: str = "id"
    foreign_keys: set[str] = field(default_factory=set)

    def get_field(self, name: str) -> FieldSchema:
        try:
            return self.fields[name]
        except KeyError:
            raise SchemaMismatchError(name, self.name, list(self.fields)) from None

    def has_index(self, name: str) -> bool:
        """True when equality/range lookups on ``name`` may use an index."""
        if name == self.id_field:
            return True
        return self.get_field(name).indexed or name in self.foreign_keys

    def secondary_index_fields(self) -> list[str]:
        """Declared fields that need a secondary index, in declaration order.

        The identity field is excluded: the backend always indexes ``_id``.
        """
        return [
            name
            for name in self.fields
            if name != self.id_field and self.has_index(name)
        ]

    def date_fields(self) -> frozenset[str]:
        return frozenset(
            name for name, f in self.fields.items() if f.type is FieldType.DATE
        )

    def document_field(self, name: str) -> str:
        """Map a model field name to its stored document key."""
        return ID_DOCUMENT_FIELD if name == self.id_field else name


def _field_type(declared: Any) -> FieldType:
    if isinstance(declared, FieldType):
        return declared
    if isinstance(declared, str):
        try:
            return FieldType(declared.lower())
        except ValueError:
            return FieldType.OTHER
    if isinstance(declared, type):
        for py_type, field_type in _PY_TYPES.items():
            if declared is py_type:
                return field_type
    return FieldType.OTHER


def coerce_field(name: str, declared: Any) -> FieldSchema:
    """Build a FieldSchema from any supported declaration form.

    Accepts a ``FieldSchema``, a ``FieldType``, a Python type, a type name
    (``"Date"``, ``"string"``), or a mapping ``{"type": ..., "index": bool}``.
    """
    if isinstance(declared, FieldSchema):
        if declared.name == name:
            return declared
        return FieldSchema(name, declared.type, declared.indexed)
    if isinstance(declared, Mapping):
        indexed = bool(declared.get("index", declared.get("indexed", False)))
        return FieldSchema(name, _field_type(declared.get("type")), indexed)
    return FieldSchema(name, _field_type(declared))


class SchemaRegistry:
    """Per-process store of model schemas keyed by model name.

    Models are registered by the outer ORM before any query or
    reconciliation call is made against them.
    """

    def __init__(self) -> None:
        self._models: dict[str, ModelSchema] = {}

    def define(
        self,
        name: str,
        fields: Mapping[str, Any],
        *,
        table: str | None = None,
        id_field: str = "id",
    ) -> ModelSchema:
        """Register (or replace) a model and return its schema.

        Replacing a model keeps the foreign keys already declared on it.
        """
        declared = {fname: coerce_field(fname, decl) for fname, decl in fields.items()}
        if id_field not in declared:
            declared = {
                id_field: FieldSchema(id_field, FieldType.OTHER, indexed=True),
                **declared,
            }
        foreign_keys: set[str] = set()
        previous = self._models.get(name)
        if previous is not None:
            logger.debug("Redefining model %s", name)
            foreign_keys = set(previous.foreign_keys)
            for key in sorted(foreign_keys - declared.keys()):
                declared[key] = FieldSchema(key, FieldType.STRING)
        schema = ModelSchema(
            name=name,
            fields=MappingProxyType(declared),
            table=table or name,
            id_field=id_field,
            foreign_keys=foreign_keys,
        )
        self._models[name] = schema
        return schema

    def define_foreign_key(
        self, model: str, key: str, other_model: str | None = None
    ) -> FieldType:
        """Mark ``key`` on ``model`` as a foreign key (and so index-eligible).

        A key the model does not yet declare is added as a string field.
        Returns the field type the outer ORM should use for the key.
        """
        schema = self.get(model)
        if key not in schema.fields:
            schema.fields = MappingProxyType(
                {**schema.fields, key: FieldSchema(key, FieldType.STRING)}
            )
        schema.foreign_keys.add(key)
        logger.debug(
            "Foreign key %s.%s -> %s registered", model, key, other_model or "?"
        )
        return schema.fields[key].type

    def get(self, name: str) -> ModelSchema:
        try:
            return self._models[name]
        except KeyError:
            raise UnknownModelError(name, list(self._models)) from None

    def names(self) -> list[str]:
        return list(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[ModelSchema]:
        return iter(list(self._models.values()))

    def __len__(self) -> int:
        return len(self._models)
