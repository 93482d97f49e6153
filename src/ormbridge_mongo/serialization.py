"""Record <-> document coercion (epoch dates, explicit nulls, identity key).

Temporal values are stored as integer seconds since the Unix epoch. The same
``to_epoch`` conversion is applied to write payloads and to filter operands,
so a stored date always compares equal to the date it was written from.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from bson import Decimal128
from pydantic import BaseModel

from .exceptions import OrmBridgeError
from .schema import ID_DOCUMENT_FIELD

if TYPE_CHECKING:
    from .schema import ModelSchema


class _Unset:
    """Marker for a field the caller left unset (written as null)."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def to_epoch(value: date) -> int:
    """Whole seconds since the epoch. Naive datetimes are read as UTC."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.floor(value.timestamp())


def from_epoch(value: Any) -> Any:
    """Inverse of ``to_epoch``; non-numeric values pass through unchanged."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return datetime.fromtimestamp(value, tz=timezone.utc)


def coerce_value(value: Any) -> Any:
    """Convert one value to its stored form (dates to epoch seconds)."""
    if value is UNSET:
        return None
    if isinstance(value, date):
        return to_epoch(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: coerce_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [coerce_value(v) for v in value]
    return value


def _deserialize_value(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {k: _deserialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_deserialize_value(v) for v in value]
    return value


def as_mapping(data: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Copy a write payload into a plain dict."""
    if isinstance(data, BaseModel):
        try:
            return data.model_dump()
        except Exception as e:
            raise OrmBridgeError(str(e)) from e
    if not isinstance(data, Mapping):
        raise OrmBridgeError(
            f"Record must be a mapping or pydantic model, got {type(data).__name__}"
        )
    return dict(data)


def prepare_write(
    schema: ModelSchema, data: Mapping[str, Any] | BaseModel
) -> dict[str, Any]:
    """Build the document sent to the backend for a write.

    Every field is coerced; unset fields become explicit nulls. A missing or
    null identity is omitted so the backend assigns one.
    """
    payload = as_mapping(data)
    doc: dict[str, Any] = {}
    for key, value in payload.items():
        if key == schema.id_field:
            if value is None or value is UNSET:
                continue
            doc[ID_DOCUMENT_FIELD] = coerce_value(value)
            continue
        doc[key] = coerce_value(value)
    return doc


def record_from_doc(schema: ModelSchema, doc: Mapping[str, Any]) -> dict[str, Any]:
    """Turn a stored document back into a record.

    ``_id`` is exposed under the model's identity field and every declared
    Date field is converted from epoch seconds to an aware UTC datetime.
    """
    record: dict[str, Any] = {}
    date_fields = schema.date_fields()
    for key, value in doc.items():
        if key == ID_DOCUMENT_FIELD:
            record[schema.id_field] = value
            continue
        value = _deserialize_value(value)
        if key in date_fields:
            value = from_epoch(value)
        record[key] = value
    return record
