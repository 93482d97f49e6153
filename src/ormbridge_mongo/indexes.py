"""Single-field index helpers used by schema reconciliation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def ascending_field(key: Any) -> str | None:
    """The field of a ``{field: 1}`` key pattern, else None.

    Indexed reads hint ``[(field, 1)]``; no other key pattern can serve them.
    """
    pairs = list(key.items()) if isinstance(key, Mapping) else list(key or ())
    if len(pairs) != 1:
        return None
    field, direction = pairs[0]
    if isinstance(direction, bool) or direction != 1:
        return None
    return field


async def list_index_fields(collection: Any) -> list[str]:
    """Fields of ``collection`` covered by a live ascending single-key index."""
    found: list[str] = []
    async for idx in collection.list_indexes():
        field = ascending_field(idx.get("key"))
        if field is not None and field not in found:
            found.append(field)
    return found


async def create_field_index(
    collection: Any,
    field: str,
    *,
    name: str | None = None,
    unique: bool = False,
) -> str:
    """Create an ascending single-field index named after the field."""
    return await collection.create_index(
        [(field, 1)], name=name or field, unique=unique
    )
