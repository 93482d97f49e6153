"""Backend transport — the native primitives the gateway calls.

Every primitive takes a live pooled connection. Driver failures propagate as
raised exceptions; row-level write failures are reported inside the returned
``WriteAck`` instead, so the gateway can tell the two apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pymongo.errors import BulkWriteError, CollectionInvalid, WriteError

from .indexes import create_field_index, list_index_fields
from .schema import ID_DOCUMENT_FIELD

if TYPE_CHECKING:
    from .connection import MongoConnection
    from .query_builder import ExecutableQuery

logger = logging.getLogger("ormbridge.mongo.transport")


@dataclass(frozen=True)
class WriteAck:
    """Acknowledgment of one write."""

    inserted_ids: tuple[Any, ...] = ()
    upserted_id: Any = None
    matched: int = 0
    modified: int = 0
    deleted: int = 0
    errors: tuple[str, ...] = ()

    @property
    def first_error(self) -> str | None:
        return self.errors[0] if self.errors else None

    @property
    def generated_key(self) -> Any:
        if self.inserted_ids:
            return self.inserted_ids[0]
        return self.upserted_id


@runtime_checkable
class Transport(Protocol):
    """Native primitives against one store."""

    async def list_tables(self, conn: Any) -> list[str]: ...

    async def create_table(self, conn: Any, table: str) -> None: ...

    async def list_indexes(self, conn: Any, table: str) -> list[str]: ...

    async def create_index(self, conn: Any, table: str, field: str) -> str: ...

    async def run_query(
        self, conn: Any, query: ExecutableQuery
    ) -> list[dict[str, Any]]: ...

    async def insert(
        self, conn: Any, table: str, doc: dict[str, Any], *, upsert: bool = False
    ) -> WriteAck: ...

    async def update(
        self, conn: Any, table: str, doc_id: Any, changes: dict[str, Any]
    ) -> WriteAck: ...

    async def delete(self, conn: Any, query: ExecutableQuery) -> WriteAck: ...

    async def count(self, conn: Any, query: ExecutableQuery) -> int: ...


def _write_error_message(exc: WriteError | BulkWriteError) -> str:
    details = exc.details or {}
    if isinstance(exc, BulkWriteError):
        errors = details.get("writeErrors") or details.get("writeConcernErrors") or []
        if errors:
            return str(errors[0].get("errmsg", exc))
    return str(details.get("errmsg") or exc)


def _write_concern_errors(result: Any) -> tuple[str, ...]:
    raw = getattr(result, "raw_result", None)
    if not raw:
        return ()
    errors: list[str] = []
    concern = raw.get("writeConcernError")
    if concern:
        errors.append(str(concern.get("errmsg", concern)))
    for err in raw.get("writeErrors") or ():
        errors.append(str(err.get("errmsg", err)))
    return tuple(errors)


class MotorTransport:
    """Transport over Motor collections reached through a MongoConnection."""

    async def list_tables(self, conn: MongoConnection) -> list[str]:
        return list(await conn.database.list_collection_names())

    async def create_table(self, conn: MongoConnection, table: str) -> None:
        try:
            await conn.database.create_collection(table)
        except CollectionInvalid:
            # Created concurrently since the table list was read.
            logger.debug("Collection %s already exists", table)

    async def list_indexes(self, conn: MongoConnection, table: str) -> list[str]:
        return await list_index_fields(conn.collection(table))

    async def create_index(self, conn: MongoConnection, table: str, field: str) -> str:
        return await create_field_index(conn.collection(table), field)

    async def run_query(
        self, conn: MongoConnection, query: ExecutableQuery
    ) -> list[dict[str, Any]]:
        options: dict[str, Any] = {}
        if query.hint is not None:
            options["hint"] = query.hint
        cursor = conn.collection(query.table).aggregate(query.pipeline(), **options)
        return [doc async for doc in cursor]

    async def insert(
        self,
        conn: MongoConnection,
        table: str,
        doc: dict[str, Any],
        *,
        upsert: bool = False,
    ) -> WriteAck:
        coll = conn.collection(table)
        try:
            if upsert and ID_DOCUMENT_FIELD in doc:
                result = await coll.replace_one(
                    {ID_DOCUMENT_FIELD: doc[ID_DOCUMENT_FIELD]}, doc, upsert=True
                )
                return WriteAck(
                    upserted_id=result.upserted_id,
                    matched=result.matched_count,
                    modified=result.modified_count,
                    errors=_write_concern_errors(result),
                )
            inserted = await coll.insert_one(doc)
            return WriteAck(inserted_ids=(inserted.inserted_id,))
        except (WriteError, BulkWriteError) as e:
            return WriteAck(errors=(_write_error_message(e),))

    async def update(
        self,
        conn: MongoConnection,
        table: str,
        doc_id: Any,
        changes: dict[str, Any],
    ) -> WriteAck:
        changes = {k: v for k, v in changes.items() if k != ID_DOCUMENT_FIELD}
        if not changes:
            return WriteAck()
        try:
            result = await conn.collection(table).update_one(
                {ID_DOCUMENT_FIELD: doc_id}, {"$set": changes}
            )
        except (WriteError, BulkWriteError) as e:
            return WriteAck(errors=(_write_error_message(e),))
        return WriteAck(
            matched=result.matched_count,
            modified=result.modified_count,
            errors=_write_concern_errors(result),
        )

    async def delete(self, conn: MongoConnection, query: ExecutableQuery) -> WriteAck:
        coll = conn.collection(query.table)
        if query.is_paginated:
            pipeline = [*query.pipeline(), {"$project": {ID_DOCUMENT_FIELD: 1}}]
            options: dict[str, Any] = {}
            if query.hint is not None:
                options["hint"] = query.hint
            cursor = coll.aggregate(pipeline, **options)
            ids = [doc[ID_DOCUMENT_FIELD] async for doc in cursor]
            if not ids:
                return WriteAck()
            selector: dict[str, Any] = {ID_DOCUMENT_FIELD: {"$in": ids}}
        else:
            selector = query.filter_document()
        try:
            result = await coll.delete_many(selector)
        except (WriteError, BulkWriteError) as e:
            return WriteAck(errors=(_write_error_message(e),))
        return WriteAck(
            deleted=result.deleted_count,
            errors=_write_concern_errors(result),
        )

    async def count(self, conn: MongoConnection, query: ExecutableQuery) -> int:
        coll = conn.collection(query.table)
        return int(await coll.count_documents(query.filter_document()))
