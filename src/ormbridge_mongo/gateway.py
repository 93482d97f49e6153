"""ExecutionGateway — runs compiled queries and CRUD commands over the pool.

Each public operation:

1. compiles its filters first (compilation errors never touch the pool);
2. holds exactly one pooled connection for exactly one backend call, inside
   an optional caller-level timeout;
3. converts driver failures into ``TransportError`` and row-level errors in
   a write acknowledgment into ``WriteConflictError``;
4. normalises returned documents (``_id`` to identity, epoch to datetime).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from .compiler import compile_predicate
from .exceptions import (
    OperationTimeoutError,
    OrmBridgeError,
    TransportError,
    WriteConflictError,
)
from .query_builder import ExecutableQuery, MongoQueryBuilder, QueryDescriptor
from .schema import ID_DOCUMENT_FIELD
from .serialization import prepare_write, record_from_doc

if TYPE_CHECKING:
    from .pool import ConnectionPool
    from .schema import ModelSchema, SchemaRegistry
    from .transport import Transport, WriteAck

logger = logging.getLogger("ormbridge.mongo.gateway")

T = TypeVar("T")

Record = dict[str, Any]
Payload = Mapping[str, Any] | BaseModel


def is_fatal_error(exc: BaseException) -> bool:
    """True when a connection must be destroyed rather than reused.

    Cancellation (including caller timeouts) and transport failures leave the
    connection in an unknown state; business errors such as write conflicts
    do not.
    """
    if not isinstance(exc, Exception):
        return True
    return isinstance(exc, TransportError) and not isinstance(
        exc, WriteConflictError
    )


class ExecutionGateway:
    """The only caller of the transport primitives."""

    def __init__(
        self,
        registry: SchemaRegistry,
        pool: ConnectionPool[Any],
        transport: Transport,
        *,
        timeout: float | None = None,
        query_builder: MongoQueryBuilder | None = None,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._transport = transport
        self._timeout = timeout
        self._builder = query_builder or MongoQueryBuilder()

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    # ── Plumbing ─────────────────────────────────────────────────

    async def _run(self, label: str, op: Callable[[Any], Awaitable[T]]) -> T:
        async def scoped() -> T:
            async with self._pool.connection() as conn:
                try:
                    return await op(conn)
                except OrmBridgeError:
                    raise
                except Exception as e:
                    logger.debug("%s failed: %r", label, e)
                    raise TransportError(f"{label} failed: {e}") from e

        if self._timeout is None:
            return await scoped()
        try:
            return await asyncio.wait_for(scoped(), timeout=self._timeout)
        except asyncio.TimeoutError as err:
            logger.warning("%s abandoned after %.1fs", label, self._timeout)
            raise OperationTimeoutError(
                f"{label} did not complete within {self._timeout}s"
            ) from err

    def _check_ack(self, model: str, ack: WriteAck) -> WriteAck:
        if ack.first_error:
            logger.warning("Write to %s rejected: %s", model, ack.first_error)
            raise WriteConflictError(ack.first_error, model=model)
        return ack

    def _by_id(self, schema: ModelSchema, entity_id: Any) -> ExecutableQuery:
        predicate = compile_predicate(schema, {schema.id_field: entity_id})
        return self._builder.build(schema, predicate, limit=1)

    # ── Reads ────────────────────────────────────────────────────

    async def execute(self, query: ExecutableQuery) -> list[dict[str, Any]]:
        """Run a built query and return the raw documents."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Running on %s: %s", query.table, query.pipeline())
        return await self._run(
            f"query({query.table})",
            lambda conn: self._transport.run_query(conn, query),
        )

    async def all(
        self,
        model: str,
        query: QueryDescriptor | Mapping[str, Any] | None = None,
    ) -> list[Record]:
        """Rows matching ``query`` (where/order/skip/offset/limit)."""
        schema = self._registry.get(model)
        executable = self._builder.build_descriptor(schema, query)
        docs = await self.execute(executable)
        return [record_from_doc(schema, doc) for doc in docs]

    async def find_by_id(self, model: str, entity_id: Any) -> Record | None:
        schema = self._registry.get(model)
        docs = await self.execute(self._by_id(schema, entity_id))
        return record_from_doc(schema, docs[0]) if docs else None

    async def exists(self, model: str, entity_id: Any) -> bool:
        return await self.find_by_id(model, entity_id) is not None

    async def count(self, model: str, where: Mapping[str, Any] | None = None) -> int:
        schema = self._registry.get(model)
        executable = self._builder.build(schema, compile_predicate(schema, where))
        return await self._run(
            f"count({model})",
            lambda conn: self._transport.count(conn, executable),
        )

    # ── Writes ───────────────────────────────────────────────────

    async def _insert(
        self, schema: ModelSchema, data: Payload, *, upsert: bool
    ) -> Record:
        doc = prepare_write(schema, data)
        ack = self._check_ack(
            schema.name,
            await self._run(
                f"insert({schema.name})",
                lambda conn: self._transport.insert(
                    conn, schema.table, doc, upsert=upsert
                ),
            ),
        )
        if ID_DOCUMENT_FIELD not in doc and ack.generated_key is not None:
            doc[ID_DOCUMENT_FIELD] = ack.generated_key
        return record_from_doc(schema, doc)

    async def create(self, model: str, data: Payload) -> Record:
        """Insert a record; the backend assigns the identity when it is unset."""
        return await self._insert(self._registry.get(model), data, upsert=False)

    async def save(self, model: str, data: Payload) -> Record:
        """Upsert a whole record by identity."""
        return await self._insert(self._registry.get(model), data, upsert=True)

    async def update_or_create(self, model: str, data: Payload) -> Any:
        """Upsert and return the record's identity."""
        schema = self._registry.get(model)
        record = await self._insert(schema, data, upsert=True)
        return record.get(schema.id_field)

    async def update_attributes(
        self, model: str, entity_id: Any, data: Payload
    ) -> Record:
        """Set the given fields on one record; returns the written fields."""
        schema = self._registry.get(model)
        doc = prepare_write(schema, data)
        doc.pop(ID_DOCUMENT_FIELD, None)
        self._check_ack(
            model,
            await self._run(
                f"update({model})",
                lambda conn: self._transport.update(
                    conn, schema.table, entity_id, doc
                ),
            ),
        )
        return {**record_from_doc(schema, doc), schema.id_field: entity_id}

    async def destroy(self, model: str, entity_id: Any) -> None:
        schema = self._registry.get(model)
        predicate = compile_predicate(schema, {schema.id_field: entity_id})
        await self._delete(schema, self._builder.build(schema, predicate))

    async def remove(
        self,
        model: str,
        query: QueryDescriptor | Mapping[str, Any] | None = None,
    ) -> int:
        """Delete rows matching ``query``; returns the number deleted."""
        schema = self._registry.get(model)
        executable = self._builder.build_descriptor(schema, query)
        return await self._delete(schema, executable)

    async def destroy_all(self, model: str) -> int:
        return await self.remove(model)

    async def _delete(self, schema: ModelSchema, query: ExecutableQuery) -> int:
        ack = self._check_ack(
            schema.name,
            await self._run(
                f"delete({schema.name})",
                lambda conn: self._transport.delete(conn, query),
            ),
        )
        return ack.deleted

    # ── Metadata ─────────────────────────────────────────────────

    async def list_tables(self) -> list[str]:
        return await self._run("list_tables", self._transport.list_tables)

    async def create_table(self, model: str) -> None:
        table = self._registry.get(model).table
        await self._run(
            f"create_table({table})",
            lambda conn: self._transport.create_table(conn, table),
        )

    async def list_indexes(self, model: str) -> list[str]:
        table = self._registry.get(model).table
        return await self._run(
            f"list_indexes({table})",
            lambda conn: self._transport.list_indexes(conn, table),
        )

    async def create_index(self, model: str, field: str) -> str:
        schema = self._registry.get(model)
        key = schema.document_field(schema.get_field(field).name)
        return await self._run(
            f"create_index({schema.table}.{key})",
            lambda conn: self._transport.create_index(conn, schema.table, key),
        )
