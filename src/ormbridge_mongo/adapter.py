"""MongoAdapter — the ORM-facing adapter wiring registry, pool and gateway."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .config import ConnectionSettings
from .connection import MongoConnection, MongoConnectionManager
from .gateway import ExecutionGateway, is_fatal_error
from .pool import ConnectionPool
from .reconciler import SchemaReconciler
from .schema import SchemaRegistry
from .transport import MotorTransport

if TYPE_CHECKING:
    from .gateway import Payload, Record
    from .query_builder import QueryDescriptor
    from .reconciler import ReconciliationPlan
    from .schema import FieldType, ModelSchema
    from .transport import Transport

logger = logging.getLogger("ormbridge.mongo.adapter")


class MongoAdapter:
    """Backend adapter for a generic data-access layer.

    The outer ORM registers models with ``define``/``define_foreign_key``,
    converges the store with ``autoupdate`` and then issues CRUD calls.
    """

    name = "mongo"

    def __init__(
        self,
        settings: ConnectionSettings | dict[str, Any] | None = None,
        *,
        registry: SchemaRegistry | None = None,
        connection: MongoConnectionManager | None = None,
        transport: Transport | None = None,
        pool: ConnectionPool[Any] | None = None,
    ) -> None:
        self.settings = ConnectionSettings.load(settings)
        self.registry = registry or SchemaRegistry()
        self.connection = connection or MongoConnectionManager(self.settings)
        self.pool: ConnectionPool[Any] = pool or ConnectionPool[MongoConnection](
            self.connection.open_connection,
            self.connection.close_connection,
            max_connections=self.settings.pool_max,
            min_idle=self.settings.pool_min,
            idle_timeout=self.settings.idle_timeout,
            acquire_timeout=self.settings.acquire_timeout,
            is_fatal=is_fatal_error,
        )
        self.gateway = ExecutionGateway(
            self.registry,
            self.pool,
            transport or MotorTransport(),
            timeout=self.settings.operation_timeout,
        )
        self.reconciler = SchemaReconciler(self.registry, self.gateway)

    # ── Model metadata ───────────────────────────────────────────

    def define(
        self,
        model: str,
        fields: Mapping[str, Any],
        *,
        table: str | None = None,
        id_field: str = "id",
    ) -> ModelSchema:
        return self.registry.define(model, fields, table=table, id_field=id_field)

    def define_foreign_key(
        self, model: str, key: str, other_model: str | None = None
    ) -> FieldType:
        return self.registry.define_foreign_key(model, key, other_model)

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> None:
        await self.connection.connect()
        await self.pool.prime()
        logger.debug("Connected to %s", self.settings.database)

    async def disconnect(self, timeout: float | None = None) -> None:
        """Drain the pool, then close the client."""
        await self.pool.drain(timeout)
        self.connection.close()

    # ── Schema ───────────────────────────────────────────────────

    async def autoupdate(self) -> ReconciliationPlan:
        """Create missing collections and indexes."""
        return await self.reconciler.converge()

    async def automigrate(self) -> ReconciliationPlan:
        """Same as ``autoupdate``; existing data is never dropped."""
        return await self.reconciler.converge()

    async def is_actual(self) -> bool:
        return await self.reconciler.is_actual()

    # ── CRUD ─────────────────────────────────────────────────────

    async def create(self, model: str, data: Payload) -> Record:
        return await self.gateway.create(model, data)

    async def save(self, model: str, data: Payload) -> Record:
        return await self.gateway.save(model, data)

    async def update_or_create(self, model: str, data: Payload) -> Any:
        return await self.gateway.update_or_create(model, data)

    async def update_attributes(
        self, model: str, entity_id: Any, data: Payload
    ) -> Record:
        return await self.gateway.update_attributes(model, entity_id, data)

    async def find_by_id(self, model: str, entity_id: Any) -> Record | None:
        return await self.gateway.find_by_id(model, entity_id)

    async def exists(self, model: str, entity_id: Any) -> bool:
        return await self.gateway.exists(model, entity_id)

    async def all(
        self,
        model: str,
        query: QueryDescriptor | Mapping[str, Any] | None = None,
    ) -> list[Record]:
        return await self.gateway.all(model, query)

    async def count(self, model: str, where: Mapping[str, Any] | None = None) -> int:
        return await self.gateway.count(model, where)

    async def destroy(self, model: str, entity_id: Any) -> None:
        await self.gateway.destroy(model, entity_id)

    async def remove(
        self,
        model: str,
        query: QueryDescriptor | Mapping[str, Any] | None = None,
    ) -> int:
        return await self.gateway.remove(model, query)

    async def destroy_all(self, model: str) -> int:
        return await self.gateway.destroy_all(model)


async def initialize_schema(
    settings: ConnectionSettings | dict[str, Any] | None = None,
    **kwargs: Any,
) -> MongoAdapter:
    """Build an adapter from settings and connect it."""
    adapter = MongoAdapter(settings, **kwargs)
    await adapter.connect()
    return adapter
