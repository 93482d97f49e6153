"""MongoConnectionManager — Motor client lifecycle and pooled handles."""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any

from .config import ConnectionSettings
from .exceptions import TransportError

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

logger = logging.getLogger("ormbridge.mongo.connection")

_handle_ids = itertools.count(1)


class MongoConnection:
    """A pooled handle onto one database of the shared Motor client."""

    def __init__(self, database: Any) -> None:
        self.id = next(_handle_ids)
        self.database = database
        self.closed = False

    def collection(self, name: str) -> AsyncIOMotorCollection[Any]:
        if self.closed:
            raise TransportError(f"Connection #{self.id} is closed")
        return self.database.get_collection(name)

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<MongoConnection #{self.id} {state}>"


class MongoConnectionManager:
    """Wrap the Motor client with lifecycle and health-check helpers.

    The client keeps its own socket pool, sized from the same settings as the
    bridge's ``ConnectionPool``; ``open_connection``/``close_connection`` are
    that pool's factory and destroyer.
    """

    def __init__(
        self, settings: ConnectionSettings | None = None, **kwargs: Any
    ) -> None:
        self._settings = settings or ConnectionSettings()
        self._kwargs = kwargs
        self._client: AsyncIOMotorClient[Any] | None = None

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def database_name(self) -> str:
        return self._settings.database

    async def connect(self) -> AsyncIOMotorClient[Any]:
        """Create and cache the Motor client. Idempotent."""
        if self._client is not None:
            return self._client
        try:
            from motor.motor_asyncio import AsyncIOMotorClient
        except ImportError as e:
            raise TransportError("motor is required; install with motor>=3.3.0") from e
        try:
            self._client = AsyncIOMotorClient(
                self._settings.mongo_uri(),
                **{**self._settings.client_kwargs(), **self._kwargs},
            )
        except Exception as e:
            raise TransportError(str(e)) from e
        logger.debug("Motor client created for %s", self._settings.seeds())
        return self._client

    @property
    def client(self) -> AsyncIOMotorClient[Any]:
        """Return the Motor client; raises if not connected."""
        if self._client is None:
            raise TransportError("Not connected; call connect() first")
        return self._client

    async def open_connection(self) -> MongoConnection:
        client = await self.connect()
        return MongoConnection(client.get_database(self.database_name))

    async def close_connection(self, connection: MongoConnection) -> None:
        connection.close()

    def close(self) -> None:
        """Close the client (synchronous; Motor client.close() is sync)."""
        if self._client is not None:
            self._client.close()
            self._client = None

    async def health_check(self) -> bool:
        """Ping the server; return True if reachable."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except Exception:  # noqa: BLE001
            return False
