"""Shared fixtures for the ormbridge-mongo test suite."""

import pytest

from ormbridge_mongo import (
    ConnectionSettings,
    FieldType,
    MongoAdapter,
    MongoConnectionManager,
    SchemaRegistry,
)


@pytest.fixture
def registry():
    """Registry with the User model used across the suite."""
    registry = SchemaRegistry()
    registry.define(
        "User",
        {
            "id": {"type": "string", "index": True},
            "name": str,
            "age": {"type": FieldType.NUMBER},
            "createdAt": {"type": "date", "index": True},
            "tier": str,
        },
        table="users",
    )
    return registry


@pytest.fixture
async def mongo_connection():
    """Connection manager backed by mongomock instead of a live server."""
    try:
        from mongomock_motor import AsyncMongoMockClient
    except ImportError:
        pytest.skip("mongomock-motor not installed")

    connection = MongoConnectionManager.__new__(MongoConnectionManager)
    connection._settings = ConnectionSettings(database="test_db")
    connection._kwargs = {}
    connection._client = AsyncMongoMockClient(default_database_name="test_db")
    yield connection


@pytest.fixture
async def adapter(registry, mongo_connection):
    """Connected adapter over mongomock with the User model registered."""
    adapter = MongoAdapter(
        ConnectionSettings(database="test_db", pool_max=4),
        registry=registry,
        connection=mongo_connection,
    )
    await adapter.connect()
    yield adapter
    await adapter.pool.drain(timeout=1)
