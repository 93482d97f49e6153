"""MongoDB adapter for a backend-agnostic ORM.

Compiles declarative filters into index-aware aggregation pipelines, runs
CRUD commands over a bounded connection pool, and reconciles declared model
schemas with live collections and indexes.
"""

from __future__ import annotations

from .adapter import MongoAdapter, initialize_schema
from .compiler import (
    CompiledPredicate,
    FilterClause,
    IndexedAccess,
    compile_predicate,
    parse_filters,
)
from .config import ConnectionSettings
from .connection import MongoConnection, MongoConnectionManager
from .exceptions import (
    ConfigurationError,
    InvalidOperandError,
    InvalidPaginationError,
    OperationTimeoutError,
    OrmBridgeError,
    PoolExhaustedError,
    QueryCompilationError,
    SchemaMismatchError,
    TransportError,
    UnknownModelError,
    UnsupportedOperatorError,
    WriteConflictError,
)
from .gateway import ExecutionGateway
from .operators import Operator
from .pool import ConnectionPool
from .query_builder import ExecutableQuery, MongoQueryBuilder, QueryDescriptor
from .reconciler import ReconcileMode, ReconciliationPlan, SchemaReconciler
from .schema import FieldSchema, FieldType, ModelSchema, SchemaRegistry
from .serialization import UNSET, from_epoch, to_epoch
from .transport import MotorTransport, Transport, WriteAck

__all__ = [
    # Adapter
    "MongoAdapter",
    "initialize_schema",
    # Schema
    "SchemaRegistry",
    "ModelSchema",
    "FieldSchema",
    "FieldType",
    # Compilation
    "Operator",
    "FilterClause",
    "IndexedAccess",
    "CompiledPredicate",
    "compile_predicate",
    "parse_filters",
    "QueryDescriptor",
    "ExecutableQuery",
    "MongoQueryBuilder",
    # Execution
    "ConnectionSettings",
    "MongoConnectionManager",
    "MongoConnection",
    "ConnectionPool",
    "ExecutionGateway",
    "Transport",
    "MotorTransport",
    "WriteAck",
    # Reconciliation
    "SchemaReconciler",
    "ReconcileMode",
    "ReconciliationPlan",
    # Utilities
    "UNSET",
    "to_epoch",
    "from_epoch",
    # Exceptions
    "OrmBridgeError",
    "ConfigurationError",
    "QueryCompilationError",
    "SchemaMismatchError",
    "UnknownModelError",
    "UnsupportedOperatorError",
    "InvalidOperandError",
    "InvalidPaginationError",
    "TransportError",
    "WriteConflictError",
    "OperationTimeoutError",
    "PoolExhaustedError",
]
