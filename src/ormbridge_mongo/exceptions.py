"""Exception hierarchy for the ORM-to-MongoDB bridge.

Compilation errors are raised before any pooled connection is acquired.
Transport-level errors are raised after the held connection has been given
back to the pool. Every exception provides ``to_dict()`` for API-friendly
error responses.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class OrmBridgeError(Exception):
    """Root exception for the bridge."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class ConfigurationError(OrmBridgeError):
    """Raised when connection settings are invalid."""


# ── Compilation ──────────────────────────────────────────────────────


class QueryCompilationError(OrmBridgeError):
    """Base for errors detected while compiling a query descriptor."""


class SchemaMismatchError(QueryCompilationError):
    """
    A filter references a field the model does not declare.

    Uses fuzzy matching to suggest similar declared field names::

        Field 'agee' is not declared on model 'User'.
        Did you mean: age?
    """

    def __init__(
        self,
        field: str,
        model_name: str,
        available_fields: list[str],
        cutoff: float = 0.6,
    ) -> None:
        self.field = field
        self.model_name = model_name
        self.available_fields = available_fields
        self.suggestions = get_close_matches(
            field, available_fields, n=3, cutoff=cutoff
        )

        message = f"Field '{field}' is not declared on model '{model_name}'."
        if self.suggestions:
            message += f"\nDid you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "SCHEMA_MISMATCH",
            "field": self.field,
            "model": self.model_name,
            "suggestions": self.suggestions,
            "available_fields": sorted(self.available_fields),
        }


class UnknownModelError(SchemaMismatchError):
    """A model name was used that was never registered."""

    def __init__(self, model_name: str, available_models: list[str]) -> None:
        self.field = model_name
        self.model_name = model_name
        self.available_fields = available_models
        self.suggestions = get_close_matches(
            model_name, available_models, n=3, cutoff=0.6
        )

        message = f"Model '{model_name}' is not registered."
        if self.suggestions:
            message += f"\nDid you mean: {', '.join(self.suggestions)}?"
        QueryCompilationError.__init__(self, message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_MODEL",
            "model": self.model_name,
            "suggestions": self.suggestions,
            "available_models": sorted(self.available_fields),
        }


class UnsupportedOperatorError(QueryCompilationError):
    """An operator key is not part of the filter vocabulary."""

    def __init__(self, operator: str, valid_operators: list[str]) -> None:
        self.operator = operator
        self.valid_operators = valid_operators
        self.suggestions = get_close_matches(operator, valid_operators, n=3, cutoff=0.6)

        message = f"Unsupported operator: '{operator}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNSUPPORTED_OPERATOR",
            "operator": self.operator,
            "suggestions": self.suggestions,
            "valid_operators": sorted(self.valid_operators),
        }


class InvalidOperandError(QueryCompilationError):
    """An operand has the wrong shape for its operator."""


class InvalidPaginationError(QueryCompilationError):
    """Skip or limit is negative or not an integer."""

    def __init__(self, name: str, value: Any) -> None:
        self.name = name
        self.value = value
        super().__init__(f"{name} must be a non-negative integer, got {value!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "INVALID_PAGINATION",
            "parameter": self.name,
            "value": repr(self.value),
        }


# ── Execution ────────────────────────────────────────────────────────


class TransportError(OrmBridgeError):
    """Raised when the backend call fails (network, server, driver)."""


class WriteConflictError(TransportError):
    """A row-level error reported inside an otherwise successful write."""

    def __init__(self, message: str, *, model: str | None = None) -> None:
        self.model = model
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "WRITE_CONFLICT",
            "model": self.model,
            "message": str(self),
        }


class OperationTimeoutError(TransportError):
    """An acquire-execute-release sequence exceeded the caller timeout."""


class PoolExhaustedError(OrmBridgeError):
    """No pooled connection became available before the acquire timeout."""
