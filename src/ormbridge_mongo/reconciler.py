"""SchemaReconciler — converge live collections/indexes to the declared schema.

One reconciliation pass lists the live collections once, then evaluates every
registered model concurrently. For a single model the steps are sequential:

``TableCheck``
    A missing collection is created (converge) or makes the model
    "not actual" and ends its evaluation (check only).
``IndexCheck``
    Every index-eligible field without a live index gets one (converge) or
    makes the model "not actual" (check only).

An error on one model does not stop its siblings; the pass waits for all of
them and then raises the first error observed. Nothing is rolled back:
collection and index creation are idempotent and a later pass retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .gateway import ExecutionGateway
    from .schema import ModelSchema, SchemaRegistry

logger = logging.getLogger("ormbridge.mongo.reconciler")


class ReconcileMode(str, Enum):
    CONVERGE = "converge"
    CHECK_ONLY = "check_only"


@dataclass
class ReconciliationPlan:
    """Structures missing from the live store in one pass."""

    tables_to_create: set[str] = field(default_factory=set)
    indexes_to_create: dict[str, set[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.tables_to_create and not any(self.indexes_to_create.values())


class SchemaReconciler:
    """Compares declared schema to the live store and creates what is missing."""

    def __init__(self, registry: SchemaRegistry, gateway: ExecutionGateway) -> None:
        self._registry = registry
        self._gateway = gateway

    async def reconcile(
        self, mode: ReconcileMode = ReconcileMode.CONVERGE
    ) -> ReconciliationPlan | bool:
        """Run one pass.

        Returns the plan that was applied in converge mode, or whether the
        live store matches the declared schema in check-only mode.
        """
        mode = ReconcileMode(mode)
        plan, actual = await self._pass(mode)
        if mode is ReconcileMode.CHECK_ONLY:
            return actual
        return plan

    async def converge(self) -> ReconciliationPlan:
        """Create missing collections and indexes; returns what was created."""
        plan, _ = await self._pass(ReconcileMode.CONVERGE)
        return plan

    async def is_actual(self) -> bool:
        """True when nothing is missing. Never creates anything."""
        _, actual = await self._pass(ReconcileMode.CHECK_ONLY)
        return actual

    async def plan(self) -> ReconciliationPlan:
        """Compute (without applying) what a converge pass would create."""
        plan, _ = await self._pass(ReconcileMode.CHECK_ONLY)
        return plan

    async def _pass(self, mode: ReconcileMode) -> tuple[ReconciliationPlan, bool]:
        live_tables = set(await self._gateway.list_tables())
        plan = ReconciliationPlan()
        actual: dict[str, bool] = {}
        errors: list[Exception] = []

        async def evaluate(schema: ModelSchema) -> None:
            try:
                actual[schema.name] = await self._reconcile_model(
                    schema, live_tables, mode, plan
                )
            except Exception as e:  # noqa: BLE001
                logger.error("Reconciling %s failed: %s", schema.name, e)
                errors.append(e)

        await asyncio.gather(*(evaluate(schema) for schema in self._registry))
        if errors:
            raise errors[0]
        return plan, all(actual.values())

    async def _reconcile_model(
        self,
        schema: ModelSchema,
        live_tables: set[str],
        mode: ReconcileMode,
        plan: ReconciliationPlan,
    ) -> bool:
        wanted = schema.secondary_index_fields()

        if schema.table not in live_tables:
            plan.tables_to_create.add(schema.name)
            if mode is ReconcileMode.CHECK_ONLY:
                if wanted:
                    plan.indexes_to_create[schema.name] = set(wanted)
                logger.warning(
                    "%s is not actual: collection %s missing", schema.name, schema.table
                )
                return False
            await self._gateway.create_table(schema.name)
            logger.info("Created collection %s", schema.table)

        if not wanted:
            return True

        live = set(await self._gateway.list_indexes(schema.name))
        missing = [f for f in wanted if schema.document_field(f) not in live]
        if not missing:
            return True
        plan.indexes_to_create[schema.name] = set(missing)

        if mode is ReconcileMode.CHECK_ONLY:
            logger.warning(
                "%s is not actual: missing indexes %s", schema.name, missing
            )
            return False

        for name in missing:
            await self._gateway.create_index(schema.name, name)
            logger.info("Created index %s on %s", name, schema.table)
        return True
