"""Unit tests for schema reconciliation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ormbridge_mongo import (
    ReconcileMode,
    SchemaReconciler,
    SchemaRegistry,
    TransportError,
)


@pytest.fixture
def post_registry():
    registry = SchemaRegistry()
    registry.define(
        "Post",
        {
            "slug": {"type": "string", "index": True},
            "publishedAt": {"type": "date", "index": True},
            "title": str,
        },
        table="posts",
    )
    registry.define_foreign_key("Post", "authorId", "User")
    return registry


def fake_gateway(tables=(), indexes=None):
    indexes = indexes or {}
    gateway = MagicMock()
    gateway.list_tables = AsyncMock(return_value=list(tables))
    gateway.list_indexes = AsyncMock(side_effect=lambda model: indexes.get(model, []))
    gateway.create_table = AsyncMock()
    gateway.create_index = AsyncMock()
    return gateway


class TestCheckOnly:
    @pytest.mark.asyncio
    async def test_one_missing_index_is_not_actual(self, post_registry):
        gateway = fake_gateway(
            tables=["posts"], indexes={"Post": ["_id_", "_id", "slug", "authorId"]}
        )
        reconciler = SchemaReconciler(post_registry, gateway)

        assert await reconciler.reconcile(ReconcileMode.CHECK_ONLY) is False

        gateway.create_table.assert_not_called()
        gateway.create_index.assert_not_called()

    @pytest.mark.asyncio
    async def test_plan_lists_the_missing_index(self, post_registry):
        gateway = fake_gateway(
            tables=["posts"], indexes={"Post": ["slug", "authorId"]}
        )

        plan = await SchemaReconciler(post_registry, gateway).plan()

        assert plan.tables_to_create == set()
        assert plan.indexes_to_create == {"Post": {"publishedAt"}}

    @pytest.mark.asyncio
    async def test_missing_table_is_not_actual(self, post_registry):
        gateway = fake_gateway(tables=[])
        reconciler = SchemaReconciler(post_registry, gateway)

        assert not await reconciler.is_actual()
        gateway.list_indexes.assert_not_called()
        gateway.create_table.assert_not_called()

    @pytest.mark.asyncio
    async def test_all_present_is_actual(self, post_registry):
        gateway = fake_gateway(
            tables=["posts"],
            indexes={"Post": ["slug", "publishedAt", "authorId"]},
        )

        assert await SchemaReconciler(post_registry, gateway).reconcile("check_only")


class TestConverge:
    @pytest.mark.asyncio
    async def test_creates_table_then_indexes(self, post_registry):
        gateway = fake_gateway(tables=[])

        plan = await SchemaReconciler(post_registry, gateway).converge()

        gateway.create_table.assert_awaited_once_with("Post")
        created = [c.args for c in gateway.create_index.await_args_list]
        assert created == [
            ("Post", "slug"),
            ("Post", "publishedAt"),
            ("Post", "authorId"),
        ]
        assert plan.tables_to_create == {"Post"}
        assert plan.indexes_to_create["Post"] == {"slug", "publishedAt", "authorId"}

    @pytest.mark.asyncio
    async def test_model_without_indexes_needs_no_index_listing(self):
        registry = SchemaRegistry()
        registry.define("Tag", {"label": str})
        gateway = fake_gateway(tables=["Tag"])

        plan = await SchemaReconciler(registry, gateway).converge()

        assert plan.is_empty
        gateway.list_indexes.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_does_not_stop_siblings(self, post_registry):
        post_registry.define("Broken", {"key": {"type": "string", "index": True}})

        def list_indexes(model):
            if model == "Broken":
                raise TransportError("index listing failed")
            return []

        gateway = fake_gateway(tables=["posts", "Broken"])
        gateway.list_indexes.side_effect = list_indexes

        with pytest.raises(TransportError, match="index listing failed"):
            await SchemaReconciler(post_registry, gateway).converge()

        assert gateway.create_index.await_count == 3

    @pytest.mark.asyncio
    async def test_converge_twice_is_idempotent(self, adapter):
        adapter.define_foreign_key("User", "teamId", "Team")

        first = await adapter.autoupdate()
        second = await adapter.automigrate()

        assert first.tables_to_create == {"User"}
        assert first.indexes_to_create == {"User": {"createdAt", "teamId"}}
        assert second.is_empty
        assert await adapter.is_actual()

    @pytest.mark.asyncio
    async def test_descending_index_is_replaced_by_usable_one(
        self, adapter, mongo_connection
    ):
        await adapter.gateway.create_table("User")
        users = mongo_connection.client["test_db"]["users"]
        await users.create_index([("createdAt", -1)])

        assert not await adapter.is_actual()

        plan = await adapter.autoupdate()

        assert plan.indexes_to_create == {"User": {"createdAt"}}
        assert await adapter.is_actual()
