"""Unit tests for filter compilation and index selection."""

from datetime import datetime, timezone

import pytest

from ormbridge_mongo import (
    FieldType,
    FilterClause,
    InvalidOperandError,
    Operator,
    SchemaMismatchError,
    SchemaRegistry,
    UnsupportedOperatorError,
    compile_predicate,
    parse_filters,
)
from ormbridge_mongo.operators import parse_operator


@pytest.fixture
def user(registry):
    return registry.get("User")


class TestOperatorVocabulary:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("eq", Operator.EQ),
            ("=", Operator.EQ),
            ("ne", Operator.NEQ),
            ("!=", Operator.NEQ),
            ("GTE", Operator.GTE),
            ("<=", Operator.LTE),
            ("inq", Operator.IN),
            ("nin", Operator.NOT_IN),
            ("between", Operator.BETWEEN),
        ],
    )
    def test_aliases(self, key, expected):
        assert parse_operator(key) is expected

    def test_unknown_operator_suggests_close_match(self):
        with pytest.raises(UnsupportedOperatorError) as exc_info:
            parse_operator("btween")
        assert "between" in exc_info.value.suggestions
        assert exc_info.value.to_dict()["error"] == "UNSUPPORTED_OPERATOR"


class TestParseFilters:
    def test_plain_value_is_equality(self):
        assert parse_filters({"name": "ann"}) == [
            FilterClause("name", Operator.EQ, "ann")
        ]

    def test_field_then_operator_order(self):
        clauses = parse_filters({"age": {"gte": 18, "lte": 65}, "name": "x"})
        assert [(c.field, c.operator) for c in clauses] == [
            ("age", Operator.GTE),
            ("age", Operator.LTE),
            ("name", Operator.EQ),
        ]

    def test_clause_list_is_grouped_by_field(self):
        clauses = parse_filters(
            [
                FilterClause.of("age", "gt", 1),
                FilterClause.of("name", "eq", "a"),
                FilterClause.of("age", "lt", 9),
            ]
        )
        assert [c.field for c in clauses] == ["age", "age", "name"]

    def test_empty(self):
        assert parse_filters(None) == []
        assert parse_filters({}) == []


class TestIndexSelection:
    def test_equality_on_indexed_field_uses_index(self, user):
        predicate = compile_predicate(user, {"createdAt": 1700000000})

        assert predicate.indexed is not None
        assert predicate.indexed.field == "createdAt"
        assert predicate.indexed.hint == [("createdAt", 1)]
        assert predicate.residual is None

    def test_first_eligible_clause_wins(self, user):
        predicate = compile_predicate(
            user, {"id": "u1", "createdAt": 1700000000}
        )

        assert predicate.indexed.field == "id"
        assert predicate.indexed.index_key == "_id"
        assert predicate.residual == {"createdAt": {"$eq": 1700000000}}

    def test_user_scenario_range_plus_indexed_equality(self, user):
        predicate = compile_predicate(
            user, {"age": {"gte": 18, "lte": 65}, "createdAt": {"eq": 1700000000}}
        )

        assert predicate.indexed.field == "createdAt"
        assert predicate.indexed.fragment == {"createdAt": {"$eq": 1700000000}}
        assert predicate.residual == {
            "$and": [{"age": {"$gte": 18}}, {"age": {"$lte": 65}}]
        }

    def test_between_on_indexed_field_is_a_range_scan(self, user):
        predicate = compile_predicate(user, {"createdAt": {"between": [10, 20]}})

        assert predicate.indexed.operator is Operator.BETWEEN
        assert predicate.indexed.fragment == {"createdAt": {"$gte": 10, "$lte": 20}}

    def test_range_operators_never_use_the_index(self, user):
        predicate = compile_predicate(user, {"createdAt": {"gt": 10}})

        assert predicate.indexed is None
        assert predicate.residual == {"createdAt": {"$gt": 10}}

    def test_between_on_unindexed_field_is_residual(self, user):
        predicate = compile_predicate(user, {"age": {"between": (1, 2)}})

        assert predicate.indexed is None
        assert predicate.residual == {
            "$and": [{"age": {"$gte": 1}}, {"age": {"$lte": 2}}]
        }

    def test_foreign_key_is_index_eligible(self):
        registry = SchemaRegistry()
        registry.define("Post", {"title": str})
        registry.define_foreign_key("Post", "authorId", "User")

        predicate = compile_predicate(registry.get("Post"), {"authorId": "u1"})

        assert predicate.indexed.field == "authorId"

    def test_each_clause_applied_once(self, user):
        predicate = compile_predicate(
            user, {"createdAt": {"eq": 5, "between": [1, 9]}}
        )

        assert predicate.indexed.operator is Operator.EQ
        assert predicate.residual == {
            "$and": [{"createdAt": {"$gte": 1}}, {"createdAt": {"$lte": 9}}]
        }
        assert len(predicate.match_stages()) == 2


class TestMembership:
    def test_in_and_not_in_are_separate_stages(self, user):
        predicate = compile_predicate(
            user, {"tier": {"in": ["gold", "silver"], "nin": {"bronze"}}}
        )

        assert predicate.residual is None
        assert predicate.extras == (
            {"tier": {"$in": ["gold", "silver"]}},
            {"tier": {"$nin": ["bronze"]}},
        )
        assert predicate.match_stages() == [
            {"$match": {"tier": {"$in": ["gold", "silver"]}}},
            {"$match": {"tier": {"$nin": ["bronze"]}}},
        ]

    def test_in_on_indexed_field_does_not_use_index(self, user):
        predicate = compile_predicate(user, {"id": {"in": ["a", "b"]}})

        assert predicate.indexed is None
        assert predicate.extras == ({"_id": {"$in": ["a", "b"]}},)

    def test_scalar_operand_is_a_singleton_set(self, user):
        predicate = compile_predicate(user, {"tier": {"in": "gold"}})
        assert predicate.extras == ({"tier": {"$in": ["gold"]}},)

    def test_mapping_operand_is_rejected(self, user):
        with pytest.raises(InvalidOperandError):
            compile_predicate(user, {"tier": {"in": {"a": 1}}})


class TestCompileErrors:
    def test_unknown_field_raises_before_anything_else(self, user):
        with pytest.raises(SchemaMismatchError) as exc_info:
            compile_predicate(user, {"age": {"gt": 1}, "agee": 3})

        assert exc_info.value.field == "agee"
        assert "age" in exc_info.value.suggestions

    def test_unknown_field_wins_over_unknown_operator(self, user):
        with pytest.raises(SchemaMismatchError) as exc_info:
            compile_predicate(user, {"age": {"gt": 1}, "agee": {"like": 1}})

        assert exc_info.value.field == "agee"

    def test_unknown_operator(self, user):
        with pytest.raises(UnsupportedOperatorError):
            compile_predicate(user, {"age": {"like": 3}})

    @pytest.mark.parametrize("operand", [5, [1], [1, 2, 3], "ab"])
    def test_malformed_between(self, user, operand):
        with pytest.raises(InvalidOperandError):
            compile_predicate(user, {"age": {"between": operand}})


class TestValueCoercion:
    def test_date_operand_becomes_epoch_seconds(self, user):
        moment = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

        predicate = compile_predicate(user, {"createdAt": moment})

        assert predicate.indexed.fragment == {"createdAt": {"$eq": 1700000000}}

    def test_date_range_bounds_are_coerced(self, user):
        lo = datetime(1970, 1, 1, tzinfo=timezone.utc)
        hi = datetime(1970, 1, 2, tzinfo=timezone.utc)

        predicate = compile_predicate(user, {"age": {"between": [lo, hi]}})

        assert predicate.residual == {
            "$and": [{"age": {"$gte": 0}}, {"age": {"$lte": 86400}}]
        }


class TestCompiledPredicate:
    def test_builder_steps_do_not_mutate(self, user):
        base = compile_predicate(user, None)
        extended = base.with_residual({"age": {"$gt": 1}})

        assert base.is_empty
        assert not extended.is_empty
        assert base.residual_parts == ()

    def test_filter_document_combines_all_parts(self, user):
        predicate = compile_predicate(
            user, {"createdAt": 5, "age": {"gt": 1}, "tier": {"in": ["a"]}}
        )

        assert predicate.filter_document() == {
            "$and": [
                {"createdAt": {"$eq": 5}},
                {"age": {"$gt": 1}},
                {"tier": {"$in": ["a"]}},
            ]
        }

    def test_empty_predicate_has_no_stages(self, user):
        predicate = compile_predicate(user, {})
        assert predicate.match_stages() == []
        assert predicate.filter_document() == {}

    def test_date_field_type_is_registered(self, user):
        assert user.get_field("createdAt").type is FieldType.DATE
