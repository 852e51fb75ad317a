"""Unit tests for expression.py and constraints.py."""

import datetime
import decimal

import pytest
from partprune.bound import MINUS_INFINITY, PLUS_INFINITY, Bound
from partprune.catalog import Catalog, PartType
from partprune.constraints import (
    build_check_constraint_name,
    build_hash_condition,
    build_null_condition,
    build_range_condition,
    is_null_constraint,
    validate_hash_constraint,
    validate_range_constraint,
)
from partprune.errors import ConfigurationError, PartitionExpressionError
from partprune.expression import (
    BoolExpr,
    Const,
    FuncExpr,
    OpExpr,
    Var,
    cook_partitioning_expression,
    deparse,
    expression_attnames,
    node_to_string,
    string_to_node,
)
from partprune.relation_info import PartRelationInfo
from partprune.typecache import TypeRegistry


@pytest.fixture
def events():
    catalog = Catalog()
    relid = catalog.create_relation(
        "events", {"id": "int4", "name": "text", "amount": "numeric", "day": "date"}
    )
    return catalog, relid


def make_prel(parttype, expr, typename):
    info = TypeRegistry().lookup(typename)
    return PartRelationInfo(1, parttype=parttype, expr=expr, type_info=info, ev_collation=info.collation)


class TestCooking:
    """Tests for parsing and analysis of partitioning expressions."""

    def test_column(self, events):
        catalog, relid = events
        cooked = cook_partitioning_expression(catalog, relid, "id")
        assert cooked.expr == "id"
        assert (cooked.type, cooked.byval, cooked.length, cooked.collation) == ("int4", True, 4, None)
        assert string_to_node(cooked.cooked) == Var("id", "int4")

    def test_function_of_column(self, events):
        catalog, relid = events
        cooked = cook_partitioning_expression(catalog, relid, "lower(name)")
        assert (cooked.type, cooked.byval, cooked.collation) == ("text", False, "default")
        assert string_to_node(cooked.cooked) == FuncExpr("lower", (Var("name", "text"),), "text")

    def test_arithmetic_types(self, events):
        catalog, relid = events
        assert cook_partitioning_expression(catalog, relid, "id + 1").type == "int4"
        assert cook_partitioning_expression(catalog, relid, "id * 2.5").type == "numeric"
        assert cook_partitioning_expression(catalog, relid, "-id").type == "int4"
        assert cook_partitioning_expression(catalog, relid, "(id + 1) * 3").type == "int4"
        assert cook_partitioning_expression(catalog, relid, "name || 'x'").type == "text"

    def test_own_table_qualifier(self, events):
        catalog, relid = events
        cooked = cook_partitioning_expression(catalog, relid, "events.id")
        assert string_to_node(cooked.cooked) == Var("id", "int4")

    def test_other_table_is_rejected(self, events):
        catalog, relid = events
        with pytest.raises(PartitionExpressionError, match="analyze error"):
            cook_partitioning_expression(catalog, relid, "orders.id")

    def test_unknown_column(self, events):
        catalog, relid = events
        with pytest.raises(PartitionExpressionError, match="analyze error"):
            cook_partitioning_expression(catalog, relid, "missing")

    def test_unknown_function(self, events):
        catalog, relid = events
        with pytest.raises(PartitionExpressionError, match="analyze error"):
            cook_partitioning_expression(catalog, relid, "foo(id)")

    def test_type_mismatch(self, events):
        catalog, relid = events
        with pytest.raises(PartitionExpressionError, match="analyze error"):
            cook_partitioning_expression(catalog, relid, "name + 1")

    def test_syntax_error(self, events):
        catalog, relid = events
        with pytest.raises(PartitionExpressionError, match="parse error"):
            cook_partitioning_expression(catalog, relid, "id +")
        with pytest.raises(PartitionExpressionError, match="parse error"):
            cook_partitioning_expression(catalog, relid, "id; drop table events")

    def test_mutable_function(self, events):
        catalog, relid = events
        with pytest.raises(ConfigurationError, match="IMMUTABLE"):
            cook_partitioning_expression(catalog, relid, "id + random()")

    def test_expression_without_columns(self, events):
        catalog, relid = events
        with pytest.raises(ConfigurationError, match="only one table"):
            cook_partitioning_expression(catalog, relid, "42")

    def test_missing_relation(self, events):
        catalog, _ = events
        with pytest.raises(ConfigurationError):
            cook_partitioning_expression(catalog, 999999, "id")


class TestSerialization:
    """Tests for serialized expression trees."""

    def test_round_trip_of_constants(self):
        node = BoolExpr(
            "AND",
            (
                OpExpr(">=", (Var("amount", "numeric"), Const(decimal.Decimal("1.25"), "numeric")), "bool"),
                OpExpr("<", (Var("day", "date"), Const(datetime.date(2024, 3, 1), "date")), "bool"),
            ),
        )
        assert string_to_node(node_to_string(node)) == node

    def test_corrupt_input(self):
        with pytest.raises(ConfigurationError):
            string_to_node("not a tree")
        with pytest.raises(ConfigurationError):
            string_to_node('{"node": "SUBLINK"}')

    def test_attnames_and_deparse(self):
        node = OpExpr("+", (Var("id", "int4"), Const(1, "int4")), "int4")
        assert expression_attnames(node) == frozenset({"id"})
        assert deparse(node) == "(id + 1)"


class TestRangeConstraints:
    """Tests for building and validating RANGE partition constraints."""

    expr = Var("id", "int4")

    def test_finite(self):
        prel = make_prel(PartType.RANGE, self.expr, "int4")
        constraint = build_range_condition(self.expr, 10, 20)
        assert validate_range_constraint(constraint, prel) == (Bound.finite(10), Bound.finite(20))

    def test_open_ends(self):
        prel = make_prel(PartType.RANGE, self.expr, "int4")
        assert validate_range_constraint(build_range_condition(self.expr, None, 20), prel) == (
            MINUS_INFINITY,
            Bound.finite(20),
        )
        assert validate_range_constraint(build_range_condition(self.expr, 10, None), prel) == (
            Bound.finite(10),
            PLUS_INFINITY,
        )
        assert validate_range_constraint(build_range_condition(self.expr, None, None), prel) == (
            MINUS_INFINITY,
            PLUS_INFINITY,
        )

    def test_survives_serialization(self):
        prel = make_prel(PartType.RANGE, self.expr, "int4")
        constraint = string_to_node(node_to_string(build_range_condition(self.expr, 10, 20)))
        assert validate_range_constraint(constraint, prel) == (Bound.finite(10), Bound.finite(20))

    def test_malformed(self):
        prel = make_prel(PartType.RANGE, self.expr, "int4")
        # empty range
        assert validate_range_constraint(build_range_condition(self.expr, 20, 10), prel) is None
        # another expression
        assert validate_range_constraint(build_range_condition(Var("x", "int4"), 10, 20), prel) is None
        # constants of the wrong type
        assert validate_range_constraint(build_range_condition(self.expr, "a", "b"), prel) is None
        # two lower bounds
        lower = OpExpr(">=", (self.expr, Const(1, "int4")), "bool")
        assert validate_range_constraint(BoolExpr("AND", (lower, lower)), prel) is None
        # not a comparison
        assert validate_range_constraint(build_null_condition(self.expr), prel) is None


class TestHashAndNullConstraints:
    """Tests for HASH and NULL partition constraints."""

    expr = Var("uid", "int8")

    def test_hash(self):
        prel = make_prel(PartType.HASH, self.expr, "int8")
        constraint = build_hash_condition(self.expr, "hashint8", 4, 2)
        assert validate_hash_constraint(constraint, prel) == (2, 4)
        assert validate_hash_constraint(string_to_node(node_to_string(constraint)), prel) == (2, 4)

    def test_hash_of_wrong_function(self):
        prel = make_prel(PartType.HASH, self.expr, "int8")
        assert validate_hash_constraint(build_hash_condition(self.expr, "hashtext", 4, 2), prel) is None

    def test_hash_index_out_of_range(self):
        with pytest.raises(ConfigurationError):
            build_hash_condition(self.expr, "hashint8", 4, 4)

    def test_null(self):
        prel = make_prel(PartType.HASH, self.expr, "int8")
        assert is_null_constraint(build_null_condition(self.expr), prel)
        assert not is_null_constraint(build_null_condition(Var("other", "int8")), prel)
        assert validate_hash_constraint(build_null_condition(self.expr), prel) is None

    def test_constraint_name(self):
        assert build_check_constraint_name("users_1") == "partprune_users_1_check"
