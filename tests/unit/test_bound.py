"""Unit tests for bound.py and typecache.py."""

import datetime
import decimal

import pytest
from partprune.bound import (
    MINUS_INFINITY,
    PLUS_INFINITY,
    Bound,
    cmp_bound_value,
    cmp_bounds,
    make_bound,
    make_upper_bound,
)
from partprune.errors import ConfigurationError
from partprune.typecache import TypeInfo, TypeRegistry, cmp_natural, cmp_text, get_hash_part_idx, hash_int


class TestBounds:
    """Tests for ordering and copying of range bounds."""

    def test_infinities_order(self):
        five = Bound.finite(5)
        assert cmp_bounds(cmp_natural, None, MINUS_INFINITY, five) < 0
        assert cmp_bounds(cmp_natural, None, five, PLUS_INFINITY) < 0
        assert cmp_bounds(cmp_natural, None, MINUS_INFINITY, PLUS_INFINITY) < 0
        assert cmp_bounds(cmp_natural, None, PLUS_INFINITY, PLUS_INFINITY) == 0

    def test_finite_order(self):
        assert cmp_bounds(cmp_natural, None, Bound.finite(3), Bound.finite(7)) < 0
        assert cmp_bounds(cmp_natural, None, Bound.finite(7), Bound.finite(7)) == 0

    def test_bound_against_value(self):
        assert cmp_bound_value(cmp_natural, None, MINUS_INFINITY, 10**9) < 0
        assert cmp_bound_value(cmp_natural, None, PLUS_INFINITY, -(10**9)) > 0
        assert cmp_bound_value(cmp_natural, None, Bound.finite(4), 4) == 0

    def test_open_ends(self):
        assert make_bound(None) is MINUS_INFINITY
        assert make_upper_bound(None) is PLUS_INFINITY
        assert make_bound(1) == Bound.finite(1)

    def test_finite_bound_needs_value(self):
        with pytest.raises(AssertionError):
            Bound.finite(None)

    def test_copy(self):
        """Values passed by reference are deep-copied, others are shared."""
        value = decimal.Decimal("1.5")
        assert Bound.finite(value).copy(byval=True).value is value
        copied = Bound.finite(["a"]).copy(byval=False)
        assert copied.value == ["a"]
        original = Bound.finite(["a"])
        assert original.copy(byval=False).value is not original.value
        assert MINUS_INFINITY.copy(byval=False) is MINUS_INFINITY

    def test_repr(self):
        assert repr(MINUS_INFINITY) == "-inf"
        assert repr(PLUS_INFINITY) == "+inf"
        assert repr(Bound.finite(3)) == "3"


class TestTypeRegistry:
    """Tests for type lookup, comparators and hash functions."""

    def test_builtin_lookup(self):
        types = TypeRegistry()
        int4 = types.lookup("int4")
        assert int4.byval and int4.length == 4
        text = types.lookup("text")
        assert not text.byval and text.length == -1 and text.collation == "default"

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="cache lookup failed for type point"):
            TypeRegistry().lookup("point")

    def test_register(self):
        types = TypeRegistry()
        types.register(TypeInfo("money", int, cmp_natural, "hashmoney", hash_int, True, 8))
        assert "money" in types
        assert types.lookup("money").hash_proc is hash_int

    def test_register_unknown_collation(self):
        with pytest.raises(ConfigurationError):
            TypeRegistry().register(TypeInfo("citext", str, cmp_text, "hashtext", hash_int, False, -1, "de_DE"))

    def test_accepts(self):
        types = TypeRegistry()
        assert types.lookup("int4").accepts(5)
        assert not types.lookup("int4").accepts(True)
        assert not types.lookup("int4").accepts("5")
        assert types.lookup("numeric").accepts(decimal.Decimal("2.5"))
        assert types.lookup("date").accepts(datetime.date(2024, 1, 1))

    def test_text_collations(self):
        assert cmp_text("B", "a", "C") < 0
        assert cmp_text("B", "a", "case_insensitive") > 0
        assert cmp_text("a", "A", "case_insensitive") != 0
        with pytest.raises(ConfigurationError):
            cmp_text("a", "b", "klingon")

    def test_hash_is_stable(self):
        types = TypeRegistry()
        assert types.lookup("int8").hash_proc(42) == types.lookup("int8").hash_proc(42)
        assert types.lookup("numeric").hash_proc(decimal.Decimal("1.50")) == types.lookup("numeric").hash_proc(
            decimal.Decimal("1.5")
        )

    def test_hash_part_idx(self):
        assert get_hash_part_idx(10, 4) == 2
        for value in range(100):
            assert 0 <= get_hash_part_idx(hash_int(value), 7) < 7
