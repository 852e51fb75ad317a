"""
Range partition bounds.

A bound is either a finite value of the partitioning expression's type or one
of the two infinities. Bounds are ordered by the type's 3-way comparator under
a collation; -inf precedes and +inf follows every finite value.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

Comparator = Callable[[Any, Any, "str | None"], int]


class BoundKind(enum.IntEnum):
    MINUS_INFINITY = -1
    FINITE = 0
    PLUS_INFINITY = 1


@dataclass(frozen=True)
class Bound:
    """One endpoint of a RANGE partition."""

    kind: BoundKind
    value: Any = None

    def __post_init__(self) -> None:
        assert (self.kind == BoundKind.FINITE) == (self.value is not None), "finite bounds carry a value"

    @classmethod
    def finite(cls, value: Any) -> Bound:
        return cls(BoundKind.FINITE, value)

    @property
    def is_infinite(self) -> bool:
        return self.kind != BoundKind.FINITE

    @property
    def is_minus_infinity(self) -> bool:
        return self.kind == BoundKind.MINUS_INFINITY

    @property
    def is_plus_infinity(self) -> bool:
        return self.kind == BoundKind.PLUS_INFINITY

    def copy(self, byval: bool) -> Bound:
        """
        Copy the bound into storage that outlives the caller.

        Pass-by-value datums are immutable and shared; others are deep-copied.
        """
        if self.is_infinite or byval:
            return self
        return Bound(self.kind, copy.deepcopy(self.value))

    def __repr__(self) -> str:
        if self.is_minus_infinity:
            return "-inf"
        if self.is_plus_infinity:
            return "+inf"
        return repr(self.value)


MINUS_INFINITY = Bound(BoundKind.MINUS_INFINITY)
PLUS_INFINITY = Bound(BoundKind.PLUS_INFINITY)


def make_bound(value: Any) -> Bound:
    """Finite bound, or -inf when ``value`` is None (an open lower end)."""
    return MINUS_INFINITY if value is None else Bound.finite(value)


def make_upper_bound(value: Any) -> Bound:
    """Finite bound, or +inf when ``value`` is None (an open upper end)."""
    return PLUS_INFINITY if value is None else Bound.finite(value)


def cmp_bounds(cmp_func: Comparator, collation: str | None, b1: Bound, b2: Bound) -> int:
    """
    Compare two bounds.

    Parameters
    ----------
    cmp_func : callable
        3-way comparator ``(a, b, collation) -> int`` of the bound values' type.
    collation : str or None
        Collation passed through to ``cmp_func``.
    b1, b2 : Bound
        Bounds to compare.

    Returns
    -------
    int
        Negative, zero or positive as ``b1`` is less than, equal to or greater than ``b2``.
    """
    if b1.is_infinite or b2.is_infinite:
        return int(b1.kind) - int(b2.kind)
    return cmp_func(b1.value, b2.value, collation)


def cmp_bound_value(cmp_func: Comparator, collation: str | None, bound: Bound, value: Any) -> int:
    """Compare a bound against a plain (finite) value."""
    if bound.is_infinite:
        return int(bound.kind)
    return cmp_func(bound.value, value, collation)
