"""
Index ranges over a partitioned table's children array.

An :class:`IndexRange` is a closed interval ``[lower, upper]`` of children
slots tagged *exact* or *lossy*. A lossy range is an over-approximation: rows
of those partitions must be rechecked against the predicate.

Range lists passed to and returned by :func:`union_lists` and
:func:`intersect_lists` are sorted by lower bound and *coalesced*: no two
elements intersect, and no two adjoining elements share the same lossiness.

Union and intersection deliberately treat lossiness asymmetrically: a union is
lossy only where every contributing piece is lossy (``lossy = a and b``), an
intersection is lossy where either side is lossy (``lossy = a or b``).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Sequence
from typing import NamedTuple

LOSSY = True
EXACT = False


class IndexRange(NamedTuple):
    """Closed interval of children slots with a lossiness flag."""

    lower: int
    upper: int
    lossy: bool = EXACT

    def __repr__(self) -> str:
        return "{%d..%d, %s}" % (self.lower, self.upper, "lossy" if self.lossy else "exact")


class Lossiness(enum.Enum):
    EQUAL = 0
    A_LOSSY = 1
    B_LOSSY = 2


def make_range(lower: int, upper: int, lossy: bool = EXACT) -> IndexRange:
    assert 0 <= lower <= upper, f"invalid index range [{lower}, {upper}]"
    return IndexRange(lower, upper, bool(lossy))


def full_list(count: int, lossy: bool = EXACT) -> list[IndexRange]:
    """Range list covering slots ``0 .. count-1``; empty for a table without children."""
    return [make_range(0, count - 1, lossy)] if count > 0 else []


# --- single range predicates ---


def ranges_intersect(a: IndexRange, b: IndexRange) -> bool:
    return a.lower <= b.upper and b.lower <= a.upper


def ranges_adjoin(a: IndexRange, b: IndexRange) -> bool:
    """True if one range ends right before the other begins."""
    return a.upper + 1 == b.lower or b.upper + 1 == a.lower


def equal_bounds(a: IndexRange, b: IndexRange) -> bool:
    return a.lower == b.lower and a.upper == b.upper


def compare_lossiness(a: IndexRange, b: IndexRange) -> Lossiness:
    if a.lossy == b.lossy:
        return Lossiness.EQUAL
    return Lossiness.A_LOSSY if a.lossy else Lossiness.B_LOSSY


# --- simple set operations on connected ranges ---


def union_simple(a: IndexRange, b: IndexRange) -> IndexRange:
    """Union of two connected ranges; lossy only if both are lossy."""
    assert ranges_intersect(a, b) or ranges_adjoin(a, b), f"{a} and {b} are disconnected"
    return IndexRange(min(a.lower, b.lower), max(a.upper, b.upper), a.lossy and b.lossy)


def intersection_simple(a: IndexRange, b: IndexRange) -> IndexRange:
    """Intersection of two connected ranges; lossy if either one is lossy."""
    assert ranges_intersect(a, b) or ranges_adjoin(a, b), f"{a} and {b} are disconnected"
    return IndexRange(max(a.lower, b.lower), min(a.upper, b.upper), a.lossy or b.lossy)


# --- merging of differently lossy ranges ---


def _resolve_cover(covering: IndexRange, inner: IndexRange, sink: list[IndexRange]) -> IndexRange:
    """
    Merge ``inner`` into ``covering``, which spans it, when their lossiness differs.

    Returns the rightmost piece; finished pieces to its left are appended to ``sink``.
    """
    assert covering.lossy != inner.lossy

    # an exact range absorbs the lossy one it covers
    if not covering.lossy:
        return covering

    # the covering range is lossy: split it around the exact inner range
    if inner.lower > covering.lower:
        sink.append(IndexRange(covering.lower, inner.lower - 1, LOSSY))

    if covering.upper > inner.upper:
        sink.append(inner)
        return IndexRange(inner.upper + 1, covering.upper, LOSSY)
    return inner


def resolve_pair(first: IndexRange, second: IndexRange, sink: list[IndexRange]) -> IndexRange:
    """
    Unite two ranges of possibly different lossiness.

    Parameters
    ----------
    first, second : IndexRange
        Ranges to unite, in any order.
    sink : list of IndexRange
        Receives the finished pieces, in ascending order, that lie before the returned range.

    Returns
    -------
    IndexRange
        The pending (rightmost) piece, which may still be united with further ranges.
    """
    if first.lower > second.lower:
        first, second = second, first

    if not ranges_intersect(first, second):
        if compare_lossiness(first, second) == Lossiness.EQUAL and ranges_adjoin(first, second):
            return union_simple(first, second)
        sink.append(first)
        return second

    united = union_simple(first, second)

    if first.lossy == second.lossy:
        return united

    if equal_bounds(united, first):
        return _resolve_cover(first, second, sink)
    if equal_bounds(united, second):
        return _resolve_cover(second, first, sink)

    # partial overlap: the exact range eats into the lossy one
    if not first.lossy:
        sink.append(first)
        return IndexRange(first.upper + 1, second.upper, second.lossy)

    sink.append(IndexRange(first.lower, second.lower - 1, first.lossy))
    return second


# --- range lists ---


def _push(result: list[IndexRange], irange: IndexRange) -> None:
    """Append a range that lies after all of ``result``, gluing it to an adjoining equally lossy last range."""
    if result and ranges_adjoin(result[-1], irange) and result[-1].lossy == irange.lossy:
        result[-1] = union_simple(result[-1], irange)
    else:
        result.append(irange)


def _merge_by_lower(a: Sequence[IndexRange], b: Sequence[IndexRange]) -> Iterator[IndexRange]:
    ia, ib = 0, 0
    while ia < len(a) or ib < len(b):
        if ib >= len(b) or (ia < len(a) and a[ia].lower <= b[ib].lower):
            yield a[ia]
            ia += 1
        else:
            yield b[ib]
            ib += 1


def union_lists(a: Sequence[IndexRange], b: Sequence[IndexRange]) -> list[IndexRange]:
    """
    Union of two coalesced range lists.

    A slot of the result is exact if it is covered by at least one exact range of the inputs.
    """
    result: list[IndexRange] = []
    pieces: list[IndexRange] = []
    pending = None
    for irange in _merge_by_lower(a, b):
        if pending is None:
            pending = irange
            continue
        pending = resolve_pair(pending, irange, pieces)
        for piece in pieces:
            _push(result, piece)
        pieces.clear()
    if pending is not None:
        _push(result, pending)
    return result


def intersect_lists(a: Sequence[IndexRange], b: Sequence[IndexRange]) -> list[IndexRange]:
    """
    Intersection of two coalesced range lists.

    A slot of the result is lossy if it is lossy in either input.
    """
    result: list[IndexRange] = []
    ia, ib = 0, 0
    while ia < len(a) and ib < len(b):
        ra, rb = a[ia], b[ib]

        if ranges_intersect(ra, rb):
            _push(result, intersection_simple(ra, rb))

        # nothing after the smaller upper bound can intersect the current range of the other list
        if ra.upper <= rb.upper:
            ia += 1
        if ra.upper >= rb.upper:
            ib += 1
    return result


def list_length(rangeset: Iterable[IndexRange]) -> int:
    """Total number of slots covered by a range list."""
    total = 0
    for irange in rangeset:
        assert irange.upper >= irange.lower
        total += irange.upper - irange.lower + 1
    return total


def list_find(rangeset: Iterable[IndexRange], index: int) -> tuple[bool, bool]:
    """
    Look up a slot in a range list.

    Returns
    -------
    tuple
        ``(found, lossy)``; ``lossy`` is False when the slot is not found.
    """
    for irange in rangeset:
        if irange.lower <= index <= irange.upper:
            return True, irange.lossy
    return False, False


def expand(rangeset: Iterable[IndexRange]) -> Iterator[tuple[int, bool]]:
    """Yield ``(index, lossy)`` for every slot covered by a range list."""
    for irange in rangeset:
        for index in range(irange.lower, irange.upper + 1):
            yield index, irange.lossy


def is_coalesced(rangeset: Sequence[IndexRange]) -> bool:
    """True if the list is sorted, valid, and no neighbors could be merged."""
    for irange in rangeset:
        if not 0 <= irange.lower <= irange.upper:
            return False
    for prev, cur in zip(rangeset, rangeset[1:]):
        if prev.upper >= cur.lower:
            return False
        if ranges_adjoin(prev, cur) and prev.lossy == cur.lossy:
            return False
    return True
