"""
Selection of the partitions a query has to scan.

Restriction clauses on the partitioning expression are mapped to range lists
over the children array of a partitioned table:

* ``Comparison(op, value)`` compares the partitioning expression with a constant
* ``IsNull()`` / ``IsNotNull()`` test the partitioning expression for NULL
* an ``AndList`` is a conjunction, any other list or tuple a disjunction
* anything else is opaque and may hold for rows of every partition

Slots of the result are exact when every row of that partition satisfies the
clauses and lossy when the rows still need to be filtered.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from . import rangeset
from .bound import cmp_bound_value
from .catalog import PartType
from .rangeset import EXACT, LOSSY, IndexRange
from .relation_info import PartRelationInfo
from .typecache import get_hash_part_idx

OPERATORS = ("<", "<=", "=", ">=", ">")


class AndList(list):
    """
    A list of restriction clauses that must all hold.

    A plain list or tuple of clauses is a disjunction.
    """

    def append(self, restriction: Any) -> None:
        if isinstance(restriction, AndList):
            # extend to reduce nesting
            self.extend(restriction)
        else:
            super().append(restriction)


@dataclass(frozen=True)
class Comparison:
    """``<partitioning expression> <op> <value>``"""

    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"unsupported comparison operator {self.op!r}")


@dataclass(frozen=True)
class IsNull:
    """``<partitioning expression> IS NULL``"""


@dataclass(frozen=True)
class IsNotNull:
    """``<partitioning expression> IS NOT NULL``"""


@dataclass(frozen=True)
class SelectedPartition:
    relid: int
    lossy: bool


def _span(lower: int, upper: int, lossy: bool) -> list[IndexRange]:
    return [rangeset.make_range(lower, upper, lossy)] if lower <= upper else []


def select_range_partitions(prel: PartRelationInfo, op: str, value: Any) -> list[IndexRange]:
    """
    Slots of a RANGE partitioned table that may hold rows with ``expr <op> value``.

    Partitions hold ``[min, max)``, are sorted by ``min`` and do not overlap, so a binary
    search finds the partition containing ``value`` or the gap it falls into.
    """
    ranges = prel.ranges
    count = len(ranges)

    # number of partitions whose lower bound is at most value
    found, hi = 0, count
    while found < hi:
        mid = (found + hi) // 2
        if cmp_bound_value(prel.cmp_proc, prel.ev_collation, ranges[mid].min, value) <= 0:
            found = mid + 1
        else:
            hi = mid

    if found and cmp_bound_value(prel.cmp_proc, prel.ev_collation, ranges[found - 1].max, value) > 0:
        # value lies in partition i
        i = found - 1
        at_min = cmp_bound_value(prel.cmp_proc, prel.ev_collation, ranges[i].min, value) == 0
        if op == "=":
            return _span(i, i, LOSSY)
        if op == "<":
            if at_min:
                return _span(0, i - 1, EXACT)
            return _span(0, i - 1, EXACT) + _span(i, i, LOSSY)
        if op == "<=":
            return _span(0, i - 1, EXACT) + _span(i, i, LOSSY)
        if op == ">=" and at_min:
            return _span(i, count - 1, EXACT)
        return _span(i, i, LOSSY) + _span(i + 1, count - 1, EXACT)

    # value lies before partition ``found``, after all partitions before it
    if op == "=":
        return []
    if op in ("<", "<="):
        return _span(0, found - 1, EXACT)
    return _span(found, count - 1, EXACT)


def select_hash_partitions(prel: PartRelationInfo, op: str, value: Any) -> list[IndexRange]:
    """Slots of a HASH partitioned table that may hold rows with ``expr <op> value``."""
    count = prel.partitions_count
    if op != "=" or count == 0:
        return rangeset.full_list(count, LOSSY)
    idx = get_hash_part_idx(prel.hash_proc(value), count)
    return _span(idx, idx, LOSSY)


def walk_clause(prel: PartRelationInfo, clause: Any) -> list[IndexRange]:
    """Range list of the slots of ``prel`` that may hold rows satisfying ``clause``."""
    partitions = prel.partitions_count

    if isinstance(clause, AndList):
        return walk_clauses(prel, clause)

    if isinstance(clause, (list, tuple)):
        result: list[IndexRange] = []
        for arg in clause:
            result = rangeset.union_lists(result, walk_clause(prel, arg))
        return result

    if isinstance(clause, Comparison):
        if clause.value is None:
            # comparisons with NULL are never true
            return []
        if not prel.type_info.accepts(clause.value):
            return rangeset.full_list(partitions, LOSSY)
        if prel.parttype == PartType.RANGE:
            return select_range_partitions(prel, clause.op, clause.value)
        return select_hash_partitions(prel, clause.op, clause.value)

    if isinstance(clause, IsNull):
        if prel.has_null_partition:
            return _span(prel.null_partition_index, prel.null_partition_index, EXACT)
        return []

    if isinstance(clause, IsNotNull):
        return rangeset.full_list(partitions, EXACT)

    return rangeset.full_list(prel.children_count, LOSSY)


def walk_clauses(prel: PartRelationInfo, clauses: Any) -> list[IndexRange]:
    """Range list of the slots of ``prel`` that may hold rows satisfying all ``clauses``."""
    result = rangeset.full_list(prel.children_count, EXACT)
    for clause in clauses:
        result = rangeset.intersect_lists(result, walk_clause(prel, clause))
    return result


def select_partitions(prel: PartRelationInfo, ranges: list[IndexRange]) -> list[SelectedPartition]:
    """
    Relations to scan for a range list over ``prel``'s children.

    The parent itself comes first when its own rows are enabled; they are unconstrained, hence lossy.
    """
    selected = [SelectedPartition(prel.relid, LOSSY)] if prel.enable_parent else []
    selected.extend(SelectedPartition(prel.children[index], lossy) for index, lossy in rangeset.expand(ranges))
    return selected
