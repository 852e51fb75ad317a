"""
Relation cache: per partitioned table descriptors.

A :class:`PartRelationInfo` describes how a table is partitioned: its strategy,
partitioning expression, the children array (sorted by lower bound for RANGE,
one slot per bucket for HASH, with the optional NULL partition in the last
slot) and the bounds of its RANGE partitions. Entries are rebuilt lazily from
the catalog after invalidation.
"""

from __future__ import annotations

import enum
import functools
import logging
from collections.abc import Hashable
from dataclasses import dataclass

from .bound import Bound, cmp_bounds
from .bounds_cache import BoundCache
from .catalog import Catalog, ConfigRow, PartType
from .errors import INIT_ERROR_HINT, ConfigurationError, InvalidRelationError, WrongPartTypeError
from .expression import (
    PART_EXPR_VARNO,
    Node,
    cook_partitioning_expression,
    deparse,
    expr_type,
    expression_attnames,
    expression_varnos,
    string_to_node,
)
from .locks import LockGuard, LockManager, LockMode
from .parents import ParentCache
from .settings import PartPruneSettings, disable_pruning
from .typecache import TypeInfo, TypeRegistry

logger = logging.getLogger(__name__.split(".")[0])


class FindChildrenStatus(enum.Enum):
    FOUND = "children found and locked"
    NO_CHILDREN = "relation has no children"
    COULD_NOT_LOCK = "a child could not be locked"


@dataclass(frozen=True)
class RangeEntry:
    """A RANGE partition holding ``[min, max)``."""

    child: int
    min: Bound
    max: Bound


@dataclass(eq=False)
class PartRelationInfo:
    """
    Partitioning descriptor of a table.

    An invalid entry keeps only its relid: everything else is released when it is invalidated.
    """

    relid: int
    valid: bool = False
    parttype: PartType | None = None
    expr_text: str | None = None
    expr: Node | None = None
    expr_atts: frozenset = frozenset()
    type_info: TypeInfo | None = None
    ev_collation: str | None = None
    children: list[int] | None = None
    ranges: list[RangeEntry] | None = None
    has_null_partition: bool = False
    enable_parent: bool = False
    hash_partitions: int = 0

    def __repr__(self) -> str:
        if not self.valid:
            return f"PartRelationInfo({self.relid}, invalid)"
        return (
            f"PartRelationInfo({self.relid}, {self.parttype.name} by {deparse(self.expr)}, "
            f"{self.children_count} children)"
        )

    @property
    def ev_type(self) -> str:
        return self.type_info.name

    @property
    def ev_byval(self) -> bool:
        return self.type_info.byval

    @property
    def ev_len(self) -> int:
        return self.type_info.length

    @property
    def cmp_proc(self):
        return self.type_info.cmp_proc

    @property
    def hash_proc(self):
        return self.type_info.hash_proc

    @property
    def children_count(self) -> int:
        return len(self.children) if self.children is not None else 0

    @property
    def partitions_count(self) -> int:
        """Number of children slots, excluding the NULL partition."""
        return self.children_count - int(self.has_null_partition)

    @property
    def null_partition_index(self) -> int | None:
        return self.children_count - 1 if self.has_null_partition else None

    def release(self) -> None:
        """Drop everything but the relid and mark the entry invalid."""
        self.valid = False
        self.parttype = None
        self.expr_text = None
        self.expr = None
        self.expr_atts = frozenset()
        self.type_info = None
        self.ev_collation = None
        self.children = None
        self.ranges = None
        self.has_null_partition = False
        self.enable_parent = False
        self.hash_partitions = 0


def check_relation_info(relid: int, prel: PartRelationInfo | None, expected: PartType | None = None) -> None:
    """
    Raise unless ``prel`` is a valid descriptor of the expected strategy.

    :param relid: the relation ``prel`` was looked up for
    :param expected: required strategy; None accepts any
    """
    if prel is None:
        raise InvalidRelationError(f"relation {relid} has no partitions")
    if not prel.valid:
        raise InvalidRelationError(f"relation {relid} contains invalid partitioning cache entry")
    if expected is not None and prel.parttype != expected:
        raise InvalidRelationError(f"relation {relid} is not partitioned by {expected.name}")


class RelationCache:
    """
    Cache of :class:`PartRelationInfo` entries keyed by relid.

    :param owner: lock owner under which the cache takes its short-lived locks
    """

    def __init__(
        self,
        catalog: Catalog,
        locks: LockManager,
        types: TypeRegistry,
        bounds: BoundCache,
        parents: ParentCache,
        settings: PartPruneSettings,
        owner: Hashable,
    ) -> None:
        self._catalog = catalog
        self._locks = locks
        self._types = types
        self._bounds = bounds
        self._parents = parents
        self._settings = settings
        self._owner = owner
        self._entries: dict[int, PartRelationInfo] = {}

    def __contains__(self, relid: object) -> bool:
        return relid in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def known_relids(self) -> list[int]:
        return list(self._entries)

    def peek(self, relid: int) -> PartRelationInfo | None:
        """The entry of ``relid`` as is, without rebuilding it."""
        return self._entries.get(relid)

    def clear(self) -> None:
        self._entries.clear()

    def _broken(self, message: str) -> ConfigurationError:
        disable_pruning(self._settings)
        return ConfigurationError(message, INIT_ERROR_HINT)

    # --- lifecycle ---

    def get(self, relid: int, blocking: bool = True) -> PartRelationInfo | None:
        """
        Valid descriptor of a partitioned table, rebuilding it if needed.

        :param blocking: wait for locks; otherwise a contended rebuild returns None
        :return: the descriptor, or None if ``relid`` is not partitioned or could not be locked
        """
        prel = self._entries.get(relid)
        if prel is None or not prel.valid:
            row = self._config_row(relid)
            if row is not None:
                prel = self.refresh(relid, row, allow_incomplete=not blocking)
            else:
                self.remove(relid)
                prel = None

        logger.debug(f"fetching partitioning info of relation {relid}: {'found' if prel else 'not found'}")
        assert prel is None or prel.valid
        return prel

    def invalidate(self, relid: int) -> PartRelationInfo:
        """Release the entry of ``relid``, creating an invalid one if there is none."""
        prel = self._entries.get(relid)
        if prel is None:
            prel = self._entries[relid] = PartRelationInfo(relid)
        else:
            prel.release()
        logger.debug(f"invalidated partitioning info of relation {relid}")
        return prel

    def remove(self, relid: int) -> None:
        if self._entries.pop(relid, None) is not None:
            logger.debug(f"removed partitioning info of relation {relid}")

    def invalidate_if_partitioned(self, relid: int) -> bool:
        """
        Invalidate the entry of ``relid`` if it is partitioned, remove it otherwise.

        :return: True if ``relid`` is partitioned
        """
        if not self._catalog.is_partitioned(relid):
            self.remove(relid)
            return False
        self.invalidate(relid)
        return True

    def _config_row(self, relid: int) -> ConfigRow | None:
        """Configuration row of ``relid`` with its expression cooked."""
        row = self._catalog.config_row(relid)
        if row is None or row.cooked_expr is not None:
            return row
        try:
            cooked = cook_partitioning_expression(self._catalog, relid, row.expr, self._types)
        except ConfigurationError:
            disable_pruning(self._settings)
            raise
        self._catalog.update_cooked_expression(relid, cooked.cooked)
        return self._catalog.config_row(relid)

    # --- rebuild ---

    def refresh(self, relid: int, row: ConfigRow, allow_incomplete: bool = False) -> PartRelationInfo | None:
        """
        Rebuild the descriptor of ``relid`` from its configuration row.

        The parent and each child are locked in ACCESS SHARE mode while being read.

        :param allow_incomplete: give up instead of waiting for locks held by others
        :return: a valid descriptor; None if a lock was not available or the table has no children
        """
        prel = self.invalidate(relid)

        with LockGuard(self._locks, self._owner, LockMode.ACCESS_SHARE) as guard:
            if not guard.acquire(relid, blocking=not allow_incomplete):
                logger.debug(f"could not lock relation {relid}, its partitioning info stays invalid")
                return None

            if not self._catalog.relation_exists(relid):
                self.remove(relid)
                return None

            scratch = PartRelationInfo(relid)
            self._read_partitioning(scratch, row)

            status, children = self._find_children(relid, guard, nowait=allow_incomplete)
            if status is FindChildrenStatus.COULD_NOT_LOCK:
                logger.debug(f"could not lock partitions of relation {relid}")
                return None
            if status is FindChildrenStatus.NO_CHILDREN:
                self.remove(relid)
                return None
            guard.release(relid)

            self._fill_with_partitions(scratch, children, guard)

        params = self._catalog.read_params(relid)
        scratch.enable_parent = params.enable_parent if params else self._settings.enable_parent_default

        # publish the rebuilt descriptor
        for child in scratch.children:
            self._parents.cache_parent(child, relid)
        scratch.valid = True
        if self._entries.get(relid) is prel:
            self._entries[relid] = scratch
        logger.debug(f"rebuilt {scratch!r}")
        return scratch

    def _read_partitioning(self, prel: PartRelationInfo, row: ConfigRow) -> None:
        try:
            prel.parttype = PartType(row.parttype)
        except ValueError:
            prel.parttype = None
        if prel.parttype not in (PartType.HASH, PartType.RANGE):
            disable_pruning(self._settings)
            raise WrongPartTypeError(f"unknown partitioning type {row.parttype} of relation {row.partrel}")

        try:
            expr = string_to_node(row.cooked_expr)
        except ConfigurationError as err:
            raise self._broken(f"partitioning expression of relation {row.partrel} is corrupt") from err
        if expression_varnos(expr) != {PART_EXPR_VARNO}:
            raise self._broken("partitioning expression may reference only one table")

        prel.expr_text = row.expr
        prel.expr = expr
        prel.expr_atts = expression_attnames(expr)
        try:
            prel.type_info = self._types.lookup(expr_type(expr))
        except ConfigurationError:
            disable_pruning(self._settings)
            raise
        prel.ev_collation = prel.type_info.collation

    def _find_children(
        self, parent: int, guard: LockGuard, nowait: bool
    ) -> tuple[FindChildrenStatus, list[int]]:
        """Lock all direct children of ``parent``, skipping those dropped in the meantime."""
        children = []
        for child in self._catalog.inheritance_children(parent):
            if not guard.acquire(child, blocking=not nowait):
                return FindChildrenStatus.COULD_NOT_LOCK, []
            if not self._catalog.relation_exists(child):
                guard.release(child)
                continue
            children.append(child)
        if not children:
            return FindChildrenStatus.NO_CHILDREN, []
        return FindChildrenStatus.FOUND, children

    def _fill_with_partitions(self, prel: PartRelationInfo, partitions: list[int], guard: LockGuard) -> None:
        """Fill the children array and RANGE bounds of ``prel``, releasing each child's lock once read."""
        null_child = None
        ranges = []
        buckets: dict[int, int] = {}
        hash_partitions = None

        for partition in partitions:
            pbin = self._bounds.get(partition, prel)
            if pbin.parttype == PartType.NULL:
                if null_child is not None:
                    raise self._broken(f"relation {prel.relid} has more than one NULL partition")
                null_child = partition
            elif pbin.parttype == PartType.HASH:
                if hash_partitions is None:
                    hash_partitions = pbin.part_count
                elif pbin.part_count != hash_partitions:
                    raise self._broken(f"HASH partitions of relation {prel.relid} disagree on their number")
                if pbin.part_idx in buckets:
                    raise self._broken(f"relation {prel.relid} has two HASH partitions with index {pbin.part_idx}")
                buckets[pbin.part_idx] = partition
            else:
                ranges.append(
                    RangeEntry(partition, pbin.range_min.copy(prel.ev_byval), pbin.range_max.copy(prel.ev_byval))
                )
            guard.release(partition)

        if prel.parttype == PartType.RANGE:
            ranges.sort(key=functools.cmp_to_key(self._range_comparator(prel)))
            for prev, cur in zip(ranges, ranges[1:]):
                if cmp_bounds(prel.cmp_proc, prel.ev_collation, prev.max, cur.min) > 0:
                    raise self._broken(f"partitions {prev.child} and {cur.child} of relation {prel.relid} overlap")
            children = [r.child for r in ranges]
            prel.ranges = ranges
        else:
            hash_partitions = hash_partitions or 0
            if sorted(buckets) != list(range(hash_partitions)):
                raise self._broken(f"HASH partitions of relation {prel.relid} do not cover all buckets")
            children = [buckets[i] for i in range(hash_partitions)]
            prel.hash_partitions = hash_partitions

        if null_child is not None:
            children.append(null_child)
        prel.children = children
        prel.has_null_partition = null_child is not None

    @staticmethod
    def _range_comparator(prel: PartRelationInfo):
        def compare(a: RangeEntry, b: RangeEntry) -> int:
            return cmp_bounds(prel.cmp_proc, prel.ev_collation, a.min, b.min)

        return compare
