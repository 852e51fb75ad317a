"""
Per-partition bound cache.

Maps a partition to the bounds parsed from its check constraint. The cache is
optional: with ``enable_bounds_cache`` off every lookup recomputes the bounds
and nothing is stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .bound import Bound
from .catalog import Catalog, PartType
from .constraints import (
    build_check_constraint_name,
    is_null_constraint,
    validate_hash_constraint,
    validate_range_constraint,
)
from .errors import INIT_ERROR_HINT, ConfigurationError, WrongPartTypeError
from .expression import Node, string_to_node
from .settings import PartPruneSettings, disable_pruning

if TYPE_CHECKING:
    from .relation_info import PartRelationInfo

logger = logging.getLogger(__name__.split(".")[0])


@dataclass(frozen=True)
class PartBoundInfo:
    """
    Bounds of one partition.

    RANGE entries carry ``range_min``/``range_max``; HASH entries carry ``part_idx`` and the
    number of HASH partitions the constraint was built for; NULL entries carry neither.
    """

    child: int
    parttype: PartType
    range_min: Bound | None = None
    range_max: Bound | None = None
    part_idx: int | None = None
    part_count: int | None = None


class BoundCache:
    def __init__(self, catalog: Catalog, settings: PartPruneSettings) -> None:
        self._catalog = catalog
        self._settings = settings
        self._entries: dict[int, PartBoundInfo] = {}

    @property
    def enabled(self) -> bool:
        return self._settings.enable_bounds_cache

    def __contains__(self, partition: object) -> bool:
        return partition in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def forget(self, partition: int) -> None:
        """Drop the cached bounds of a partition, if any."""
        if self._entries.pop(partition, None) is not None:
            logger.debug(f"forgot bounds of partition {partition}")

    def get(self, partition: int, prel: PartRelationInfo) -> PartBoundInfo:
        """
        Bounds of a partition of ``prel``.

        Raises
        ------
        ConfigurationError
            If the partition's constraint is missing or malformed; pruning is disabled first.
        """
        pbin = self._entries.get(partition) if self.enabled else None
        if pbin is not None and pbin.parttype in (PartType.NULL, prel.parttype):
            return pbin

        constraint = self.get_partition_constraint(partition)
        pbin = self._fill_bounds(partition, constraint, prel)
        if self.enabled:
            self._entries[partition] = pbin
        return pbin

    def _broken(self, message: str) -> ConfigurationError:
        disable_pruning(self._settings)
        return ConfigurationError(message, INIT_ERROR_HINT)

    def get_partition_constraint(self, partition: int) -> Node:
        """Read and parse the check constraint of a partition."""
        relname = self._catalog.relation_name(partition)
        name = build_check_constraint_name(relname)
        constraint = self._catalog.constraint(partition, name)
        if constraint is None:
            raise self._broken(f'constraint "{name}" of partition "{relname}" does not exist')
        if constraint.conbin is None:
            logger.warning(f'constraint "{name}" of partition "{relname}" has NULL conbin')
            raise self._broken(f'constraint "{name}" of partition "{relname}" could not be read')
        try:
            return string_to_node(constraint.conbin)
        except ConfigurationError:
            raise self._broken(f'constraint "{name}" of partition "{relname}" could not be read') from None

    def _fill_bounds(self, partition: int, constraint: Node, prel: PartRelationInfo) -> PartBoundInfo:
        relname = self._catalog.relation_name(partition)

        if is_null_constraint(constraint, prel):
            return PartBoundInfo(partition, PartType.NULL)

        if prel.parttype == PartType.HASH:
            hash_bucket = validate_hash_constraint(constraint, prel)
            if hash_bucket is None:
                raise self._broken(f'wrong constraint format for HASH partition "{relname}"')
            index, count = hash_bucket
            return PartBoundInfo(partition, PartType.HASH, part_idx=index, part_count=count)

        if prel.parttype == PartType.RANGE:
            bounds = validate_range_constraint(constraint, prel)
            if bounds is None:
                raise self._broken(f'wrong constraint format for RANGE partition "{relname}"')
            lower, upper = bounds
            return PartBoundInfo(
                partition,
                PartType.RANGE,
                range_min=lower.copy(prel.ev_byval),
                range_max=upper.copy(prel.ev_byval),
            )

        disable_pruning(self._settings)
        raise WrongPartTypeError(f"unknown partitioning type {prel.parttype}", INIT_ERROR_HINT)
