"""
Partition-to-parent cache.

Maps every partition seen by the relation cache to its partitioned parent.
Misses fall back to a catalog search, which is only possible inside a
transaction; outside one the answer is ``ParentSearch.NOT_SURE``.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .catalog import Catalog

logger = logging.getLogger(__name__.split(".")[0])


class ParentSearch(enum.Enum):
    PART_PARENT = "relation is a partition and has a parent"
    PARENT = "relation is a partitioned table"
    NOT_FOUND = "relation is neither a partition nor a partitioned table"
    NOT_SURE = "relation could not be looked up"


@dataclass(frozen=True)
class PartParentInfo:
    child: int
    parent: int


class ParentCache:
    """
    :param catalog: catalog searched on cache misses
    :param in_transaction: callable telling whether a catalog search is possible now
    """

    def __init__(self, catalog: Catalog, in_transaction: Callable[[], bool]) -> None:
        self._catalog = catalog
        self._in_transaction = in_transaction
        self._entries: dict[int, PartParentInfo] = {}

    def __contains__(self, child: object) -> bool:
        return child in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def cache_parent(self, child: int, parent: int) -> None:
        self._entries[child] = PartParentInfo(child, parent)

    def get_parent(self, child: int) -> tuple[int | None, ParentSearch]:
        """
        Find the partitioned parent of a relation.

        Returns
        -------
        tuple
            ``(parent, status)``; ``parent`` is set only for ``ParentSearch.PART_PARENT``.
        """
        return self._lookup(child, forget=False)

    def forget_parent(self, child: int) -> tuple[int | None, ParentSearch]:
        """Same as :meth:`get_parent`, also removing the cached entry of ``child``."""
        return self._lookup(child, forget=True)

    def _lookup(self, child: int, forget: bool) -> tuple[int | None, ParentSearch]:
        ppar = self._entries.pop(child, None) if forget else self._entries.get(child)
        if ppar is not None:
            return ppar.parent, ParentSearch.PART_PARENT
        return self._catalog_search(child)

    def _catalog_search(self, child: int) -> tuple[int | None, ParentSearch]:
        if not self._in_transaction():
            return None, ParentSearch.NOT_SURE
        parent = self._catalog.inheritance_parent(child)
        if parent is not None and self._catalog.is_partitioned(parent):
            return parent, ParentSearch.PART_PARENT
        if self._catalog.is_partitioned(child):
            return None, ParentSearch.PARENT
        return None, ParentSearch.NOT_FOUND
