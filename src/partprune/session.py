"""
Sessions: the per-backend owners of the partition caches.

A Session bundles the relation, bound and parent caches of one backend, its
deferred invalidation queue, and its transaction state. Sessions sharing a
:class:`~partprune.catalog.Catalog` and a :class:`~partprune.locks.LockManager`
behave like concurrent backends of one database.
"""

from __future__ import annotations

import itertools
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from .bounds_cache import BoundCache
from .catalog import Catalog, PartType
from .errors import PartPruneError
from .invalidation import DelayedInvalidation
from .locks import LockManager, LockMode
from .parents import ParentCache, ParentSearch
from .pruning import SelectedPartition, select_partitions, walk_clauses
from .relation_info import PartRelationInfo, RelationCache, check_relation_info
from .settings import PartPruneSettings
from .settings import config as default_config
from .typecache import TypeRegistry

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__.split(".")[0])

_session_ids = itertools.count(1)


class Session:
    """
    One backend's view of the partitioned tables.

    Args:
        catalog: Shared catalog; the session subscribes to its change notifications.
        locks: Shared lock table. A private one is created if omitted.
        types: Type lookup for partitioning expressions.
        settings: Settings object; defaults to the global ``partprune.config``.
    """

    def __init__(
        self,
        catalog: Catalog,
        locks: LockManager | None = None,
        types: TypeRegistry | None = None,
        settings: PartPruneSettings | None = None,
    ) -> None:
        self.session_id = next(_session_ids)
        self.catalog = catalog
        self.locks = locks if locks is not None else LockManager()
        self.types = types if types is not None else TypeRegistry()
        self.config = settings if settings is not None else default_config
        self.bounds = BoundCache(catalog, self.config)
        self.parents = ParentCache(catalog, lambda: self.in_transaction)
        self.relations = RelationCache(
            catalog, self.locks, self.types, self.bounds, self.parents, self.config, owner=self.session_id
        )
        self.invalidation = DelayedInvalidation()
        self.config_relid: int | None = None
        self._in_transaction = False
        self._xact_locks: list[tuple[int, LockMode]] = []
        self.load_config()
        catalog.subscribe(self.on_relation_changed)

    def __repr__(self) -> str:
        return f"Session({self.session_id}, {'ready' if self.is_ready else 'not ready'})"

    def close(self) -> None:
        """Unsubscribe from the catalog and release every lock of the session."""
        self.catalog.unsubscribe(self.on_relation_changed)
        self.locks.release_all(self.session_id)
        self._xact_locks.clear()
        self._in_transaction = False
        self.unload_config()

    # ---------- configuration
    @property
    def is_ready(self) -> bool:
        """True if the partitioning configuration has been loaded."""
        return self.config_relid is not None

    def load_config(self) -> bool:
        """
        Look up the partitioning configuration table.

        Returns:
            True if the table exists and the session is ready for partition pruning.
        """
        self.config_relid = self.catalog.config_relation_id()
        if self.config_relid is None:
            logger.debug(f"session {self.session_id}: partitioning configuration table does not exist")
            return False
        logger.debug(f"session {self.session_id}: loaded partitioning configuration")
        return True

    def unload_config(self) -> None:
        """Forget the configuration table and drop all cached partitioning data."""
        self.relations.clear()
        self.bounds.clear()
        self.parents.clear()
        self.invalidation.clear()
        self.config_relid = None
        logger.debug(f"session {self.session_id}: unloaded partitioning configuration")

    # ---------- invalidation
    def on_relation_changed(self, relid: int | None) -> None:
        """
        Record a relation change for processing at the next transaction start.

        Args:
            relid: The changed relation, or None if any relation may have changed.
        """
        if not self.is_ready:
            return

        if relid is None:
            self.bounds.clear()
            for parent in self.relations.known_relids():
                self.invalidation.delay_parent(parent)
            return

        if relid == self.config_relid:
            self.invalidation.delay_shutdown()

        self.bounds.forget(relid)

        parent, search = self.parents.forget_parent(relid)
        if search is ParentSearch.PART_PARENT:
            self.invalidation.delay_parent(parent)
        elif search in (ParentSearch.PARENT, ParentSearch.NOT_FOUND):
            # the relation may be (or have just become) a partitioned table
            self.invalidation.delay_parent(relid)
        else:
            self.invalidation.delay_vague(relid)

    def flush_deferred(self) -> None:
        """Process pending invalidations; they stay queued outside a transaction or with pruning disabled."""
        if self.in_transaction and self.is_ready and self.config.enable:
            self.invalidation.finish(self)

    # ---------- transaction processing
    @property
    def in_transaction(self) -> bool:
        """Return True if there is an open transaction."""
        return self._in_transaction

    def start_transaction(self) -> None:
        """
        Start a new transaction and process pending invalidations.

        Raises:
            PartPruneError: If already in a transaction (nesting not supported).
        """
        if self.in_transaction:
            raise PartPruneError("Nested transactions are not supported.")
        self._in_transaction = True
        logger.debug(f"session {self.session_id}: transaction started")
        if not self.is_ready:
            self.load_config()
        self.flush_deferred()

    def cancel_transaction(self) -> None:
        """Roll back the current transaction, releasing its locks."""
        self._end_transaction()
        logger.debug(f"session {self.session_id}: transaction cancelled")

    def commit_transaction(self) -> None:
        """Commit the current transaction, releasing its locks."""
        self._end_transaction()
        logger.debug(f"session {self.session_id}: transaction committed")

    def _end_transaction(self) -> None:
        while self._xact_locks:
            relid, mode = self._xact_locks.pop()
            self.locks.release(relid, mode, self.session_id)
        self._in_transaction = False

    @property
    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Context manager for transactions.

        Example:
            >>> with session.transaction:
            ...     session.prune(relid, [Comparison("<", 100)])
        """
        try:
            self.start_transaction()
            yield self
        except BaseException:
            self.cancel_transaction()
            raise
        else:
            self.commit_transaction()

    def lock_relation(self, relid: int, mode: LockMode, blocking: bool = True) -> bool:
        """
        Take a lock held until the end of the current transaction.

        Returns:
            True if the lock was taken.
        """
        if not self.in_transaction:
            raise PartPruneError("Relation locks can only be taken inside a transaction.")
        if not self.locks.acquire(relid, mode, self.session_id, blocking=blocking):
            return False
        self._xact_locks.append((relid, mode))
        return True

    # ---------- partitioning info
    def relation_info(self, relid: int, blocking: bool = True) -> PartRelationInfo | None:
        """
        Partitioning descriptor of a table.

        Returns:
            The descriptor, or None if the table is not partitioned, pruning is unavailable,
            or (with ``blocking=False``) its partitions are locked by someone else.
        """
        if not self.in_transaction or not self.is_ready:
            return None
        return self.relations.get(relid, blocking=blocking)

    def relation_info_after_lock(self, relid: int, unlock_if_not_found: bool = False) -> PartRelationInfo | None:
        """
        Lock a table in SHARE UPDATE EXCLUSIVE mode for the rest of the transaction, then describe it.

        Args:
            relid: The table.
            unlock_if_not_found: Release the lock right away if the table is not partitioned.
        """
        self.lock_relation(relid, LockMode.SHARE_UPDATE_EXCLUSIVE)
        # the table may have changed while we were waiting for the lock
        self.flush_deferred()
        prel = self.relation_info(relid)
        if prel is None and unlock_if_not_found:
            self._xact_locks.remove((relid, LockMode.SHARE_UPDATE_EXCLUSIVE))
            self.locks.release(relid, LockMode.SHARE_UPDATE_EXCLUSIVE, self.session_id)
        return prel

    def check_relation(self, relid: int, expected: PartType | None = None) -> PartRelationInfo:
        """
        Partitioning descriptor of a table that must be partitioned.

        Raises:
            InvalidRelationError: If the table is not partitioned (by ``expected``).
        """
        prel = self.relation_info(relid)
        check_relation_info(relid, prel, expected)
        return prel

    def parent_of(self, relid: int) -> tuple[int | None, ParentSearch]:
        """Partitioned parent of a relation and how it was determined."""
        return self.parents.get_parent(relid)

    # ---------- pruning
    def prune(self, relid: int, clauses: Any = (), blocking: bool = True) -> list[SelectedPartition] | None:
        """
        Relations to scan for a query on a partitioned table.

        Args:
            relid: The partitioned table.
            clauses: Restriction clauses that must all hold, see :mod:`partprune.pruning`.
            blocking: Wait for locks held by others while rebuilding cache entries.

        Returns:
            Partitions to scan, each flagged lossy if its rows need to be rechecked;
            None if partition pruning is not possible for this table right now.
        """
        if not self.config.enable:
            return None
        prel = self.relation_info(relid, blocking=blocking)
        if prel is None:
            return None
        selected = select_partitions(prel, walk_clauses(prel, clauses))
        logger.debug(f"session {self.session_id}: pruned relation {relid} to {len(selected)} relations")
        return selected
