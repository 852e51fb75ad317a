"""
Deferred invalidation of partitioned tables.

Relation-changed notifications can arrive at moments when the catalog cannot
be consulted. They are recorded here and processed at the next transaction
boundary by :meth:`DelayedInvalidation.finish`.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .errors import InternalError
from .parents import ParentSearch

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__.split(".")[0])


class DelayedInvalidation:
    """
    Work queue of pending invalidations.

    ``parent_rels`` are known partitioned tables (or relations that might have become one),
    ``vague_rels`` are relations whose role could not be determined when they changed.
    ``shutdown`` is set when the configuration table itself changed.
    """

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self.parent_rels: list[int] = []
        self.vague_rels: list[int] = []
        self.shutdown = False

    def __repr__(self) -> str:
        return f"DelayedInvalidation(parents={self.parent_rels}, vague={self.vague_rels}, shutdown={self.shutdown})"

    def __bool__(self) -> bool:
        return bool(self.parent_rels or self.vague_rels or self.shutdown)

    def delay_parent(self, relid: int) -> None:
        with self._mutex:
            if relid not in self.parent_rels:
                self.parent_rels.append(relid)

    def delay_vague(self, relid: int) -> None:
        with self._mutex:
            if relid not in self.vague_rels:
                self.vague_rels.append(relid)

    def delay_shutdown(self) -> None:
        with self._mutex:
            self.shutdown = True

    def clear(self) -> None:
        with self._mutex:
            self.parent_rels, self.vague_rels, self.shutdown = [], [], False

    def _take(self) -> tuple[list[int], list[int], bool]:
        with self._mutex:
            taken = self.parent_rels, self.vague_rels, self.shutdown
            self.parent_rels, self.vague_rels, self.shutdown = [], [], False
        return taken

    def _restore(self, parents: list[int], vague: list[int], shutdown: bool) -> None:
        with self._mutex:
            self.parent_rels = parents + [r for r in self.parent_rels if r not in parents]
            self.vague_rels = vague + [r for r in self.vague_rels if r not in vague]
            self.shutdown = self.shutdown or shutdown

    def finish(self, session: Session) -> None:
        """
        Process the pending invalidations of a session.

        Does nothing outside a transaction: the work stays queued for the next one.
        If processing fails, the pending work is put back before the error propagates.
        """
        if not session.in_transaction or not self:
            return

        parents, vague, shutdown = self._take()
        logger.debug(f"processing delayed invalidation: parents={parents} vague={vague} shutdown={shutdown}")
        try:
            if shutdown and session.catalog.config_relation_id() != session.config_relid:
                # the configuration table is gone (or was recreated): start over
                session.unload_config()
                session.load_config()
                return

            relations = session.relations
            fresh = set()
            for relid in parents:
                if session.catalog.is_internal(relid):
                    continue
                if relations.invalidate_if_partitioned(relid):
                    fresh.add(relid)

            for relid in vague:
                if session.catalog.is_internal(relid) or relid in fresh:
                    continue
                if relations.invalidate_if_partitioned(relid):
                    fresh.add(relid)
                    continue
                parent, search = session.parents.get_parent(relid)
                if search is ParentSearch.NOT_SURE:
                    raise InternalError(f"could not determine the parent of relation {relid}")
                if search is ParentSearch.PART_PARENT and parent not in fresh:
                    relations.invalidate(parent)
                    fresh.add(parent)
        except BaseException:
            self._restore(parents, vague, shutdown)
            raise
