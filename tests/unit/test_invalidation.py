"""Unit tests for invalidation.py, parents.py and the session's relation-changed hook."""

from types import SimpleNamespace

import pytest
from partprune.constraints import build_check_constraint_name
from partprune.ddl import create_range_partition
from partprune.errors import InternalError
from partprune.invalidation import DelayedInvalidation
from partprune.parents import ParentSearch


class TestDelayedInvalidation:
    """Tests for the deferred work queue."""

    def test_deduplicates(self):
        queue = DelayedInvalidation()
        queue.delay_parent(1)
        queue.delay_parent(1)
        queue.delay_vague(2)
        queue.delay_vague(2)
        assert queue.parent_rels == [1]
        assert queue.vague_rels == [2]
        assert queue

    def test_clear(self):
        queue = DelayedInvalidation()
        queue.delay_parent(1)
        queue.delay_shutdown()
        queue.clear()
        assert not queue

    def test_kept_outside_transaction(self, session, range_table):
        parent, _ = range_table
        session.invalidation.delay_parent(parent)
        session.flush_deferred()
        assert parent in session.invalidation.parent_rels

    def test_unknown_parent_during_flush(self, session, range_table, catalog):
        """A relation whose parent cannot be determined while flushing is an internal error."""
        _, children = range_table
        unsure = SimpleNamespace(
            in_transaction=True,
            catalog=catalog,
            config_relid=catalog.config_relation_id(),
            relations=session.relations,
            parents=SimpleNamespace(get_parent=lambda relid: (None, ParentSearch.NOT_SURE)),
        )
        queue = DelayedInvalidation()
        queue.delay_vague(children[0])
        with pytest.raises(InternalError):
            queue.finish(unsure)
        # the work is kept for the next attempt
        assert queue.vague_rels == [children[0]]


class TestParentSearch:
    """Tests for partition-to-parent lookups."""

    def test_not_sure_outside_transaction(self, session, range_table):
        parent, children = range_table
        assert session.parent_of(children[0]) == (None, ParentSearch.NOT_SURE)
        with session.transaction:
            assert session.parent_of(children[0]) == (parent, ParentSearch.PART_PARENT)

    def test_partitioned_table_and_plain_inheritance(self, session, range_table, catalog):
        parent, _ = range_table
        base = catalog.create_relation("base", {"id": "int4"})
        derived = catalog.create_relation("derived", {"id": "int4"})
        catalog.add_inheritance(derived, base)
        with session.transaction:
            assert session.parent_of(parent) == (None, ParentSearch.PARENT)
            assert session.parent_of(derived) == (None, ParentSearch.NOT_FOUND)

    def test_cached_after_rebuild(self, session, range_table):
        parent, children = range_table
        with session.transaction:
            session.relation_info(parent)
        # answered from the cache, no transaction needed
        assert session.parent_of(children[2]) == (parent, ParentSearch.PART_PARENT)

    def test_forget(self, session, range_table):
        parent, children = range_table
        with session.transaction:
            session.relation_info(parent)
        assert session.parents.forget_parent(children[0]) == (parent, ParentSearch.PART_PARENT)
        assert children[0] not in session.parents


class TestRelationChangedHook:
    """Tests for notifications and their processing at transaction start."""

    def test_partition_change_invalidates_parent(self, session, range_table, catalog):
        parent, children = range_table
        with session.transaction:
            prel = session.relation_info(parent)

        name = build_check_constraint_name(catalog.relation_name(children[1]))
        catalog.set_constraint(children[1], name, catalog.constraint(children[1], name).conbin)
        assert session.invalidation.parent_rels == [parent]
        assert children[1] not in session.bounds
        # deferred until the next transaction starts
        assert prel.valid

        with session.transaction:
            assert not prel.valid
            assert not session.invalidation
            assert session.relation_info(parent).children == children

    def test_snapshot_is_stable_within_transaction(self, session, range_table, catalog):
        parent, children = range_table
        with session.transaction:
            assert session.relation_info(parent).children_count == 3
            extra = create_range_partition(catalog, parent, 300, 400)
            assert session.relation_info(parent).children_count == 3
        with session.transaction:
            assert session.relation_info(parent).children == children + [extra]

    def test_vague_relation_resolved_at_flush(self, session, range_table, catalog):
        parent, children = range_table
        with session.transaction:
            session.relation_info(parent)
        session.parents.clear()
        catalog.notify(children[0])
        assert children[0] in session.invalidation.vague_rels
        session.start_transaction()
        try:
            assert not session.relations.peek(parent).valid
            assert not session.invalidation
        finally:
            session.commit_transaction()

    def test_new_partitioned_table(self, session, catalog):
        """A relation that becomes partitioned is picked up after the next transaction start."""
        from partprune.catalog import PartType
        from partprune.ddl import add_to_config

        with session.transaction:
            relid = catalog.create_relation("late", {"id": "int4"})
            assert session.relation_info(relid) is None
            add_to_config(catalog, relid, "id", PartType.RANGE)
            create_range_partition(catalog, relid, 0, 10)
        with session.transaction:
            assert session.relation_info(relid).children_count == 1

    def test_internal_relations_are_skipped(self, session, catalog):
        toast = catalog.create_relation("pg_toast_1", namespace="pg_toast")
        session.relations.invalidate(toast)
        session.invalidation.delay_parent(toast)
        with session.transaction:
            # an ordinary non-partitioned relation would have been removed
            assert toast in session.relations

    def test_anything_changed(self, session, range_table, hash_table, catalog):
        range_parent, _ = range_table
        hash_parent, _, _ = hash_table
        with session.transaction:
            session.relation_info(range_parent)
            session.relation_info(hash_parent)
        catalog.notify(None)
        assert sorted(session.invalidation.parent_rels) == sorted([range_parent, hash_parent])
        assert len(session.bounds) == 0

    def test_config_table_dropped(self, session, range_table, catalog):
        parent, _ = range_table
        with session.transaction:
            session.relation_info(parent)
        catalog.drop_config_table()
        assert session.invalidation.shutdown
        with session.transaction:
            assert not session.is_ready
            assert len(session.relations) == 0
            assert len(session.parents) == 0
            assert session.relation_info(parent) is None

    def test_shutdown_with_config_table_present(self, session, range_table):
        parent, _ = range_table
        session.invalidation.delay_shutdown()
        with session.transaction:
            assert session.is_ready
            assert session.relation_info(parent) is not None

    def test_closed_session_is_not_notified(self, session, range_table, catalog):
        parent, children = range_table
        session.close()
        catalog.notify(children[0])
        assert not session.invalidation
