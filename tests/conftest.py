"""
Pytest configuration for partprune tests.

Every test gets its own catalog, lock table and settings object, so tests never
share cached partitioning state or the global ``partprune.config``.
"""

import logging

import pytest

from partprune.catalog import Catalog, PartType
from partprune.ddl import (
    add_to_config,
    create_hash_partitions,
    create_null_partition,
    create_range_partitions,
)
from partprune.locks import LockManager
from partprune.session import Session
from partprune.settings import PartPruneSettings

logger = logging.getLogger(__name__)


@pytest.fixture
def settings() -> PartPruneSettings:
    """Fresh settings with defaults."""
    return PartPruneSettings(enable=True, enable_bounds_cache=True, enable_parent_default=False)


@pytest.fixture
def catalog() -> Catalog:
    return Catalog(config_table="partprune_config")


@pytest.fixture
def locks() -> LockManager:
    return LockManager()


@pytest.fixture
def session(catalog, locks, settings):
    session = Session(catalog, locks, settings=settings)
    yield session
    session.close()


@pytest.fixture
def other_session(catalog, locks, settings):
    """A second backend sharing the catalog and the lock table."""
    session = Session(catalog, locks, settings=settings)
    yield session
    session.close()


@pytest.fixture
def range_table(catalog):
    """
    Table ``measurements`` RANGE partitioned on ``id``: [0, 100), [100, 200), [200, 300).

    :return: (parent relid, list of children relids in bound order)
    """
    parent = catalog.create_relation("measurements", {"id": "int4", "city": "text"})
    add_to_config(catalog, parent, "id", PartType.RANGE)
    children = create_range_partitions(catalog, parent, [0, 100, 200, 300])
    return parent, children


@pytest.fixture
def hash_table(catalog):
    """
    Table ``users`` HASH partitioned on ``uid`` into 4 buckets, with a NULL partition.

    :return: (parent relid, list of bucket relids, NULL partition relid)
    """
    parent = catalog.create_relation("users", {"uid": "int8", "name": "text"})
    add_to_config(catalog, parent, "uid", PartType.HASH)
    buckets = create_hash_partitions(catalog, parent, 4)
    null_partition = create_null_partition(catalog, parent, "users_null")
    return parent, buckets, null_partition

