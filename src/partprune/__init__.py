"""
partprune: partition pruning metadata caches.

partprune keeps per-session caches describing how tables are split into RANGE or
HASH partitions, keeps them coherent with a shared catalog through deferred
invalidation, and maps restriction clauses to the set of partitions a query
has to scan.
"""

__all__ = [
    "__version__",
    "config",
    "logger",
    "errors",
    "PartPruneError",
    "ConfigurationError",
    "InvalidRelationError",
    "Catalog",
    "PartType",
    "LockManager",
    "LockMode",
    "Session",
    "PartRelationInfo",
    "ParentSearch",
    "TypeRegistry",
    "AndList",
    "Comparison",
    "IsNull",
    "IsNotNull",
    "SelectedPartition",
    "add_to_config",
    "create_range_partition",
    "create_range_partitions",
    "create_hash_partitions",
    "create_null_partition",
]

from . import errors
from .logging import logger
from .catalog import Catalog, PartType
from .ddl import (
    add_to_config,
    create_hash_partitions,
    create_null_partition,
    create_range_partition,
    create_range_partitions,
)
from .errors import ConfigurationError, InvalidRelationError, PartPruneError
from .locks import LockManager, LockMode
from .parents import ParentSearch
from .pruning import AndList, Comparison, IsNotNull, IsNull, SelectedPartition
from .relation_info import PartRelationInfo
from .session import Session
from .settings import config
from .typecache import TypeRegistry
from .version import __version__
