"""
Helpers that create partitioned tables and their partitions in a catalog.

Each partition is attached to its parent and receives the check constraint
that the relation cache reads its bounds from.
"""

from __future__ import annotations

import logging
from typing import Any

from .catalog import Catalog, ConfigRow, PartType
from .constraints import (
    build_check_constraint_name,
    build_hash_condition,
    build_null_condition,
    build_range_condition,
)
from .errors import PartPruneError
from .expression import Node, cook_partitioning_expression, expr_type, node_to_string, string_to_node
from .typecache import TypeRegistry

logger = logging.getLogger(__name__.split(".")[0])


def add_to_config(
    catalog: Catalog,
    relid: int,
    expression: str,
    parttype: PartType,
    types: TypeRegistry | None = None,
    enable_parent: bool | None = None,
) -> ConfigRow:
    """
    Register a table as partitioned by ``expression``.

    :param enable_parent: write a params row; None leaves the default in effect
    """
    cooked = cook_partitioning_expression(catalog, relid, expression, types)
    row = catalog.add_config(relid, expression, parttype, cooked.cooked)
    if enable_parent is not None:
        catalog.set_params(relid, enable_parent)
    logger.info(f"relation {catalog.relation_name(relid)} is partitioned by {parttype.name} on {expression}")
    return row


def _partitioning(catalog: Catalog, parent: int, parttype: PartType) -> Node:
    row = catalog.config_row(parent)
    if row is None or row.parttype != parttype:
        raise PartPruneError(f"relation {parent} is not partitioned by {parttype.name}")
    if row.cooked_expr is None:
        raise PartPruneError(f"partitioning expression of relation {parent} has not been cooked")
    return string_to_node(row.cooked_expr)


def _create_partition(catalog: Catalog, parent: int, name: str | None, condition: Node) -> int:
    if name is None:
        name = f"{catalog.relation_name(parent)}_{len(catalog.inheritance_children(parent)) + 1}"
    child = catalog.create_relation(name, catalog.columns(parent))
    catalog.set_constraint(child, build_check_constraint_name(name), node_to_string(condition))
    catalog.add_inheritance(child, parent)
    return child


def create_range_partition(catalog: Catalog, parent: int, start: Any, end: Any, name: str | None = None) -> int:
    """
    Create a RANGE partition holding ``[start, end)``; None stands for an infinite bound.
    """
    expr = _partitioning(catalog, parent, PartType.RANGE)
    return _create_partition(catalog, parent, name, build_range_condition(expr, start, end))


def create_range_partitions(catalog: Catalog, parent: int, bounds: list[Any]) -> list[int]:
    """Create consecutive RANGE partitions ``[bounds[i], bounds[i+1])``."""
    return [create_range_partition(catalog, parent, start, end) for start, end in zip(bounds, bounds[1:])]


def create_hash_partitions(
    catalog: Catalog, parent: int, partitions: int, types: TypeRegistry | None = None
) -> list[int]:
    """Create ``partitions`` HASH partitions, one per bucket."""
    if partitions < 1:
        raise PartPruneError("the number of HASH partitions must be positive")
    expr = _partitioning(catalog, parent, PartType.HASH)
    hash_name = (types or TypeRegistry()).lookup(expr_type(expr)).hash_name
    return [
        _create_partition(catalog, parent, None, build_hash_condition(expr, hash_name, partitions, index))
        for index in range(partitions)
    ]


def create_null_partition(catalog: Catalog, parent: int, name: str | None = None) -> int:
    """Create the partition holding rows whose partitioning expression is NULL."""
    row = catalog.config_row(parent)
    if row is None:
        raise PartPruneError(f"relation {parent} is not partitioned")
    expr = _partitioning(catalog, parent, PartType(row.parttype))
    return _create_partition(catalog, parent, name, build_null_condition(expr))
