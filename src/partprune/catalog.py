"""
The system catalog consulted by the partition caches.

The catalog is shared by all sessions. It stores relations and their columns,
the inheritance graph between partitioned tables and their partitions, the
partitioning configuration and params rows, and the check constraints of
partitions. Every mutation is broadcast to the subscribed invalidation hooks.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace

import networkx as nx

from .errors import ConfigurationError, PartPruneError
from .settings import config as default_config

logger = logging.getLogger(__name__.split(".")[0])

FIRST_NORMAL_RELID = 16384

TOAST_NAMESPACE = "pg_toast"

RelationHook = Callable[["int | None"], None]


class PartType(enum.IntEnum):
    """Partitioning strategy. NULL tags the bounds of a partition holding NULL keys only."""

    NULL = 0
    HASH = 1
    RANGE = 2


@dataclass
class Relation:
    relid: int
    name: str
    namespace: str = "public"
    columns: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfigRow:
    """
    A row of the partitioning configuration table.

    ``parttype`` is the raw strategy marker as stored; ``cooked_expr`` is None until cooked.
    """

    partrel: int
    expr: str
    parttype: int
    cooked_expr: str | None = None


@dataclass(frozen=True)
class ParamsRow:
    partrel: int
    enable_parent: bool


@dataclass(frozen=True)
class CheckConstraint:
    name: str
    conbin: str | None  # serialized expression tree; None when unreadable


class Catalog:
    """
    Shared relation metadata with change notifications.

    :param config_table: name of the partitioning configuration relation; None creates none.
    """

    def __init__(self, config_table: str | None = default_config.config_table) -> None:
        self._mutex = threading.RLock()
        self._relids = itertools.count(FIRST_NORMAL_RELID)
        self._relations: dict[int, Relation] = {}
        self._inheritance = nx.DiGraph()  # parent -> child, edge attribute seqno
        self._seqno = itertools.count()
        self._config: dict[int, ConfigRow] = {}
        self._params: dict[int, ParamsRow] = {}
        self._constraints: dict[int, dict[str, CheckConstraint]] = {}
        self._hooks: list[RelationHook] = []
        self._config_relid = None
        if config_table is not None:
            self._config_relid = self.create_relation(config_table, namespace="partprune")

    def __repr__(self) -> str:
        return f"Catalog({len(self._relations)} relations, {len(self._config)} partitioned)"

    # --- notifications ---

    def subscribe(self, hook: RelationHook) -> None:
        """Register a callback receiving the id of every changed relation (None: all of them)."""
        with self._mutex:
            self._hooks.append(hook)

    def unsubscribe(self, hook: RelationHook) -> None:
        with self._mutex:
            if hook in self._hooks:
                self._hooks.remove(hook)

    def notify(self, relid: int | None) -> None:
        """Send a relation-changed notification to all subscribers."""
        with self._mutex:
            hooks = list(self._hooks)
        logger.debug(f"relation {relid} changed")
        for hook in hooks:
            hook(relid)

    # --- relations ---

    def create_relation(self, name: str, columns: dict[str, str] | None = None, namespace: str = "public") -> int:
        with self._mutex:
            if any(r.name == name and r.namespace == namespace for r in self._relations.values()):
                raise PartPruneError(f'relation "{name}" already exists')
            relid = next(self._relids)
            self._relations[relid] = Relation(relid, name, namespace, dict(columns or {}))
            self._inheritance.add_node(relid)
        self.notify(relid)
        return relid

    def drop_relation(self, relid: int) -> None:
        """Drop a relation along with its constraints, configuration and inheritance links."""
        with self._mutex:
            self._relation(relid)
            parents = list(self._inheritance.predecessors(relid))
            del self._relations[relid]
            self._inheritance.remove_node(relid)
            self._constraints.pop(relid, None)
            self._config.pop(relid, None)
            self._params.pop(relid, None)
            if relid == self._config_relid:
                self._config_relid = None
                self._config.clear()
                self._params.clear()
        self.notify(relid)
        for parent in parents:
            self.notify(parent)

    def drop_config_table(self) -> None:
        if self._config_relid is None:
            raise PartPruneError("the partitioning configuration table does not exist")
        self.drop_relation(self._config_relid)

    def _relation(self, relid: int) -> Relation:
        try:
            return self._relations[relid]
        except KeyError:
            raise PartPruneError(f"relation {relid} does not exist") from None

    def relation_exists(self, relid: int) -> bool:
        return relid in self._relations

    def relation_name(self, relid: int) -> str:
        return self._relation(relid).name

    def columns(self, relid: int) -> dict[str, str]:
        return dict(self._relation(relid).columns)

    def is_internal(self, relid: int) -> bool:
        """True for out-of-line storage relations, which never take part in partitioning."""
        relation = self._relations.get(relid)
        return relation is not None and relation.namespace == TOAST_NAMESPACE

    def config_relation_id(self) -> int | None:
        return self._config_relid

    # --- inheritance ---

    def add_inheritance(self, child: int, parent: int) -> None:
        with self._mutex:
            self._relation(child)
            self._relation(parent)
            if child == parent or nx.has_path(self._inheritance, child, parent):
                raise PartPruneError(f"circular inheritance between {child} and {parent}")
            if any(True for _ in self._inheritance.predecessors(child)):
                raise PartPruneError(f"relation {child} already has a parent")
            self._inheritance.add_edge(parent, child, seqno=next(self._seqno))
        self.notify(child)
        self.notify(parent)

    def remove_inheritance(self, child: int) -> None:
        with self._mutex:
            parents = list(self._inheritance.predecessors(child))
            if not parents:
                raise PartPruneError(f"relation {child} is not a partition")
            self._inheritance.remove_edge(parents[0], child)
        self.notify(child)
        self.notify(parents[0])

    def inheritance_children(self, parent: int) -> list[int]:
        """Direct children of ``parent`` in the order they were attached."""
        with self._mutex:
            if parent not in self._inheritance:
                return []
            edges = self._inheritance.out_edges(parent, data="seqno")
            return [child for _, child, _ in sorted(edges, key=lambda e: e[2])]

    def inheritance_parent(self, child: int) -> int | None:
        with self._mutex:
            if child not in self._inheritance:
                return None
            return next(iter(self._inheritance.predecessors(child)), None)

    # --- partitioning configuration ---

    def _require_config_table(self) -> None:
        if self._config_relid is None:
            raise ConfigurationError("the partitioning configuration table does not exist")

    def add_config(self, relid: int, expr: str, parttype: int, cooked_expr: str | None = None) -> ConfigRow:
        with self._mutex:
            self._require_config_table()
            self._relation(relid)
            if relid in self._config:
                raise PartPruneError(f"relation {relid} is already partitioned")
            row = ConfigRow(relid, expr, int(parttype), cooked_expr)
            self._config[relid] = row
        self.notify(relid)
        return row

    def remove_config(self, relid: int) -> None:
        with self._mutex:
            self._config.pop(relid, None)
            self._params.pop(relid, None)
        self.notify(relid)

    def config_row(self, relid: int) -> ConfigRow | None:
        return self._config.get(relid)

    def is_partitioned(self, relid: int) -> bool:
        return relid in self._config

    def update_cooked_expression(self, relid: int, cooked_expr: str | None) -> None:
        """Store a (re)cooked expression; the partitioning itself is unchanged, so nobody is notified."""
        with self._mutex:
            row = self._config.get(relid)
            if row is None:
                raise PartPruneError(f"relation {relid} is not partitioned")
            self._config[relid] = replace(row, cooked_expr=cooked_expr)

    def set_params(self, relid: int, enable_parent: bool) -> None:
        with self._mutex:
            self._require_config_table()
            self._relation(relid)
            self._params[relid] = ParamsRow(relid, enable_parent)
        self.notify(relid)

    def read_params(self, relid: int) -> ParamsRow | None:
        return self._params.get(relid)

    # --- constraints ---

    def set_constraint(self, relid: int, name: str, conbin: str | None) -> None:
        with self._mutex:
            self._relation(relid)
            self._constraints.setdefault(relid, {})[name] = CheckConstraint(name, conbin)
        self.notify(relid)

    def drop_constraint(self, relid: int, name: str) -> None:
        with self._mutex:
            if self._constraints.get(relid, {}).pop(name, None) is None:
                raise PartPruneError(f'constraint "{name}" of relation {relid} does not exist')
        self.notify(relid)

    def constraint(self, relid: int, name: str) -> CheckConstraint | None:
        return self._constraints.get(relid, {}).get(name)
