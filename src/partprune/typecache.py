"""
Type-system lookup: comparators and hash functions of partitioning expression types.
"""

from __future__ import annotations

import datetime
import decimal
import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError

logger = logging.getLogger(__name__.split(".")[0])

COLLATIONS = ("C", "default", "case_insensitive")


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def cmp_natural(a: Any, b: Any, collation: str | None = None) -> int:
    """Comparator for types whose Python values are naturally ordered."""
    return _cmp(a, b)


def cmp_text(a: str, b: str, collation: str | None = None) -> int:
    """Comparator for strings under a collation."""
    if collation == "case_insensitive":
        # ties between different spellings are broken by code points to keep the order total
        return _cmp(a.casefold(), b.casefold()) or _cmp(a, b)
    if collation not in (None, "C", "default"):
        raise ConfigurationError(f'collation "{collation}" does not exist')
    return _cmp(a, b)


def _digest32(buffer: bytes) -> int:
    return int.from_bytes(hashlib.md5(buffer).digest()[:4], "little")


def hash_int(value: int) -> int:
    return _digest32(int(value).to_bytes(8, "little", signed=True))


def hash_text(value: str) -> int:
    return _digest32(value.encode())


def hash_numeric(value: Any) -> int:
    # equal numerics hash equally regardless of scale: 1.50 and 1.5
    return _digest32(str(decimal.Decimal(value).normalize()).encode())


def hash_temporal(value: datetime.date) -> int:
    return _digest32(value.isoformat().encode())


def hash_bool(value: bool) -> int:
    return _digest32(b"\x01" if value else b"\x00")


@dataclass(frozen=True)
class TypeInfo:
    """Properties of a type that the relation cache needs."""

    name: str
    python_type: type | tuple[type, ...]
    cmp_proc: Callable[[Any, Any, "str | None"], int]
    hash_name: str
    hash_proc: Callable[[Any], int]
    byval: bool
    length: int  # -1 for variable length
    collation: str | None = None

    def accepts(self, value: Any) -> bool:
        return isinstance(value, self.python_type) and not (
            isinstance(value, bool) and self.python_type is not bool
        )


_BUILTIN_TYPES = (
    TypeInfo("int2", int, cmp_natural, "hashint2", hash_int, True, 2),
    TypeInfo("int4", int, cmp_natural, "hashint4", hash_int, True, 4),
    TypeInfo("int8", int, cmp_natural, "hashint8", hash_int, True, 8),
    TypeInfo("float8", (int, float), cmp_natural, "hashfloat8", hash_numeric, True, 8),
    TypeInfo("numeric", (int, decimal.Decimal), cmp_natural, "hash_numeric", hash_numeric, False, -1),
    TypeInfo("bool", bool, cmp_natural, "hashbool", hash_bool, True, 1),
    TypeInfo("text", str, cmp_text, "hashtext", hash_text, False, -1, "default"),
    TypeInfo("varchar", str, cmp_text, "hashtext", hash_text, False, -1, "default"),
    TypeInfo("date", datetime.date, cmp_natural, "hashdate", hash_temporal, True, 4),
    TypeInfo("timestamp", datetime.datetime, cmp_natural, "timestamp_hash", hash_temporal, True, 8),
)


class TypeRegistry:
    """
    Lookup of comparison and hash support by type name.

    Additional types can be registered; lookups of unknown types raise ConfigurationError.
    """

    def __init__(self, types: tuple[TypeInfo, ...] = _BUILTIN_TYPES) -> None:
        self._types: dict[str, TypeInfo] = {}
        for info in types:
            self.register(info)

    def register(self, info: TypeInfo) -> None:
        if info.collation is not None and info.collation not in COLLATIONS:
            raise ConfigurationError(f'collation "{info.collation}" does not exist')
        self._types[info.name] = info

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def lookup(self, name: str) -> TypeInfo:
        try:
            return self._types[name]
        except KeyError:
            raise ConfigurationError(f"cache lookup failed for type {name}") from None


def get_hash_part_idx(hash_value: int, partitions: int) -> int:
    """Bucket of a hash value among ``partitions`` HASH partitions."""
    return hash_value % partitions
