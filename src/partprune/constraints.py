"""
Check constraints of partitions.

Every partition carries a check constraint, named after the partition, that
states which values of the partitioning expression it holds:

* RANGE: ``expr >= lower AND expr < upper``; an infinite side is omitted
* HASH: ``get_hash_part_idx(<hash function>(expr), <partitions>) = <index>``
* NULL: ``expr IS NULL``

The validators recognize these shapes and extract the bounds from them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .bound import Bound, cmp_bounds, make_bound, make_upper_bound
from .errors import ConfigurationError
from .expression import BoolExpr, Const, FuncExpr, Node, NullTest, OpExpr, expr_type

if TYPE_CHECKING:
    from .relation_info import PartRelationInfo

HASH_PART_IDX_FUNCTION = "get_hash_part_idx"


def build_check_constraint_name(relname: str) -> str:
    return f"partprune_{relname}_check"


def build_range_condition(expr: Node, start: Any, end: Any) -> Node:
    """
    Constraint of a RANGE partition holding ``[start, end)``.

    :param expr: the partitioning expression
    :param start: lower bound; None for -inf
    :param end: upper bound; None for +inf
    """
    typename = expr_type(expr)
    quals = []
    if start is not None:
        quals.append(OpExpr(">=", (expr, Const(start, typename)), "bool"))
    if end is not None:
        quals.append(OpExpr("<", (expr, Const(end, typename)), "bool"))
    if not quals:
        return Const(True, "bool")
    return quals[0] if len(quals) == 1 else BoolExpr("AND", tuple(quals))


def build_hash_condition(expr: Node, hash_name: str, partitions: int, index: int) -> Node:
    if not 0 <= index < partitions:
        raise ConfigurationError(f"HASH partition index {index} is out of range [0, {partitions})")
    hashed = FuncExpr(hash_name, (expr,), "int4")
    part_idx = FuncExpr(HASH_PART_IDX_FUNCTION, (hashed, Const(partitions, "int4")), "int4")
    return OpExpr("=", (part_idx, Const(index, "int4")), "bool")


def build_null_condition(expr: Node) -> Node:
    return NullTest(expr)


def _range_qual(qual: Node, prel: PartRelationInfo) -> tuple[str, Any] | None:
    """Match ``expr op const`` for the partitioning expression of ``prel``."""
    if not isinstance(qual, OpExpr) or qual.opname not in (">=", "<") or len(qual.args) != 2:
        return None
    left, right = qual.args
    if left != prel.expr or not isinstance(right, Const) or right.value is None:
        return None
    if not prel.type_info.accepts(right.value):
        return None
    return qual.opname, right.value


def validate_range_constraint(constraint: Node, prel: PartRelationInfo) -> tuple[Bound, Bound] | None:
    """
    Extract the bounds of a RANGE partition from its constraint.

    Returns
    -------
    tuple of Bound or None
        ``(lower, upper)``, or None if the constraint does not have the expected shape.
    """
    if constraint == Const(True, "bool"):
        quals = []
    elif isinstance(constraint, BoolExpr) and constraint.boolop == "AND":
        quals = list(constraint.args)
    else:
        quals = [constraint]

    lower, upper = None, None
    for qual in quals:
        matched = _range_qual(qual, prel)
        if matched is None:
            return None
        op, value = matched
        if op == ">=":
            if lower is not None:
                return None
            lower = value
        else:
            if upper is not None:
                return None
            upper = value

    lower_bound, upper_bound = make_bound(lower), make_upper_bound(upper)
    if cmp_bounds(prel.cmp_proc, prel.ev_collation, lower_bound, upper_bound) >= 0:
        return None
    return lower_bound, upper_bound


def validate_hash_constraint(constraint: Node, prel: PartRelationInfo) -> tuple[int, int] | None:
    """
    Extract the bucket of a HASH partition from its constraint.

    Returns
    -------
    tuple of int or None
        ``(index, partitions)``, or None if the constraint does not have the expected shape.
    """
    if not isinstance(constraint, OpExpr) or constraint.opname != "=" or len(constraint.args) != 2:
        return None
    part_idx, index = constraint.args
    if not isinstance(part_idx, FuncExpr) or part_idx.funcname != HASH_PART_IDX_FUNCTION:
        return None
    if len(part_idx.args) != 2 or not isinstance(index, Const):
        return None
    hashed, partitions = part_idx.args
    if not isinstance(hashed, FuncExpr) or hashed.funcname != prel.type_info.hash_name:
        return None
    if hashed.args != (prel.expr,) or not isinstance(partitions, Const):
        return None
    if not isinstance(index.value, int) or not isinstance(partitions.value, int):
        return None
    if not 0 <= index.value < partitions.value:
        return None
    return index.value, partitions.value


def is_null_constraint(constraint: Node, prel: PartRelationInfo) -> bool:
    return isinstance(constraint, NullTest) and constraint.arg == prel.expr
