"""
Partitioning expressions.

This module parses user-supplied partitioning expressions, resolves them against
the partitioned relation's columns ("cooking"), and converts expression trees to
and from the serialized form stored in the partitioning configuration and in
partition check constraints.
"""

from __future__ import annotations

import datetime
import decimal
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import pyparsing as pp

from .errors import ConfigurationError, PartitionExpressionError
from .typecache import TypeRegistry

if TYPE_CHECKING:
    from .catalog import Catalog

logger = logging.getLogger(__name__.split(".")[0])

# range table index of the partitioned relation in partitioning expressions
PART_EXPR_VARNO = 1

NUMERIC_TYPES = ("int2", "int4", "int8", "numeric", "float8")
STRING_TYPES = ("text", "varchar")


# --- expression tree ---


@dataclass(frozen=True)
class Var:
    attname: str
    vartype: str
    varno: int = PART_EXPR_VARNO


@dataclass(frozen=True)
class Const:
    value: Any
    consttype: str


@dataclass(frozen=True)
class FuncExpr:
    funcname: str
    args: tuple
    functype: str


@dataclass(frozen=True)
class OpExpr:
    opname: str
    args: tuple
    optype: str


@dataclass(frozen=True)
class BoolExpr:
    boolop: str  # AND | OR
    args: tuple


@dataclass(frozen=True)
class NullTest:
    arg: Any


Node = Union[Var, Const, FuncExpr, OpExpr, BoolExpr, NullTest]


def expr_type(node: Node) -> str:
    """Result type name of an expression."""
    if isinstance(node, Var):
        return node.vartype
    if isinstance(node, Const):
        return node.consttype
    if isinstance(node, FuncExpr):
        return node.functype
    if isinstance(node, OpExpr):
        return node.optype
    return "bool"


def walk(node: Node):
    """Yield ``node`` and all of its subexpressions."""
    yield node
    if isinstance(node, (FuncExpr, OpExpr, BoolExpr)):
        for arg in node.args:
            yield from walk(arg)
    elif isinstance(node, NullTest):
        yield from walk(node.arg)


def expression_varnos(node: Node) -> set[int]:
    return {n.varno for n in walk(node) if isinstance(n, Var)}


def expression_attnames(node: Node) -> frozenset[str]:
    return frozenset(n.attname for n in walk(node) if isinstance(n, Var))


def deparse(node: Node) -> str:
    """Render an expression tree as text."""
    if isinstance(node, Var):
        return node.attname
    if isinstance(node, Const):
        if isinstance(node.value, str):
            return "'%s'" % node.value.replace("'", "''")
        if isinstance(node.value, (datetime.date, datetime.datetime)):
            return "'%s'" % node.value.isoformat()
        return str(node.value).lower() if isinstance(node.value, bool) else str(node.value)
    if isinstance(node, FuncExpr):
        return "%s(%s)" % (node.funcname, ", ".join(deparse(a) for a in node.args))
    if isinstance(node, OpExpr):
        if len(node.args) == 1:
            return "%s%s" % (node.opname, deparse(node.args[0]))
        return "(%s %s %s)" % (deparse(node.args[0]), node.opname, deparse(node.args[1]))
    if isinstance(node, BoolExpr):
        return "(%s)" % (" %s " % node.boolop).join(deparse(a) for a in node.args)
    return "(%s IS NULL)" % deparse(node.arg)


# --- serialization ---


def _encode_value(value: Any, typename: str) -> Any:
    if typename == "numeric":
        return str(value)
    if typename in ("date", "timestamp"):
        return value.isoformat()
    return value


def _decode_value(value: Any, typename: str) -> Any:
    if typename == "numeric":
        return decimal.Decimal(value)
    if typename == "date":
        return datetime.date.fromisoformat(value)
    if typename == "timestamp":
        return datetime.datetime.fromisoformat(value)
    if typename in NUMERIC_TYPES and not isinstance(value, (int, float)):
        raise ValueError(f"bad {typename} constant {value!r}")
    return value


def _to_dict(node: Node) -> dict:
    if isinstance(node, Var):
        return {"node": "VAR", "attname": node.attname, "type": node.vartype, "varno": node.varno}
    if isinstance(node, Const):
        return {"node": "CONST", "value": _encode_value(node.value, node.consttype), "type": node.consttype}
    if isinstance(node, FuncExpr):
        return {"node": "FUNCEXPR", "name": node.funcname, "type": node.functype, "args": [_to_dict(a) for a in node.args]}
    if isinstance(node, OpExpr):
        return {"node": "OPEXPR", "name": node.opname, "type": node.optype, "args": [_to_dict(a) for a in node.args]}
    if isinstance(node, BoolExpr):
        return {"node": "BOOLEXPR", "op": node.boolop, "args": [_to_dict(a) for a in node.args]}
    if isinstance(node, NullTest):
        return {"node": "NULLTEST", "arg": _to_dict(node.arg)}
    raise TypeError(f"not an expression node: {node!r}")


def _from_dict(data: dict) -> Node:
    kind = data["node"]
    if kind == "VAR":
        return Var(data["attname"], data["type"], data["varno"])
    if kind == "CONST":
        return Const(_decode_value(data["value"], data["type"]), data["type"])
    if kind == "FUNCEXPR":
        return FuncExpr(data["name"], tuple(_from_dict(a) for a in data["args"]), data["type"])
    if kind == "OPEXPR":
        return OpExpr(data["name"], tuple(_from_dict(a) for a in data["args"]), data["type"])
    if kind == "BOOLEXPR":
        if data["op"] not in ("AND", "OR"):
            raise ValueError(f"unknown boolean operator {data['op']}")
        return BoolExpr(data["op"], tuple(_from_dict(a) for a in data["args"]))
    if kind == "NULLTEST":
        return NullTest(_from_dict(data["arg"]))
    raise ValueError(f"unrecognized node type {kind}")


def node_to_string(node: Node) -> str:
    """Serialize an expression tree."""
    return json.dumps(_to_dict(node), sort_keys=True)


def string_to_node(text: str) -> Node:
    """
    Deserialize an expression tree.

    Raises
    ------
    ConfigurationError
        If ``text`` is not a serialized expression.
    """
    try:
        return _from_dict(json.loads(text))
    except (ValueError, KeyError, TypeError) as err:
        raise ConfigurationError("could not read serialized expression", str(err)) from None


# --- parsing ---


@dataclass(frozen=True)
class _ColumnRef:
    qualifier: str | None
    name: str


@dataclass(frozen=True)
class _Call:
    name: str
    args: tuple


@dataclass(frozen=True)
class _Op:
    name: str
    args: tuple


def _make_number(tokens: pp.ParseResults) -> Const:
    text = tokens[0]
    if "." in text:
        return Const(decimal.Decimal(text), "numeric")
    value = int(text)
    return Const(value, "int4" if value < 2**31 else "int8")


def _make_column(tokens: pp.ParseResults) -> _ColumnRef:
    if len(tokens) == 2:
        return _ColumnRef(tokens[0].lower(), tokens[1].lower())
    return _ColumnRef(None, tokens[0].lower())


def _make_binary(tokens: pp.ParseResults) -> _Op:
    items = tokens[0]
    result = items[0]
    for i in range(1, len(items), 2):
        result = _Op(items[i], (result, items[i + 1]))
    return result


def _make_unary(tokens: pp.ParseResults) -> _Op:
    op, operand = tokens[0]
    return _Op(op, (operand,))


def build_expression_parser() -> pp.ParserElement:
    """
    Build a pyparsing parser for partitioning expressions.

    Returns
    -------
    pp.ParserElement
        Parser producing an unresolved expression tree.
    """
    identifier = pp.Word(pp.alphas + "_", pp.alphanums + "_")
    lpar, rpar, dot = map(pp.Suppress, "().")
    number = pp.Regex(r"\d+(\.\d+)?").set_parse_action(_make_number)
    string = pp.QuotedString("'", esc_quote="''").set_parse_action(lambda t: Const(t[0], "text"))
    boolean = (pp.CaselessKeyword("true") | pp.CaselessKeyword("false")).set_parse_action(
        lambda t: Const(t[0].lower() == "true", "bool")
    )
    expr = pp.Forward()
    call = (identifier + lpar + pp.Group(pp.Optional(pp.DelimitedList(expr))) + rpar).set_parse_action(
        lambda t: _Call(t[0].lower(), tuple(t[1]))
    )
    column = (identifier + pp.Optional(dot + identifier)).set_parse_action(_make_column)
    operand = number | string | boolean | call | column
    expr <<= pp.infix_notation(
        operand,
        [
            (pp.Literal("-"), 1, pp.OpAssoc.RIGHT, _make_unary),
            (pp.one_of("* / %"), 2, pp.OpAssoc.LEFT, _make_binary),
            (pp.one_of("+ -"), 2, pp.OpAssoc.LEFT, _make_binary),
            (pp.Literal("||"), 2, pp.OpAssoc.LEFT, _make_binary),
        ],
    )
    return expr


expression_parser = build_expression_parser()


# --- analysis ---


@dataclass(frozen=True)
class FunctionInfo:
    name: str
    volatility: str  # immutable | stable | volatile
    argtypes: tuple | None  # None: a single numeric argument
    rettype: str | None  # None: type of the first argument


FUNCTIONS = {
    f.name: f
    for f in (
        FunctionInfo("lower", "immutable", ("text",), "text"),
        FunctionInfo("upper", "immutable", ("text",), "text"),
        FunctionInfo("length", "immutable", ("text",), "int4"),
        FunctionInfo("abs", "immutable", None, None),
        FunctionInfo("floor", "immutable", None, None),
        FunctionInfo("random", "volatile", (), "float8"),
        FunctionInfo("now", "stable", (), "timestamp"),
        FunctionInfo("clock_timestamp", "volatile", (), "timestamp"),
    )
}


class _AnalyzeError(Exception):
    """Expression does not make sense for the relation."""


def _type_category(typename: str) -> str:
    if typename in NUMERIC_TYPES:
        return "numeric"
    if typename in STRING_TYPES:
        return "string"
    return typename


def _promote(t1: str, t2: str) -> str:
    return max(t1, t2, key=NUMERIC_TYPES.index)


def _analyze(node: Any, relname: str, columns: dict[str, str]) -> Node:
    if isinstance(node, Const):
        return node

    if isinstance(node, _ColumnRef):
        if node.qualifier is not None and node.qualifier != relname:
            raise _AnalyzeError(f'missing FROM-clause entry for table "{node.qualifier}"')
        if node.name not in columns:
            raise _AnalyzeError(f'column "{node.name}" does not exist')
        return Var(node.name, columns[node.name])

    if isinstance(node, _Call):
        args = tuple(_analyze(a, relname, columns) for a in node.args)
        try:
            info = FUNCTIONS[node.name]
        except KeyError:
            raise _AnalyzeError(f"function {node.name} does not exist") from None
        argtypes = tuple(expr_type(a) for a in args)
        if info.argtypes is None:
            if len(argtypes) != 1 or _type_category(argtypes[0]) != "numeric":
                raise _AnalyzeError(f"function {node.name}({', '.join(argtypes)}) does not exist")
        elif tuple(map(_type_category, argtypes)) != tuple(map(_type_category, info.argtypes)):
            raise _AnalyzeError(f"function {node.name}({', '.join(argtypes)}) does not exist")
        return FuncExpr(node.name, args, info.rettype or argtypes[0])

    assert isinstance(node, _Op)
    args = tuple(_analyze(a, relname, columns) for a in node.args)
    argtypes = tuple(expr_type(a) for a in args)
    if node.name == "||":
        if any(_type_category(t) != "string" for t in argtypes):
            raise _AnalyzeError(f"operator does not exist: {' || '.join(argtypes)}")
        return OpExpr("||", args, "text")
    if any(_type_category(t) != "numeric" for t in argtypes):
        raise _AnalyzeError(f"operator does not exist: {node.name} ({', '.join(argtypes)})")
    optype = argtypes[0] if len(argtypes) == 1 else _promote(*argtypes)
    return OpExpr(node.name, args, optype)


def contain_mutable_functions(node: Node) -> bool:
    return any(
        isinstance(n, FuncExpr) and n.funcname in FUNCTIONS and FUNCTIONS[n.funcname].volatility != "immutable"
        for n in walk(node)
    )


@dataclass(frozen=True)
class CookedExpression:
    """A partitioning expression resolved against its relation."""

    expr: str
    cooked: str
    type: str
    collation: str | None
    byval: bool
    length: int


def parse_partitioning_expression(expression: str) -> Any:
    """
    Parse a partitioning expression without resolving names.

    Raises
    ------
    PartitionExpressionError
        If the expression cannot be parsed.
    """
    try:
        return expression_parser.parse_string(expression, parse_all=True)[0]
    except pp.ParseException as err:
        raise PartitionExpressionError("partitioning expression parse error", str(err)) from None


def cook_partitioning_expression(
    catalog: Catalog,
    relid: int,
    expression: str,
    types: TypeRegistry | None = None,
) -> CookedExpression:
    """
    Parse and analyze a partitioning expression of a relation.

    Parameters
    ----------
    catalog : Catalog
        Catalog holding the relation.
    relid : int
        The partitioned relation.
    expression : str
        User-supplied expression, e.g. ``"id"`` or ``"lower(name)"``.
    types : TypeRegistry, optional
        Type lookup for the expression's result type.

    Returns
    -------
    CookedExpression
        Serialized tree and result type metadata.

    Raises
    ------
    PartitionExpressionError
        If the expression cannot be parsed or analyzed.
    ConfigurationError
        If the expression calls mutable functions or does not reference exactly the relation.
    """
    types = types or TypeRegistry()
    if not catalog.relation_exists(relid):
        raise ConfigurationError(f"relation {relid} does not exist")

    raw = parse_partitioning_expression(expression)
    try:
        node = _analyze(raw, catalog.relation_name(relid), catalog.columns(relid))
    except _AnalyzeError as err:
        raise PartitionExpressionError("partitioning expression analyze error", str(err)) from None

    if contain_mutable_functions(node):
        raise ConfigurationError("functions in partitioning expression must be marked IMMUTABLE")
    if expression_varnos(node) != {PART_EXPR_VARNO}:
        raise ConfigurationError("partitioning expression may reference only one table")

    info = types.lookup(expr_type(node))
    logger.debug(f"cooked partitioning expression {expression!r} of relation {relid} as {info.name}")
    return CookedExpression(
        expr=expression,
        cooked=node_to_string(node),
        type=info.name,
        collation=info.collation,
        byval=info.byval,
        length=info.length,
    )
