"""
Rule expression environment.

Rules are written in CEL (Common Expression Language) and run on the
``celpy`` interpreter. celpy parses and evaluates, but does not check an
expression against declared variable types, so this module adds a
static type-check over the parsed tree. Types are inferred bottom-up:

- every free identifier must be a declared variable (or a variable bound
  by a comprehension macro such as ``exists(p, ...)``, typed as an
  element of the receiver)
- every field selection must resolve through the pydantic models of the
  declared variables
- operators and functions must have an overload for their operand types,
  so ``query.cmd == 1`` or ``query.sql > 5`` are rejected. Numeric types
  do not mix: costs are doubles and are compared with ``100.0``
- the names of called functions must be known

Values the checker cannot see into (map values typed ``Any``, ``dyn(x)``)
have the type ``dyn``, which matches anything.

Declared variables:
    query       VetQuery
    config      VetConfig
    postgresql  PostgreSQL   (empty unless the query was explained)
    mysql       MySQL        (empty unless the query was explained)

Usage:
    env = RuleEnvironment()
    program = env.program(env.compile('query.cmd == ":many"'))
    program.evaluate(build_activation(query=vq, config=vc))
"""

from __future__ import annotations

import inspect
import logging
import types
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union, get_args, get_origin

import celpy
from celpy import celtypes
from lark import Token, Tree
from pydantic import BaseModel

from sqlvet import strings
from sqlvet.explain import MySQL, PostgreSQL
from sqlvet.models import VetConfig, VetQuery

logger = logging.getLogger(__name__)

VARIABLES: dict[str, type[BaseModel]] = {
    "query": VetQuery,
    "config": VetConfig,
    "postgresql": PostgreSQL,
    "mysql": MySQL,
}

_INDEX = "[]"


class ExpressionError(Exception):
    """An expression failed to parse or type-check."""


# ============================================================================
# Types
# ============================================================================


@dataclass(frozen=True)
class CelType:
    """Static type of an expression, e.g. ``int`` or ``list(string)``."""

    name: str
    params: tuple[CelType, ...] = ()
    model: type[BaseModel] | None = None

    def __str__(self) -> str:
        if self.params:
            return f"{self.name}({', '.join(str(p) for p in self.params)})"
        return self.name

    @property
    def element(self) -> CelType:
        """Element type of a list, key type of a map."""
        return self.params[0] if self.params else DYN


BOOL = CelType("bool")
INT = CelType("int")
UINT = CelType("uint")
DOUBLE = CelType("double")
STRING = CelType("string")
BYTES = CelType("bytes")
NULL = CelType("null_type")
TYPE = CelType("type")
TIMESTAMP = CelType("timestamp")
DURATION = CelType("duration")
DYN = CelType("dyn")


def list_of(element: CelType) -> CelType:
    return CelType("list", (element,))


def map_of(key: CelType, value: CelType) -> CelType:
    return CelType("map", (key, value))


def model_type(model: type[BaseModel]) -> CelType:
    return CelType(model.__name__, model=model)


_SCALARS = {bool: BOOL, int: INT, float: DOUBLE, str: STRING, bytes: BYTES}


def _unwrap_optional(tp: Any) -> Any:
    if get_origin(tp) in (Union, types.UnionType):
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def cel_type(tp: Any) -> CelType:
    """CEL type of a python annotation as seen through ``to_cel``."""
    tp = _unwrap_optional(tp)
    origin = get_origin(tp)
    args = get_args(tp)
    if origin is list:
        return list_of(cel_type(args[0]) if args else DYN)
    if origin is dict:
        return map_of(cel_type(args[0]), cel_type(args[1])) if args else map_of(DYN, DYN)
    if tp in _SCALARS:
        return _SCALARS[tp]
    if inspect.isclass(tp) and issubclass(tp, BaseModel):
        return model_type(tp)
    return DYN


def assignable(actual: CelType, expected: CelType) -> bool:
    """Whether a value of type ``actual`` is accepted where ``expected`` is."""
    if DYN in (actual, expected):
        return True
    if actual.name != expected.name or actual.model is not expected.model:
        return False
    if len(actual.params) != len(expected.params):
        return False
    return all(assignable(a, e) for a, e in zip(actual.params, expected.params))


def _unify(a: CelType, b: CelType) -> CelType | None:
    if a == DYN:
        return b
    if b == DYN or assignable(a, b):
        return a
    return None


# ============================================================================
# Functions
# ============================================================================

Overload = tuple[tuple[CelType, ...], CelType]

_ANY_LIST = list_of(DYN)
_ANY_MAP = map_of(DYN, DYN)

_TIMESTAMP_ACCESSORS = [((TIMESTAMP,), INT), ((TIMESTAMP, STRING), INT)]
_TIME_ACCESSORS = [*_TIMESTAMP_ACCESSORS, ((DURATION,), INT)]

# Signatures of callable functions. A method call passes its receiver as
# the first operand.
OVERLOADS: dict[str, list[Overload]] = {
    "size": [((STRING,), INT), ((BYTES,), INT), ((_ANY_LIST,), INT), ((_ANY_MAP,), INT)],
    "contains": [((STRING, STRING), BOOL), ((_ANY_LIST, DYN), BOOL), ((_ANY_MAP, DYN), BOOL)],
    "startsWith": [((STRING, STRING), BOOL)],
    "endsWith": [((STRING, STRING), BOOL)],
    "matches": [((STRING, STRING), BOOL)],
    "type": [((DYN,), TYPE)],
    "bool": [((BOOL,), BOOL), ((STRING,), BOOL)],
    "bytes": [((BYTES,), BYTES), ((STRING,), BYTES)],
    "double": [((t,), DOUBLE) for t in (INT, UINT, DOUBLE, STRING)],
    "int": [((t,), INT) for t in (INT, UINT, DOUBLE, STRING, TIMESTAMP)],
    "uint": [((t,), UINT) for t in (INT, UINT, DOUBLE, STRING)],
    "string": [((DYN,), STRING)],
    "duration": [((STRING,), DURATION), ((DURATION,), DURATION)],
    "timestamp": [((STRING,), TIMESTAMP), ((TIMESTAMP,), TIMESTAMP)],
    "list": [((_ANY_LIST,), _ANY_LIST)],
    "map": [((_ANY_MAP,), _ANY_MAP)],
    "getDate": _TIMESTAMP_ACCESSORS,
    "getDayOfMonth": _TIMESTAMP_ACCESSORS,
    "getDayOfWeek": _TIMESTAMP_ACCESSORS,
    "getDayOfYear": _TIMESTAMP_ACCESSORS,
    "getFullYear": _TIMESTAMP_ACCESSORS,
    "getMonth": _TIMESTAMP_ACCESSORS,
    "getHours": _TIME_ACCESSORS,
    "getMilliseconds": _TIME_ACCESSORS,
    "getMinutes": _TIME_ACCESSORS,
    "getSeconds": _TIME_ACCESSORS,
    # String extensions, see sqlvet.strings
    "lowerAscii": [((STRING,), STRING)],
    "upperAscii": [((STRING,), STRING)],
    "replace": [((STRING, STRING, STRING), STRING), ((STRING, STRING, STRING, INT), STRING)],
    "split": [((STRING, STRING), list_of(STRING)), ((STRING, STRING, INT), list_of(STRING))],
    "substring": [((STRING, INT), STRING), ((STRING, INT, INT), STRING)],
    "trim": [((STRING,), STRING)],
    "indexOf": [((STRING, STRING), INT), ((STRING, STRING, INT), INT)],
    "lastIndexOf": [((STRING, STRING), INT), ((STRING, STRING, INT), INT)],
    "join": [((list_of(STRING),), STRING), ((list_of(STRING), STRING), STRING)],
}

# Comprehension macros by number of arguments. min and reduce are celpy
# extensions.
_MACROS = {
    "all": 2,
    "exists": 2,
    "exists_one": 2,
    "filter": 2,
    "map": 2,
    "reduce": 4,
    "min": 0,
}

# Type identifiers that may appear as bare idents, e.g. type(x) == string.
_TYPE_IDENTS = frozenset({
    "bool", "bytes", "double", "int", "list", "map", "null_type", "string", "type", "uint",
})

_LITERALS = {
    "INT_LIT": INT,
    "UINT_LIT": UINT,
    "FLOAT_LIT": DOUBLE,
    "STRING_LIT": STRING,
    "MLSTRING_LIT": STRING,
    "BYTES_LIT": BYTES,
    "BOOL_LIT": BOOL,
    "NULL_LIT": NULL,
}

_OPERATORS = {
    "relation_lt": "_<_",
    "relation_le": "_<=_",
    "relation_gt": "_>_",
    "relation_ge": "_>=_",
    "relation_eq": "_==_",
    "relation_ne": "_!=_",
    "relation_in": "@in",
    "addition_add": "_+_",
    "addition_sub": "_-_",
    "multiplication_mul": "_*_",
    "multiplication_div": "_/_",
    "multiplication_mod": "_%_",
}

_ORDERED = frozenset({"int", "uint", "double", "string", "bytes", "bool", "timestamp", "duration"})

_ARITHMETIC = {
    "_+_": frozenset({"int", "uint", "double", "string", "bytes", "list", "duration"}),
    "_-_": frozenset({"int", "uint", "double", "duration"}),
    "_*_": frozenset({"int", "uint", "double"}),
    "_/_": frozenset({"int", "uint", "double"}),
    "_%_": frozenset({"int", "uint"}),
}

_TIME_ARITHMETIC = {
    ("_+_", "timestamp", "duration"): TIMESTAMP,
    ("_+_", "duration", "timestamp"): TIMESTAMP,
    ("_-_", "timestamp", "duration"): TIMESTAMP,
    ("_-_", "timestamp", "timestamp"): DURATION,
}


# ============================================================================
# Type checker
# ============================================================================


def _children(node: Tree) -> list[Any]:
    return [child for child in node.children if child is not None]


def _path(node: Any) -> list[str] | None:
    """
    Reduce a member expression to its selection path.

    ``query.sql`` -> ["query", "sql"]; ``a.b[0].c`` -> ["a", "b", "[]", "c"].
    Returns None for anything that is not a plain selection chain.
    """
    if not isinstance(node, Tree):
        return None
    kids = _children(node)
    if node.data == "ident":
        return [str(kids[0])] if kids else None
    if node.data == "member_dot":
        if len(kids) != 2 or not isinstance(kids[1], Token):
            return None
        base = _path(kids[0])
        return None if base is None else [*base, str(kids[1])]
    if node.data == "member_index":
        base = _path(kids[0]) if kids else None
        return None if base is None else [*base, _INDEX]
    if len(kids) == 1 and isinstance(kids[0], Tree):
        return _path(kids[0])
    return None


def _describe(node: Any) -> str:
    path = _path(node)
    if not path:
        return "expression"
    text = path[0]
    for segment in path[1:]:
        text = f"{text}{segment}" if segment == _INDEX else f"{text}.{segment}"
    return text


def _no_overload(name: str, operands: list[CelType], method: bool = False) -> ExpressionError:
    if method:
        rest = ", ".join(str(t) for t in operands[1:])
        applied = f"{operands[0]}.({rest})"
    else:
        applied = f"({', '.join(str(t) for t in operands)})"
    return ExpressionError(f"found no matching overload for '{name}' applied to '{applied}'")


def cel_field_name(name: str, info: Any) -> str:
    """Name under which a pydantic field is visible to expressions."""
    return info.serialization_alias or info.alias or name


class TypeChecker:
    """Static check of a parsed expression against declared variable types."""

    def __init__(
        self,
        declarations: Mapping[str, type[BaseModel]],
        overloads: Mapping[str, list[Overload]] | None = None,
    ) -> None:
        self._declarations = {name: model_type(model) for name, model in declarations.items()}
        self._overloads = dict(OVERLOADS if overloads is None else overloads)

    def check(self, tree: Tree) -> CelType:
        """
        Infer the type of an expression.

        Raises:
            ExpressionError: On an undeclared reference, an unresolvable
                field, or an operator or function without a matching overload.
        """
        return self._infer(tree, self._declarations)

    def _infer(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        visit = getattr(self, f"_visit_{node.data}", None)
        if visit is None:
            raise ExpressionError(f"unsupported expression '{node.data}'")
        return visit(node, scope)

    def _passthrough(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        return self._infer(_children(node)[0], scope)

    _visit_member = _passthrough
    _visit_primary = _passthrough
    _visit_paren_expr = _passthrough

    def _visit_expr(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        if len(kids) == 1:
            return self._infer(kids[0], scope)
        condition, then, otherwise = (self._infer(kid, scope) for kid in kids)
        result = _unify(then, otherwise)
        if not assignable(condition, BOOL) or result is None:
            raise _no_overload("_?_:_", [condition, then, otherwise])
        return result

    def _logical(self, name: str, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        if len(kids) == 1:
            return self._infer(kids[0], scope)
        operands = [self._infer(kid, scope) for kid in kids]
        if not all(assignable(t, BOOL) for t in operands):
            raise _no_overload(name, operands)
        return BOOL

    def _visit_conditionalor(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        return self._logical("_||_", node, scope)

    def _visit_conditionaland(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        return self._logical("_&&_", node, scope)

    def _binary(self, node: Tree, scope: Mapping[str, CelType]) -> tuple[str, CelType, CelType] | None:
        kids = _children(node)
        if len(kids) == 1:
            return None
        operator, right = kids
        left = self._infer(_children(operator)[0], scope)
        return _OPERATORS[operator.data], left, self._infer(right, scope)

    def _visit_relation(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        binary = self._binary(node, scope)
        if binary is None:
            return self._passthrough(node, scope)
        name, left, right = binary

        if name == "@in":
            ok = right == DYN or (right.name in ("list", "map") and assignable(left, right.element))
        elif name in ("_==_", "_!=_"):
            ok = assignable(left, right) or self._null_comparison(left, right)
        else:
            kind = right if left == DYN else left
            ok = assignable(left, right) and (kind == DYN or kind.name in _ORDERED)

        if not ok:
            raise _no_overload(name, [left, right])
        return BOOL

    @staticmethod
    def _null_comparison(left: CelType, right: CelType) -> bool:
        other = right if left == NULL else left if right == NULL else None
        return other is not None and (other.model is not None or other.name in ("list", "map"))

    def _arithmetic(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        binary = self._binary(node, scope)
        if binary is None:
            return self._passthrough(node, scope)
        name, left, right = binary

        timed = _TIME_ARITHMETIC.get((name, left.name, right.name))
        if timed is not None:
            return timed
        result = _unify(left, right)
        if result is None or (result != DYN and result.name not in _ARITHMETIC[name]):
            raise _no_overload(name, [left, right])
        return result

    _visit_addition = _arithmetic
    _visit_multiplication = _arithmetic

    def _visit_unary(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        if len(kids) == 1:
            return self._infer(kids[0], scope)
        operator, operand_node = kids
        operand = self._infer(operand_node, scope)
        if operator.data == "unary_not":
            if assignable(operand, BOOL):
                return BOOL
            raise _no_overload("!_", [operand])
        if operand == DYN or operand.name in ("int", "double", "duration"):
            return operand
        raise _no_overload("-_", [operand])

    def _visit_member_dot(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        target, field = _children(node)
        return self._select(self._infer(target, scope), str(field), _describe(target))

    def _visit_member_index(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        target, index = _children(node)
        return self._index(self._infer(target, scope), self._infer(index, scope), _describe(target))

    def _visit_member_object(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        raise ExpressionError("message construction is not supported")

    def _visit_member_dot_arg(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        target, method = kids[0], str(kids[1])
        arguments = _children(kids[2]) if len(kids) > 2 else []
        receiver = self._infer(target, scope)
        if method in _MACROS:
            return self._macro(method, receiver, arguments, scope)
        operands = [receiver, *(self._infer(arg, scope) for arg in arguments)]
        return self._call(method, operands, method=True)

    def _visit_ident_arg(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        name = str(kids[0])
        arguments = _children(kids[1]) if len(kids) > 1 else []

        if name in ("has", "dyn"):
            if len(arguments) != 1:
                raise ExpressionError(f"{name}() takes exactly one argument")
            if name == "has":
                path = _path(arguments[0])
                if not path or len(path) < 2 or path[-1] == _INDEX:
                    raise ExpressionError("invalid argument to has() macro")
            self._infer(arguments[0], scope)
            return BOOL if name == "has" else DYN

        return self._call(name, [self._infer(arg, scope) for arg in arguments])

    def _visit_dot_ident_arg(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        return self._visit_ident_arg(node, self._declarations)

    def _visit_ident(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        name = str(_children(node)[0])
        if name in scope:
            return scope[name]
        if name in _TYPE_IDENTS:
            return TYPE
        raise ExpressionError(f"undeclared reference to '{name}'")

    def _visit_dot_ident(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        return self._visit_ident(node, self._declarations)

    def _visit_literal(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        token = _children(node)[0]
        return _LITERALS.get(token.type, DYN)

    def _visit_list_lit(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        items = [self._infer(kid, scope) for kid in _children(kids[0])] if kids else []
        return list_of(self._common(items))

    def _visit_map_lit(self, node: Tree, scope: Mapping[str, CelType]) -> CelType:
        kids = _children(node)
        entries = [self._infer(kid, scope) for kid in _children(kids[0])] if kids else []
        return map_of(self._common(entries[0::2]), self._common(entries[1::2]))

    @staticmethod
    def _common(items: list[CelType]) -> CelType:
        common: CelType | None = None
        for item in items:
            common = item if common is None else (_unify(common, item) or DYN)
        return common or DYN

    def _select(self, tp: CelType, segment: str, walked: str) -> CelType:
        if tp == DYN:
            return DYN
        if tp.model is not None:
            for name, info in tp.model.model_fields.items():
                if cel_field_name(name, info) == segment:
                    return cel_type(info.annotation)
            raise ExpressionError(f"undefined field '{segment}' on '{walked}' of type '{tp}'")
        if tp.name == "map" and assignable(STRING, tp.element):
            return tp.params[1]
        raise ExpressionError(f"'{walked}' of type '{tp}' does not support field selection")

    def _index(self, container: CelType, index: CelType, walked: str) -> CelType:
        if container == DYN:
            return DYN
        if container.name == "list":
            if assignable(index, INT) or assignable(index, UINT):
                return container.element
            raise _no_overload("_[_]", [container, index])
        if container.name == "map":
            if assignable(index, container.element):
                return container.params[1]
            raise _no_overload("_[_]", [container, index])
        raise ExpressionError(f"'{walked}' of type '{container}' does not support indexing")

    def _macro(
        self,
        name: str,
        receiver: CelType,
        arguments: list[Any],
        scope: Mapping[str, CelType],
    ) -> CelType:
        if receiver != DYN and receiver.name not in ("list", "map"):
            raise _no_overload(name, [receiver], method=True)
        if len(arguments) != _MACROS[name]:
            raise ExpressionError(f"{name}() macro takes {_MACROS[name]} argument(s)")
        element = receiver.element

        if name == "min":
            return element
        if name == "reduce":
            accumulator, variable = (self._variable(name, arg) for arg in arguments[:2])
            initial = self._infer(arguments[2], scope)
            inner = {**scope, accumulator: initial, variable: element}
            body = self._infer(arguments[3], inner)
            result = _unify(initial, body)
            if result is None:
                raise _no_overload(name, [initial, body])
            return result

        variable = self._variable(name, arguments[0])
        body = self._infer(arguments[1], {**scope, variable: element})
        if name == "map":
            return list_of(body)
        if not assignable(body, BOOL):
            raise ExpressionError(f"{name}() predicate must be bool, found '{body}'")
        return list_of(element) if name == "filter" else BOOL

    @staticmethod
    def _variable(macro: str, argument: Any) -> str:
        path = _path(argument)
        if not path or len(path) != 1:
            raise ExpressionError(f"argument of {macro}() must be a simple name")
        return path[0]

    def _call(self, name: str, operands: list[CelType], method: bool = False) -> CelType:
        overloads = self._overloads.get(name)
        if overloads is None:
            raise ExpressionError(f"undeclared reference to '{name}'")
        for signature, result in overloads:
            if len(signature) == len(operands) and all(
                assignable(actual, expected) for actual, expected in zip(operands, signature)
            ):
                return result
        raise _no_overload(name, operands, method)


# ============================================================================
# Evaluation
# ============================================================================


def to_cel(value: BaseModel) -> Any:
    """Convert a pydantic model into a CEL value (field names as seen by rules)."""
    return celpy.json_to_cel(value.model_dump(mode="json", by_alias=True))

def build_activation(
    query: VetQuery,
    config: VetConfig,
    postgresql: PostgreSQL | None = None,
    mysql: MySQL | None = None,
) -> dict[str, Any]:
    """
    Build the evaluation environment.

    Explain variables that were not computed are bound to empty structures
    so that expressions see zero values rather than missing variables.
    """
    return {
        "query": to_cel(query),
        "config": to_cel(config),
        "postgresql": to_cel(postgresql or PostgreSQL()),
        "mysql": to_cel(mysql or MySQL()),
    }


class Program:
    """An executable, type-checked expression."""

    def __init__(self, source: str, runner: Any) -> None:
        self.source = source
        self._runner = runner

    def evaluate(self, activation: Mapping[str, Any]) -> Any:
        """
        Evaluate against a prepared activation.

        Returns the raw CEL value; callers decide what a non-bool means.

        Raises:
            ExpressionError: On a runtime evaluation failure.
        """
        try:
            return self._runner.evaluate(dict(activation))
        except (celpy.CELEvalError, TypeError, ValueError) as e:
            raise ExpressionError(f"evaluation error: {e}") from e


def is_bool(value: Any) -> bool:
    return isinstance(value, (celtypes.BoolType, bool))


class RuleEnvironment:
    """CEL environment with the fixed rule variable set."""

    def __init__(self, declarations: Mapping[str, type[BaseModel]] | None = None) -> None:
        self._env = celpy.Environment()
        self._checker = TypeChecker(declarations or VARIABLES)
        self._functions = dict(strings.FUNCTIONS)

    def compile(self, source: str) -> Tree:
        """
        Parse and type-check an expression.

        Raises:
            ExpressionError: If the expression does not parse or type-check.
        """
        try:
            tree = self._env.compile(source)
        except celpy.CELParseError as e:
            raise ExpressionError(f"syntax error: {e}") from e
        self._checker.check(tree)
        return tree

    def program(self, tree: Tree, source: str = "") -> Program:
        """Build an executable program from a checked tree."""
        return Program(source, self._env.program(tree, self._functions))
