"""Static type checker for filter expressions."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from logwire.core.errors import FilterCompileError
from logwire.core.filter.syntax import (
    Binary,
    Bind,
    Call,
    Comprehension,
    Conditional,
    Has,
    Ident,
    Index,
    ListExpr,
    Literal,
    MapExpr,
    Node,
    Select,
    Unary,
)


@dataclass(frozen=True, slots=True)
class Type:
    """A checked expression type. ``params`` holds element/key/value types."""

    name: str
    params: tuple["Type", ...] = ()

    def __str__(self) -> str:
        if not self.params:
            return self.name
        return f"{self.name}({', '.join(str(p) for p in self.params)})"


BOOL = Type("bool")
INT = Type("int")
UINT = Type("uint")
DOUBLE = Type("double")
STRING = Type("string")
BYTES = Type("bytes")
NULL = Type("null_type")
TIMESTAMP = Type("timestamp")
DURATION = Type("duration")
DYN = Type("dyn")


def list_of(elem: Type) -> Type:
    return Type("list", (elem,))


def map_of(key: Type, value: Type) -> Type:
    return Type("map", (key, value))


def optional_of(elem: Type) -> Type:
    return Type("optional", (elem,))


NUMERIC = frozenset({"int", "uint", "double"})
ORDERED = frozenset(
    {"int", "uint", "double", "string", "bytes", "bool", "timestamp", "duration"}
)

# Arithmetic overloads by operand type names. Shared with the runtime, which
# maps Python values onto the same names.
ARITHMETIC: dict[str, dict[tuple[str, str], str]] = {
    "+": {
        ("int", "int"): "int",
        ("uint", "uint"): "uint",
        ("double", "double"): "double",
        ("string", "string"): "string",
        ("bytes", "bytes"): "bytes",
        ("list", "list"): "list",
        ("timestamp", "duration"): "timestamp",
        ("duration", "timestamp"): "timestamp",
        ("duration", "duration"): "duration",
    },
    "-": {
        ("int", "int"): "int",
        ("uint", "uint"): "uint",
        ("double", "double"): "double",
        ("timestamp", "timestamp"): "duration",
        ("timestamp", "duration"): "timestamp",
        ("duration", "duration"): "duration",
    },
    "*": {("int", "int"): "int", ("uint", "uint"): "uint", ("double", "double"): "double"},
    "/": {("int", "int"): "int", ("uint", "uint"): "uint", ("double", "double"): "double"},
    "%": {("int", "int"): "int", ("uint", "uint"): "uint"},
}

_SIMPLE = {t.name: t for t in (BOOL, INT, UINT, DOUBLE, STRING, BYTES, NULL, TIMESTAMP, DURATION)}


def assignable(a: Type, b: Type) -> bool:
    """Return True if values of type ``a`` may be used where ``b`` is expected."""
    if a == DYN or b == DYN:
        return True
    if a.name != b.name or len(a.params) != len(b.params):
        return False
    return all(assignable(x, y) for x, y in zip(a.params, b.params, strict=True))


def _match(args: tuple[Type, ...], expected: tuple[Type, ...]) -> bool:
    return len(args) == len(expected) and all(
        assignable(a, e) for a, e in zip(args, expected, strict=True)
    )


def _join(types: list[Type]) -> Type:
    if not types:
        return DYN
    first = types[0]
    return first if all(t == first for t in types) else DYN


# --- Function signatures ---
# Each entry maps argument types (receiver first for methods) to a result
# type, or None when no overload applies.

Signature = Callable[[tuple[Type, ...]], Type | None]


def _fixed(result: Type, *overloads: tuple[Type, ...]) -> Signature:
    def sig(args: tuple[Type, ...]) -> Type | None:
        return result if any(_match(args, o) for o in overloads) else None

    return sig


def _sized(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 1 and (args[0].name in ("string", "bytes", "list", "map", "dyn")):
        return INT
    return None


def _opt_elem(t: Type) -> Type | None:
    if t.name == "optional":
        return t.params[0]
    if t == DYN:
        return DYN
    return None


def _or_value(args: tuple[Type, ...]) -> Type | None:
    if len(args) != 2 or (elem := _opt_elem(args[0])) is None:
        return None
    if elem == DYN:
        return args[1]
    return elem if assignable(args[1], elem) else None


def _has_value(args: tuple[Type, ...]) -> Type | None:
    return BOOL if len(args) == 1 and _opt_elem(args[0]) is not None else None


def _value(args: tuple[Type, ...]) -> Type | None:
    return _opt_elem(args[0]) if len(args) == 1 else None


def _or(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 2 and _opt_elem(args[0]) is not None and _opt_elem(args[1]) is not None:
        return args[0] if args[0] == args[1] else optional_of(DYN)
    return None


def _optional_of(args: tuple[Type, ...]) -> Type | None:
    return optional_of(args[0]) if len(args) == 1 else None


def _any_one(result: Type) -> Signature:
    return lambda args: result if len(args) == 1 else None


def _is_list(t: Type) -> bool:
    return t.name == "list" or t == DYN


def _elem(t: Type) -> Type:
    return t.params[0] if t.name == "list" else DYN


def _same_list(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 1 and _is_list(args[0]):
        return list_of(_elem(args[0]))
    return None


def _reverse(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 1 and args[0] in (STRING, DYN):
        return args[0]
    return _same_list(args)


def _slice(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 3 and _is_list(args[0]) and _match(args[1:], (INT, INT)):
        return list_of(_elem(args[0]))
    return None


def _flatten(args: tuple[Type, ...]) -> Type | None:
    if not args or not _is_list(args[0]):
        return None
    if len(args) == 2 and assignable(args[1], INT):
        return list_of(DYN)
    if len(args) == 1:
        inner = _elem(args[0])
        return list_of(_elem(inner) if inner.name == "list" else DYN)
    return None


def _first_last(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 1 and _is_list(args[0]):
        return optional_of(_elem(args[0]))
    return None


def _join_strings(args: tuple[Type, ...]) -> Type | None:
    if not args or not assignable(args[0], list_of(STRING)):
        return None
    if len(args) == 1 or (len(args) == 2 and assignable(args[1], STRING)):
        return STRING
    return None


def _format(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 2 and assignable(args[0], STRING) and _is_list(args[1]):
        return STRING
    return None


def _set_relation(args: tuple[Type, ...]) -> Type | None:
    if (
        len(args) == 2
        and _is_list(args[0])
        and _is_list(args[1])
        and assignable(_elem(args[1]), _elem(args[0]))
    ):
        return BOOL
    return None


def _is_numeric(t: Type) -> bool:
    return t.name in NUMERIC or t == DYN


def _extremum(args: tuple[Type, ...]) -> Type | None:
    # math.greatest(a, b, ...) or math.greatest([a, b, ...])
    if len(args) == 1 and args[0].name == "list":
        args = (args[0].params[0],)
    if not args or not all(_is_numeric(a) for a in args):
        return None
    return _join(list(args))


def _numeric_identity(args: tuple[Type, ...]) -> Type | None:
    if len(args) == 1 and _is_numeric(args[0]):
        return args[0]
    return None


def _bitwise(args: tuple[Type, ...]) -> Type | None:
    for t in (INT, UINT):
        if _match(args, (t, t)):
            return args[0] if args[0] != DYN else args[1]
    return None


_TIME_PART = _fixed(INT, (TIMESTAMP,), (TIMESTAMP, STRING))
_ROUNDING = _fixed(DOUBLE, (DOUBLE,))
_DOUBLE_TEST = _fixed(BOOL, (DOUBLE,))

MEMBER_FUNCTIONS: dict[str, Signature] = {
    "contains": _fixed(BOOL, (STRING, STRING)),
    "startsWith": _fixed(BOOL, (STRING, STRING)),
    "endsWith": _fixed(BOOL, (STRING, STRING)),
    "matches": _fixed(BOOL, (STRING, STRING)),
    "lowerAscii": _fixed(STRING, (STRING,)),
    "upperAscii": _fixed(STRING, (STRING,)),
    "trim": _fixed(STRING, (STRING,)),
    "split": _fixed(list_of(STRING), (STRING, STRING), (STRING, STRING, INT)),
    "replace": _fixed(STRING, (STRING, STRING, STRING), (STRING, STRING, STRING, INT)),
    "charAt": _fixed(STRING, (STRING, INT)),
    "indexOf": _fixed(INT, (STRING, STRING), (STRING, STRING, INT)),
    "lastIndexOf": _fixed(INT, (STRING, STRING), (STRING, STRING, INT)),
    "substring": _fixed(STRING, (STRING, INT), (STRING, INT, INT)),
    "join": _join_strings,
    "format": _format,
    "reverse": _reverse,
    "slice": _slice,
    "flatten": _flatten,
    "sort": _same_list,
    "distinct": _same_list,
    "first": _first_last,
    "last": _first_last,
    "size": _sized,
    "orValue": _or_value,
    "hasValue": _has_value,
    "value": _value,
    "or": _or,
    "getFullYear": _TIME_PART,
    "getMonth": _TIME_PART,
    "getDate": _TIME_PART,
    "getDayOfMonth": _TIME_PART,
    "getDayOfWeek": _TIME_PART,
    "getDayOfYear": _TIME_PART,
    "getHours": _TIME_PART,
    "getMinutes": _TIME_PART,
    "getSeconds": _TIME_PART,
}

GLOBAL_FUNCTIONS: dict[str, Signature] = {
    "size": _sized,
    "matches": _fixed(BOOL, (STRING, STRING)),
    "int": _fixed(INT, (INT,), (UINT,), (DOUBLE,), (STRING,), (TIMESTAMP,)),
    "uint": _fixed(UINT, (INT,), (UINT,), (DOUBLE,), (STRING,)),
    "double": _fixed(DOUBLE, (INT,), (UINT,), (DOUBLE,), (STRING,)),
    "string": _any_one(STRING),
    "bytes": _fixed(BYTES, (STRING,), (BYTES,)),
    "bool": _fixed(BOOL, (BOOL,), (STRING,)),
    "timestamp": _fixed(TIMESTAMP, (STRING,), (TIMESTAMP,), (INT,)),
    "duration": _fixed(DURATION, (STRING,), (DURATION,)),
    "dyn": _any_one(DYN),
    "optional.of": _optional_of,
    "optional.none": lambda args: optional_of(DYN) if not args else None,
    "strings.quote": _fixed(STRING, (STRING,)),
    "base64.encode": _fixed(STRING, (BYTES,)),
    "base64.decode": _fixed(BYTES, (STRING,)),
    "sets.contains": _set_relation,
    "sets.equivalent": _set_relation,
    "sets.intersects": _set_relation,
    "lists.range": lambda args: list_of(INT) if _match(args, (INT,)) else None,
    "math.greatest": _extremum,
    "math.least": _extremum,
    "math.abs": _numeric_identity,
    "math.sign": _numeric_identity,
    "math.sqrt": _fixed(DOUBLE, (INT,), (UINT,), (DOUBLE,)),
    "math.ceil": _ROUNDING,
    "math.floor": _ROUNDING,
    "math.round": _ROUNDING,
    "math.trunc": _ROUNDING,
    "math.isNaN": _DOUBLE_TEST,
    "math.isInf": _DOUBLE_TEST,
    "math.isFinite": _DOUBLE_TEST,
    "math.bitAnd": _bitwise,
    "math.bitOr": _bitwise,
    "math.bitXor": _bitwise,
    "math.bitNot": _fixed(INT, (INT,)),
    "math.bitShiftLeft": _fixed(INT, (INT, INT)),
    "math.bitShiftRight": _fixed(INT, (INT, INT)),
}


class Checker:
    """Computes the type of every node, raising on the first type error."""

    def __init__(self, env: Mapping[str, Type], source: str) -> None:
        self.env = dict(env)
        self.source = source

    def error(self, node: Node, message: str) -> FilterCompileError:
        return FilterCompileError(message, self.source, node.pos)

    def check(self, node: Node, scope: Mapping[str, Type] | None = None) -> Type:
        scope = self.env if scope is None else scope
        method = getattr(self, f"_check_{type(node).__name__}")
        return method(node, scope)

    def _overload_error(self, node: Node, name: str, args: tuple[Type, ...]) -> FilterCompileError:
        rendered = ", ".join(str(a) for a in args)
        return self.error(node, f"found no matching overload for '{name}' applied to '({rendered})'")

    def _check_Literal(self, node: Literal, scope: Mapping[str, Type]) -> Type:
        if node.type_name == "int" and node.value > 2**63 - 1:
            raise self.error(node, "int literal out of range")
        return _SIMPLE[node.type_name]

    def _check_Ident(self, node: Ident, scope: Mapping[str, Type]) -> Type:
        if node.name not in scope:
            raise self.error(node, f"undeclared reference to '{node.name}'")
        return scope[node.name]

    def _select_type(self, node: Node, operand: Type, field: str) -> Type:
        if operand == DYN:
            return DYN
        if operand.name == "map" and assignable(STRING, operand.params[0]):
            return operand.params[1]
        raise self.error(node, f"type '{operand}' does not support field selection")

    def _check_Select(self, node: Select, scope: Mapping[str, Type]) -> Type:
        operand = self.check(node.operand, scope)
        if operand.name == "optional":
            return optional_of(self._select_type(node, operand.params[0], node.field))
        result = self._select_type(node, operand, node.field)
        return optional_of(result) if node.optional else result

    def _index_type(self, node: Node, operand: Type, index: Type) -> Type:
        if operand == DYN:
            return DYN
        if operand.name == "list":
            if not (index.name in ("int", "uint") or index == DYN):
                raise self._overload_error(node, "_[_]", (operand, index))
            return operand.params[0]
        if operand.name == "map":
            if not assignable(index, operand.params[0]):
                raise self._overload_error(node, "_[_]", (operand, index))
            return operand.params[1]
        raise self._overload_error(node, "_[_]", (operand, index))

    def _check_Index(self, node: Index, scope: Mapping[str, Type]) -> Type:
        operand = self.check(node.operand, scope)
        index = self.check(node.index, scope)
        if operand.name == "optional":
            return optional_of(self._index_type(node, operand.params[0], index))
        result = self._index_type(node, operand, index)
        return optional_of(result) if node.optional else result

    def _check_Has(self, node: Has, scope: Mapping[str, Type]) -> Type:
        operand = self.check(node.select.operand, scope)
        if operand != DYN and operand.name != "map":
            raise self.error(node, f"type '{operand}' does not support field selection")
        return BOOL

    def _check_Call(self, node: Call, scope: Mapping[str, Type]) -> Type:
        args = tuple(self.check(a, scope) for a in node.args)
        if node.target is not None:
            table, args = MEMBER_FUNCTIONS, (self.check(node.target, scope), *args)
        else:
            table = GLOBAL_FUNCTIONS
        signature = table.get(node.function)
        if signature is None:
            raise self.error(node, f"undeclared reference to '{node.function}'")
        result = signature(args)
        if result is None:
            raise self._overload_error(node, node.function, args)
        return result

    def _check_ListExpr(self, node: ListExpr, scope: Mapping[str, Type]) -> Type:
        return list_of(_join([self.check(e, scope) for e in node.elements]))

    def _check_MapExpr(self, node: MapExpr, scope: Mapping[str, Type]) -> Type:
        keys, values = [], []
        for k, v in node.entries:
            key = self.check(k, scope)
            if key.name not in ("int", "uint", "string", "bool", "dyn"):
                raise self.error(k, f"unsupported map key type '{key}'")
            keys.append(key)
            values.append(self.check(v, scope))
        return map_of(_join(keys), _join(values))

    def _check_Unary(self, node: Unary, scope: Mapping[str, Type]) -> Type:
        operand = self.check(node.operand, scope)
        if node.op == "!":
            if assignable(operand, BOOL):
                return BOOL
            raise self._overload_error(node, "!_", (operand,))
        if operand == DYN or operand.name in ("int", "double", "duration"):
            return operand
        raise self._overload_error(node, "-_", (operand,))

    def _check_Binary(self, node: Binary, scope: Mapping[str, Type]) -> Type:
        left = self.check(node.left, scope)
        right = self.check(node.right, scope)
        op = node.op
        if op in ("&&", "||"):
            if assignable(left, BOOL) and assignable(right, BOOL):
                return BOOL
        elif op in ("==", "!="):
            if assignable(left, right) or left == NULL or right == NULL:
                return BOOL
        elif op in ("<", "<=", ">", ">="):
            if left == DYN or right == DYN:
                return BOOL
            if left == right and left.name in ORDERED:
                return BOOL
        elif op == "in":
            if right == DYN:
                return BOOL
            if right.name == "list" and assignable(left, right.params[0]):
                return BOOL
            if right.name == "map" and assignable(left, right.params[0]):
                return BOOL
        else:
            if left == DYN or right == DYN:
                return DYN
            result = ARITHMETIC[op].get((left.name, right.name))
            if result == "list":
                return list_of(_join([left.params[0], right.params[0]]))
            if result is not None:
                return _SIMPLE[result]
        raise self._overload_error(node, f"_{op}_", (left, right))

    def _check_Conditional(self, node: Conditional, scope: Mapping[str, Type]) -> Type:
        condition = self.check(node.condition, scope)
        if not assignable(condition, BOOL):
            raise self.error(node, f"conditional requires bool, found '{condition}'")
        then = self.check(node.then, scope)
        otherwise = self.check(node.otherwise, scope)
        if then == otherwise:
            return then
        if assignable(then, otherwise):
            return DYN
        raise self._overload_error(node, "_?_:_", (condition, then, otherwise))

    def _check_Comprehension(self, node: Comprehension, scope: Mapping[str, Type]) -> Type:
        range_type = self.check(node.range, scope)
        if range_type == DYN:
            elem = DYN
        elif range_type.name in ("list", "map"):
            elem = range_type.params[0]
        else:
            raise self.error(node, f"expression of type '{range_type}' cannot be range of a comprehension")
        body = self.check(node.body, {**scope, node.var: elem})
        if node.macro == "map":
            return list_of(body)
        if node.macro == "sortBy":
            if body != DYN and body.name not in ORDERED:
                raise self.error(node.body, f"sortBy() key must be orderable, found '{body}'")
            return list_of(elem)
        if not assignable(body, BOOL):
            raise self.error(node.body, f"{node.macro}() predicate must be bool, found '{body}'")
        if node.macro == "filter":
            return list_of(elem)
        return BOOL

    def _check_Bind(self, node: Bind, scope: Mapping[str, Type]) -> Type:
        init = self.check(node.init, scope)
        return self.check(node.body, {**scope, node.var: init})


def check(node: Node, env: Mapping[str, Type], source: str) -> Type:
    """Type-check ``node`` against the variables in ``env``.

    Returns:
        The type of the whole expression.

    Raises:
        FilterCompileError: On the first type error.
    """
    return Checker(env, source).check(node)
