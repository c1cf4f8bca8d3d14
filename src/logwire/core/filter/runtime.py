"""Evaluator for checked filter expressions.

``compile_node`` turns an AST into a tree of closures once; each closure
takes the activation (variable name -> value) and returns a Python value.
Runtime values are plain Python: bool, int, float, str, bytes, list, dict,
datetime, timedelta, None and ``OptionalValue``.
"""

import base64
import binascii
import functools
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from logwire.core.errors import FilterEvalError
from logwire.core.filter.checker import ARITHMETIC
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

Activation = dict[str, Any]
Evaluator = Callable[[Activation], Any]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT64_MAX = 2**64 - 1

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class OptionalValue:
    """Result of optional access: either holds a value or is empty."""

    present: bool
    value: Any = None

    @classmethod
    def of(cls, value: Any) -> "OptionalValue":
        return cls(True, value)


OPTIONAL_NONE = OptionalValue(False)


def type_name(value: Any) -> str:
    """Return the expression-language type name of a runtime value."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bytes):
        return "bytes"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, timedelta):
        return "duration"
    if value is None:
        return "null_type"
    if isinstance(value, OptionalValue):
        return "optional"
    return type(value).__name__


def _no_overload(name: str, *args: Any) -> FilterEvalError:
    rendered = ", ".join(type_name(a) for a in args)
    return FilterEvalError(f"no such overload: {name}({rendered})")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def equals(a: Any, b: Any) -> bool:
    """Heterogeneous equality: values of different types are unequal."""
    if _is_number(a) and _is_number(b):
        return a == b
    if type_name(a) != type_name(b):
        return False
    if isinstance(a, list):
        return len(a) == len(b) and all(equals(x, y) for x, y in zip(a, b, strict=True))
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(equals(a[k], b[k]) for k in a)
    if isinstance(a, OptionalValue):
        return a.present == b.present and (not a.present or equals(a.value, b.value))
    return a == b


def _check_int(value: int) -> int:
    if not INT64_MIN <= value <= UINT64_MAX:
        raise FilterEvalError("integer overflow")
    return value


def _truncdiv(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def arithmetic(op: str, a: Any, b: Any) -> Any:
    if ARITHMETIC[op].get((type_name(a), type_name(b))) is None:
        raise _no_overload(f"_{op}_", a, b)
    try:
        if op == "+":
            result = a + b
        elif op == "-":
            result = a - b
        elif op == "*":
            result = a * b
        else:
            return _divide(op, a, b)
    except OverflowError as exc:
        raise FilterEvalError(f"{type_name(a)} overflow") from exc
    if isinstance(result, int) and not isinstance(result, bool):
        return _check_int(result)
    return result


def _divide(op: str, a: Any, b: Any) -> Any:
    if op == "/":
        if isinstance(a, float):
            if b == 0:
                return math.copysign(math.inf, a) if a and not math.isnan(a) else math.nan
            return a / b
        if b == 0:
            raise FilterEvalError("division by zero")
        result = _truncdiv(a, b)
    else:
        if b == 0:
            raise FilterEvalError("modulus by zero")
        result = a - b * _truncdiv(a, b)
    return _check_int(result)


def compare(op: str, a: Any, b: Any) -> bool:
    ta, tb = type_name(a), type_name(b)
    if not ((_is_number(a) and _is_number(b)) or (ta == tb and ta in _ORDERED)):
        raise _no_overload(f"_{op}_", a, b)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


_ORDERED = frozenset({"string", "bytes", "bool", "timestamp", "duration"})


def contains(container: Any, item: Any) -> bool:
    if isinstance(container, list):
        return any(equals(item, x) for x in container)
    if isinstance(container, dict):
        return any(equals(item, k) for k in container)
    raise _no_overload("@in", item, container)


# --- Access ---


def select(obj: Any, field: str) -> Any:
    if isinstance(obj, OptionalValue):
        return opt_select(obj, field)
    if isinstance(obj, dict):
        if field in obj:
            return obj[field]
        raise FilterEvalError(f"no such key: {field}")
    raise FilterEvalError(f"type '{type_name(obj)}' does not support field selection")


def opt_select(obj: Any, field: str) -> OptionalValue:
    if isinstance(obj, OptionalValue):
        if not obj.present:
            return obj
        obj = obj.value
    if isinstance(obj, dict):
        return OptionalValue.of(obj[field]) if field in obj else OPTIONAL_NONE
    raise FilterEvalError(f"type '{type_name(obj)}' does not support field selection")


def _lookup(obj: Any, key: Any) -> tuple[bool, Any]:
    if isinstance(obj, list):
        if not _is_number(key) or (isinstance(key, float) and not key.is_integer()):
            raise _no_overload("_[_]", obj, key)
        i = int(key)
        if not 0 <= i < len(obj):
            return False, None
        return True, obj[i]
    if isinstance(obj, dict):
        if isinstance(key, bool):
            for k, v in obj.items():
                if isinstance(k, bool) and k == key:
                    return True, v
            return False, None
        if key in obj:
            return True, obj[key]
        return False, None
    raise _no_overload("_[_]", obj, key)


def index(obj: Any, key: Any) -> Any:
    if isinstance(obj, OptionalValue):
        return opt_index(obj, key)
    found, value = _lookup(obj, key)
    if not found:
        if isinstance(obj, list):
            raise FilterEvalError(f"index out of bounds: {key}")
        raise FilterEvalError(f"no such key: {key}")
    return value


def opt_index(obj: Any, key: Any) -> OptionalValue:
    if isinstance(obj, OptionalValue):
        if not obj.present:
            return obj
        obj = obj.value
    found, value = _lookup(obj, key)
    return OptionalValue.of(value) if found else OPTIONAL_NONE


# --- Functions ---


def _str_args(name: str, *args: Any) -> None:
    if not all(isinstance(a, str) for a in args):
        raise _no_overload(name, *args)


_NON_RE2_GROUPS = (
    ("(?=", "lookahead"),
    ("(?!", "lookahead"),
    ("(?<=", "lookbehind"),
    ("(?<!", "lookbehind"),
    ("(?P=", "backreference"),
    ("(?>", "atomic group"),
    ("(?(", "conditional group"),
    ("(?#", "comment group"),
)


def non_re2_construct(pattern: str) -> str | None:
    """Return the name of the first construct RE2 rejects, if any.

    Python's ``re`` also accepts lookaround, backreferences and a few group
    forms. Patterns using them are rejected by ``matches``.
    """
    i, in_class = 0, False
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            nxt = pattern[i + 1 : i + 2]
            if not in_class and nxt.isdigit() and nxt != "0":
                return "backreference"
            i += 2
            continue
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
            if pattern[i + 1 : i + 2] == "^":
                i += 1
            # a leading ] is a literal member
            if pattern[i + 1 : i + 2] == "]":
                i += 1
        elif c == "(":
            for prefix, name in _NON_RE2_GROUPS:
                if pattern.startswith(prefix, i):
                    return name
        i += 1
    return None


@functools.lru_cache(maxsize=256)
def _regex(pattern: str) -> re.Pattern[str]:
    if (construct := non_re2_construct(pattern)) is not None:
        raise FilterEvalError(
            f"invalid regular expression {pattern!r}: {construct} is not supported"
        )
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise FilterEvalError(f"invalid regular expression {pattern!r}: {exc}") from exc


def _matches(s: Any, pattern: Any) -> bool:
    _str_args("matches", s, pattern)
    return _regex(pattern).search(s) is not None


def _size(v: Any) -> int:
    if isinstance(v, (str, bytes, list, dict)):
        return len(v)
    raise _no_overload("size", v)


def _ascii_case(s: Any, upper: bool) -> str:
    _str_args("upperAscii" if upper else "lowerAscii", s)
    convert = str.upper if upper else str.lower
    return "".join(convert(c) if c.isascii() else c for c in s)


def _string_fn(name: str, method: Callable[..., Any]) -> Callable[..., Any]:
    def fn(*args: Any) -> Any:
        _str_args(name, *args)
        return method(*args)

    return fn


_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|m|s|us|µs|ns)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration like ``1h30m``, ``1.5s`` or ``-250ms``."""
    s = text.strip()
    sign = -1 if s.startswith("-") else 1
    s = s.lstrip("+-")
    if s == "0":
        return timedelta(0)
    pos, total = 0, 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s) or not s:
        raise FilterEvalError(f"invalid duration: {text!r}")
    return timedelta(seconds=sign * total)


def format_duration(d: timedelta) -> str:
    seconds = d.total_seconds()
    return f"{seconds:g}s"


def parse_timestamp(text: str) -> datetime:
    try:
        t = datetime.fromisoformat(text)
    except ValueError as exc:
        raise FilterEvalError(f"invalid timestamp: {text!r}") from exc
    if t.tzinfo is None:
        raise FilterEvalError(f"timestamp requires a time zone: {text!r}")
    return t.astimezone(UTC)


def format_timestamp(t: datetime) -> str:
    return t.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _to_int(v: Any) -> int:
    if isinstance(v, bool):
        raise _no_overload("int", v)
    if isinstance(v, int):
        result = v
    elif isinstance(v, float):
        if v != v or v in (float("inf"), float("-inf")):
            raise FilterEvalError("double is out of int range")
        result = int(v)
    elif isinstance(v, str):
        try:
            result = int(v)
        except ValueError as exc:
            raise FilterEvalError(f"cannot convert {v!r} to int") from exc
    elif isinstance(v, datetime):
        result = (v - EPOCH) // timedelta(seconds=1)
    else:
        raise _no_overload("int", v)
    if not INT64_MIN <= result <= INT64_MAX:
        raise FilterEvalError("int overflow")
    return result


def _to_uint(v: Any) -> int:
    if isinstance(v, datetime):
        raise _no_overload("uint", v)
    result = _to_int(v) if not (isinstance(v, int) and v > INT64_MAX) else v
    if not 0 <= result <= UINT64_MAX:
        raise FilterEvalError("uint overflow")
    return result


def _to_double(v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
        raise _no_overload("double", v)
    try:
        return float(v)
    except ValueError as exc:
        raise FilterEvalError(f"cannot convert {v!r} to double") from exc


def _to_string(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, str)):
        return str(v)
    if isinstance(v, float):
        return repr(v)
    if isinstance(v, bytes):
        try:
            return v.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FilterEvalError("bytes are not valid UTF-8") from exc
    if isinstance(v, datetime):
        return format_timestamp(v)
    if isinstance(v, timedelta):
        return format_duration(v)
    raise _no_overload("string", v)


def _to_bytes(v: Any) -> bytes:
    return v.encode("utf-8") if isinstance(v, str) else v


def _to_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v in ("true", "True", "TRUE", "t", "1"):
        return True
    if v in ("false", "False", "FALSE", "f", "0"):
        return False
    raise FilterEvalError(f"cannot convert {v!r} to bool")


def _to_timestamp(v: Any) -> datetime:
    if isinstance(v, datetime):
        return v
    if isinstance(v, int) and not isinstance(v, bool):
        return EPOCH + timedelta(seconds=v)
    if isinstance(v, str):
        return parse_timestamp(v)
    raise _no_overload("timestamp", v)


def _to_duration(v: Any) -> timedelta:
    if isinstance(v, timedelta):
        return v
    if isinstance(v, str):
        return parse_duration(v)
    raise _no_overload("duration", v)


def _zone(name: str) -> timezone | ZoneInfo:
    if name and name[0] in "+-" and ":" in name:
        hours, minutes = name[1:].split(":", 1)
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(offset if name[0] == "+" else -offset)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise FilterEvalError(f"unknown time zone: {name!r}") from exc


def _time_part(part: Callable[[datetime], int]) -> Callable[..., int]:
    def fn(t: Any, tz: str | None = None) -> int:
        if not isinstance(t, datetime):
            raise _no_overload("timestamp accessor", t)
        local = t.astimezone(_zone(tz) if tz else UTC)
        return part(local)

    return fn


def _or_value(opt: Any, default: Any) -> Any:
    if not isinstance(opt, OptionalValue):
        raise _no_overload("orValue", opt, default)
    return opt.value if opt.present else default


def _has_value(opt: Any) -> bool:
    if not isinstance(opt, OptionalValue):
        raise _no_overload("hasValue", opt)
    return opt.present


def _opt_value(opt: Any) -> Any:
    if not isinstance(opt, OptionalValue):
        raise _no_overload("value", opt)
    if not opt.present:
        raise FilterEvalError("optional.none() dereference")
    return opt.value


def _opt_or(opt: Any, other: Any) -> Any:
    if not isinstance(opt, OptionalValue):
        raise _no_overload("or", opt, other)
    return opt if opt.present else other


# --- Extension library: strings ---
# @tra: Filter.Extensions


def _int_arg(name: str, v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise _no_overload(name, v)
    return v


def _char_at(s: Any, i: Any) -> str:
    _str_args("charAt", s)
    i = _int_arg("charAt", i)
    if not 0 <= i <= len(s):
        raise FilterEvalError(f"index out of range: {i}")
    return s[i : i + 1]


def _index_of(s: Any, sub: Any, offset: Any = 0) -> int:
    _str_args("indexOf", s, sub)
    offset = _int_arg("indexOf", offset)
    if not 0 <= offset <= len(s):
        raise FilterEvalError(f"index out of range: {offset}")
    return s.find(sub, offset)


def _last_index_of(s: Any, sub: Any, offset: Any = None) -> int:
    _str_args("lastIndexOf", s, sub)
    if offset is None:
        return s.rfind(sub)
    offset = _int_arg("lastIndexOf", offset)
    if not 0 <= offset <= len(s):
        raise FilterEvalError(f"index out of range: {offset}")
    return s.rfind(sub, 0, offset + len(sub))


def _substring(s: Any, start: Any, end: Any = None) -> str:
    _str_args("substring", s)
    start = _int_arg("substring", start)
    end = len(s) if end is None else _int_arg("substring", end)
    if not 0 <= start <= end <= len(s):
        raise FilterEvalError(f"substring out of range: [{start}:{end}]")
    return s[start:end]


def _split(s: Any, sep: Any, limit: Any = -1) -> list[str]:
    _str_args("split", s, sep)
    limit = _int_arg("split", limit)
    if limit == 0:
        return []
    if sep == "":
        parts = list(s)
        if 0 < limit < len(parts):
            parts[limit - 1 :] = ["".join(parts[limit - 1 :])]
        return parts
    return s.split(sep, limit - 1 if limit > 0 else -1)


def _replace(s: Any, old: Any, new: Any, limit: Any = -1) -> str:
    _str_args("replace", s, old, new)
    return s.replace(old, new, _int_arg("replace", limit))


def _join(items: Any, sep: Any = "") -> str:
    if not isinstance(items, list):
        raise _no_overload("join", items, sep)
    _str_args("join", sep, *items)
    return sep.join(items)


def _reverse(v: Any) -> Any:
    if isinstance(v, (str, list)):
        return v[::-1]
    raise _no_overload("reverse", v)


_QUOTE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def quote(s: Any) -> str:
    """Return ``s`` as a double-quoted string literal."""
    _str_args("strings.quote", s)
    out = []
    for c in s:
        if c in _QUOTE_ESCAPES:
            out.append(_QUOTE_ESCAPES[c])
        elif not c.isprintable():
            out.append(f"\\u{ord(c):04x}" if ord(c) <= 0xFFFF else f"\\U{ord(c):08x}")
        else:
            out.append(c)
    return '"' + "".join(out) + '"'


_FORMAT_RE = re.compile(r"%(?:\.(\d+))?(.?)", re.DOTALL)


def _format_double(v: float, verb: str, precision: int) -> str:
    if math.isnan(v):
        return "NaN"
    if math.isinf(v):
        return "Infinity" if v > 0 else "-Infinity"
    return f"{v:.{precision}{verb}}"


def _format_string(v: Any, nested: bool = False) -> str:
    if isinstance(v, str):
        return quote(v) if nested else v
    if v is None:
        return "null"
    if isinstance(v, list):
        return "[" + ", ".join(_format_string(x, True) for x in v) + "]"
    if isinstance(v, dict):
        entries = (f"{_format_string(k, True)}: {_format_string(x, True)}" for k, x in v.items())
        return "{" + ", ".join(entries) + "}"
    if isinstance(v, float) and not math.isfinite(v):
        return _format_double(v, "f", 0)
    return _to_string(v)


def _format_integer(v: Any, verb: str) -> str:
    if isinstance(v, (str, bytes)) and verb in "xX":
        data = v.encode("utf-8") if isinstance(v, str) else v
        text = data.hex()
        return text.upper() if verb == "X" else text
    if isinstance(v, bool) or not isinstance(v, int):
        raise FilterEvalError(f"%{verb} requires an integer, found {type_name(v)}")
    return format(v, verb)


def _format(template: Any, args: Any) -> str:
    """``"%s has %d items".format([name, n])``."""
    _str_args("format", template)
    if not isinstance(args, list):
        raise _no_overload("format", template, args)
    out, pos, used = [], 0, 0
    for m in _FORMAT_RE.finditer(template):
        out.append(template[pos : m.start()])
        pos = m.end()
        precision, verb = m.group(1), m.group(2)
        if verb == "%" and precision is None:
            out.append("%")
            continue
        if verb not in ("s", "d", "f", "e", "b", "o", "x", "X"):
            raise FilterEvalError(f"unrecognized formatting clause: %{verb}")
        if used >= len(args):
            raise FilterEvalError(f"index {used} out of range")
        arg = args[used]
        used += 1
        if verb == "s":
            out.append(_format_string(arg))
        elif verb in ("f", "e"):
            if not _is_number(arg):
                raise FilterEvalError(f"%{verb} requires a number, found {type_name(arg)}")
            out.append(_format_double(float(arg), verb, int(precision or 6)))
        else:
            out.append(_format_integer(arg, verb))
    out.append(template[pos:])
    return "".join(out)


# --- Extension library: encoders ---


def _base64_encode(data: Any) -> str:
    if not isinstance(data, bytes):
        raise _no_overload("base64.encode", data)
    return base64.b64encode(data).decode("ascii")


def _base64_decode(text: Any) -> bytes:
    _str_args("base64.decode", text)
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except binascii.Error as exc:
        raise FilterEvalError(f"invalid base64 input: {exc}") from exc


# --- Extension library: sets and lists ---


def _lists(name: str, *args: Any) -> None:
    if not all(isinstance(a, list) for a in args):
        raise _no_overload(name, *args)


def _set_contains(a: Any, b: Any) -> bool:
    _lists("sets.contains", a, b)
    return all(contains(a, x) for x in b)


def _set_equivalent(a: Any, b: Any) -> bool:
    _lists("sets.equivalent", a, b)
    return all(contains(a, x) for x in b) and all(contains(b, x) for x in a)


def _set_intersects(a: Any, b: Any) -> bool:
    _lists("sets.intersects", a, b)
    return any(contains(a, x) for x in b)


def _range(n: Any) -> list[int]:
    return list(range(_int_arg("lists.range", n)))


def _slice(items: Any, start: Any, end: Any) -> list[Any]:
    _lists("slice", items)
    start, end = _int_arg("slice", start), _int_arg("slice", end)
    if not 0 <= start <= end <= len(items):
        raise FilterEvalError(f"slice out of range: [{start}:{end}]")
    return items[start:end]


def _flatten(items: Any, depth: Any = 1) -> list[Any]:
    _lists("flatten", items)
    depth = _int_arg("flatten", depth)
    if depth < 0:
        raise FilterEvalError("flatten depth must be non-negative")
    if depth == 0:
        return list(items)
    out: list[Any] = []
    for item in items:
        if isinstance(item, list):
            out.extend(_flatten(item, depth - 1))
        else:
            out.append(item)
    return out


def _require_orderable(name: str, items: list[Any]) -> None:
    kinds = {"number" if _is_number(x) else type_name(x) for x in items}
    if len(kinds) > 1 or not kinds <= (_ORDERED | {"number"}):
        rendered = ", ".join(sorted(kinds))
        raise FilterEvalError(f"{name}: elements are not mutually orderable: {rendered}")


def _sort(items: Any) -> list[Any]:
    _lists("sort", items)
    _require_orderable("sort", items)
    return sorted(items)


def _distinct(items: Any) -> list[Any]:
    _lists("distinct", items)
    out: list[Any] = []
    for item in items:
        if not any(equals(item, seen) for seen in out):
            out.append(item)
    return out


def _first(items: Any) -> OptionalValue:
    _lists("first", items)
    return OptionalValue.of(items[0]) if items else OPTIONAL_NONE


def _last(items: Any) -> OptionalValue:
    _lists("last", items)
    return OptionalValue.of(items[-1]) if items else OPTIONAL_NONE


# --- Extension library: math ---


def _numbers(name: str, args: tuple[Any, ...]) -> tuple[Any, ...]:
    if len(args) == 1 and isinstance(args[0], list):
        args = tuple(args[0])
    if not args:
        raise FilterEvalError(f"{name}() requires at least one argument")
    if not all(_is_number(a) for a in args):
        raise _no_overload(name, *args)
    return args


def _greatest(*args: Any) -> Any:
    return max(_numbers("math.greatest", args))


def _least(*args: Any) -> Any:
    return min(_numbers("math.least", args))


def _double_arg(name: str, v: Any) -> float:
    if not isinstance(v, float):
        raise _no_overload(name, v)
    return v


def _rounding(name: str, fn: Callable[[float], float]) -> Callable[[Any], float]:
    def run(v: Any) -> float:
        v = _double_arg(name, v)
        return v if not math.isfinite(v) else float(fn(v))

    return run


def _round_half_away(v: float) -> float:
    return math.copysign(math.floor(abs(v) + 0.5), v)


def _abs(v: Any) -> Any:
    (v,) = _numbers("math.abs", (v,))
    if isinstance(v, int):
        return _check_int(abs(v))
    return abs(v)


def _sign(v: Any) -> Any:
    (v,) = _numbers("math.sign", (v,))
    if isinstance(v, float):
        return v if v == 0 or math.isnan(v) else math.copysign(1.0, v)
    return (v > 0) - (v < 0)


def _sqrt(v: Any) -> float:
    (v,) = _numbers("math.sqrt", (v,))
    return math.sqrt(v) if v >= 0 else math.nan


def _to_int64(v: int) -> int:
    v &= UINT64_MAX
    return v - 2**64 if v > INT64_MAX else v


def _bitwise(name: str, fn: Callable[[int, int], int]) -> Callable[[Any, Any], int]:
    def run(a: Any, b: Any) -> int:
        return fn(_int_arg(name, a), _int_arg(name, b))

    return run


def _shift(name: str, left: bool) -> Callable[[Any, Any], int]:
    def run(v: Any, n: Any) -> int:
        v, n = _int_arg(name, v), _int_arg(name, n)
        if n < 0:
            raise FilterEvalError(f"{name}: negative offset: {n}")
        if n >= 64:
            return 0
        if left:
            return _to_int64(v << n)
        # logical shift over the 64-bit pattern
        return _to_int64((v & UINT64_MAX) >> n)

    return run


MEMBER_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "contains": _string_fn("contains", lambda s, sub: sub in s),
    "startsWith": _string_fn("startsWith", str.startswith),
    "endsWith": _string_fn("endsWith", str.endswith),
    "matches": _matches,
    "lowerAscii": lambda s: _ascii_case(s, upper=False),
    "upperAscii": lambda s: _ascii_case(s, upper=True),
    "trim": _string_fn("trim", str.strip),
    "split": _split,
    "replace": _replace,
    "charAt": _char_at,
    "indexOf": _index_of,
    "lastIndexOf": _last_index_of,
    "substring": _substring,
    "join": _join,
    "format": _format,
    "reverse": _reverse,
    "slice": _slice,
    "flatten": _flatten,
    "sort": _sort,
    "distinct": _distinct,
    "first": _first,
    "last": _last,
    "size": _size,
    "orValue": _or_value,
    "hasValue": _has_value,
    "value": _opt_value,
    "or": _opt_or,
    "getFullYear": _time_part(lambda t: t.year),
    "getMonth": _time_part(lambda t: t.month - 1),
    "getDate": _time_part(lambda t: t.day),
    "getDayOfMonth": _time_part(lambda t: t.day - 1),
    "getDayOfWeek": _time_part(lambda t: (t.weekday() + 1) % 7),
    "getDayOfYear": _time_part(lambda t: t.timetuple().tm_yday - 1),
    "getHours": _time_part(lambda t: t.hour),
    "getMinutes": _time_part(lambda t: t.minute),
    "getSeconds": _time_part(lambda t: t.second),
}

GLOBAL_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "size": _size,
    "matches": _matches,
    "int": _to_int,
    "uint": _to_uint,
    "double": _to_double,
    "string": _to_string,
    "bytes": _to_bytes,
    "bool": _to_bool,
    "timestamp": _to_timestamp,
    "duration": _to_duration,
    "dyn": lambda v: v,
    "optional.of": OptionalValue.of,
    "optional.none": lambda: OPTIONAL_NONE,
    "strings.quote": quote,
    "base64.encode": _base64_encode,
    "base64.decode": _base64_decode,
    "sets.contains": _set_contains,
    "sets.equivalent": _set_equivalent,
    "sets.intersects": _set_intersects,
    "lists.range": _range,
    "math.greatest": _greatest,
    "math.least": _least,
    "math.abs": _abs,
    "math.sign": _sign,
    "math.sqrt": _sqrt,
    "math.ceil": _rounding("math.ceil", math.ceil),
    "math.floor": _rounding("math.floor", math.floor),
    "math.round": _rounding("math.round", _round_half_away),
    "math.trunc": _rounding("math.trunc", math.trunc),
    "math.isNaN": lambda v: math.isnan(_double_arg("math.isNaN", v)),
    "math.isInf": lambda v: math.isinf(_double_arg("math.isInf", v)),
    "math.isFinite": lambda v: math.isfinite(_double_arg("math.isFinite", v)),
    "math.bitAnd": _bitwise("math.bitAnd", lambda a, b: a & b),
    "math.bitOr": _bitwise("math.bitOr", lambda a, b: a | b),
    "math.bitXor": _bitwise("math.bitXor", lambda a, b: a ^ b),
    "math.bitNot": lambda v: ~_int_arg("math.bitNot", v),
    "math.bitShiftLeft": _shift("math.bitShiftLeft", left=True),
    "math.bitShiftRight": _shift("math.bitShiftRight", left=False),
}


# --- Compilation ---


def _require_bool(value: Any, op: str) -> bool:
    if not isinstance(value, bool):
        raise _no_overload(op, value)
    return value


def _compile_Literal(node: Literal) -> Evaluator:
    value = node.value
    return lambda act: value


def _compile_Ident(node: Ident) -> Evaluator:
    name = node.name

    def run(act: Activation) -> Any:
        try:
            return act[name]
        except KeyError:
            raise FilterEvalError(f"no such attribute: {name}") from None

    return run


def _compile_Select(node: Select) -> Evaluator:
    operand, field = compile_node(node.operand), node.field
    if node.optional:
        return lambda act: opt_select(operand(act), field)
    return lambda act: select(operand(act), field)


def _compile_Index(node: Index) -> Evaluator:
    operand, key = compile_node(node.operand), compile_node(node.index)
    if node.optional:
        return lambda act: opt_index(operand(act), key(act))
    return lambda act: index(operand(act), key(act))


def _compile_Has(node: Has) -> Evaluator:
    operand, field = compile_node(node.select.operand), node.select.field

    def run(act: Activation) -> bool:
        obj = operand(act)
        if isinstance(obj, dict):
            return field in obj
        raise FilterEvalError(f"type '{type_name(obj)}' does not support field selection")

    return run


def _compile_Call(node: Call) -> Evaluator:
    args = [compile_node(a) for a in node.args]
    if node.target is not None:
        fn = MEMBER_FUNCTIONS[node.function]
        args.insert(0, compile_node(node.target))
    else:
        fn = GLOBAL_FUNCTIONS[node.function]

    def run(act: Activation) -> Any:
        try:
            return fn(*(a(act) for a in args))
        except TypeError as exc:
            raise FilterEvalError(f"error calling {node.function}: {exc}") from exc

    return run


def _compile_ListExpr(node: ListExpr) -> Evaluator:
    elements = [compile_node(e) for e in node.elements]
    return lambda act: [e(act) for e in elements]


def _compile_MapExpr(node: MapExpr) -> Evaluator:
    entries = [(compile_node(k), compile_node(v)) for k, v in node.entries]

    def run(act: Activation) -> dict[Any, Any]:
        result: dict[Any, Any] = {}
        for k, v in entries:
            key = k(act)
            if key in result:
                raise FilterEvalError(f"duplicate map key: {key!r}")
            result[key] = v(act)
        return result

    return run


def _compile_Unary(node: Unary) -> Evaluator:
    operand = compile_node(node.operand)
    if node.op == "!":
        return lambda act: not _require_bool(operand(act), "!_")

    def negate(act: Activation) -> Any:
        value = operand(act)
        if isinstance(value, bool) or not isinstance(value, (int, float, timedelta)):
            raise _no_overload("-_", value)
        if isinstance(value, int):
            return _check_int(-value)
        return -value

    return negate


def _compile_logical(node: Binary) -> Evaluator:
    lhs, rhs = compile_node(node.left), compile_node(node.right)
    # && short-circuits on false, || on true; an error on one side is
    # absorbed when the other side decides the result
    decisive = node.op == "||"
    name = f"_{node.op}_"

    def run(act: Activation) -> bool:
        error: FilterEvalError | None = None
        try:
            left = _require_bool(lhs(act), name)
        except FilterEvalError as exc:
            error = exc
        else:
            if left is decisive:
                return decisive
        right = _require_bool(rhs(act), name)
        if right is decisive:
            return decisive
        if error is not None:
            raise error
        return not decisive

    return run


def _compile_Binary(node: Binary) -> Evaluator:
    op = node.op
    if op in ("&&", "||"):
        return _compile_logical(node)
    lhs, rhs = compile_node(node.left), compile_node(node.right)
    if op == "==":
        return lambda act: equals(lhs(act), rhs(act))
    if op == "!=":
        return lambda act: not equals(lhs(act), rhs(act))
    if op in ("<", "<=", ">", ">="):
        return lambda act: compare(op, lhs(act), rhs(act))
    if op == "in":
        return lambda act: contains(rhs(act), lhs(act))
    return lambda act: arithmetic(op, lhs(act), rhs(act))


def _compile_Conditional(node: Conditional) -> Evaluator:
    condition = compile_node(node.condition)
    then, otherwise = compile_node(node.then), compile_node(node.otherwise)

    def run(act: Activation) -> Any:
        if _require_bool(condition(act), "_?_:_"):
            return then(act)
        return otherwise(act)

    return run


def _compile_Comprehension(node: Comprehension) -> Evaluator:
    range_, body = compile_node(node.range), compile_node(node.body)
    var, macro = node.var, node.macro

    def run(act: Activation) -> Any:
        items = range_(act)
        if isinstance(items, dict):
            items = list(items)
        elif not isinstance(items, list):
            raise FilterEvalError(f"cannot iterate over {type_name(items)}")
        scope = dict(act)

        def predicate(item: Any) -> Any:
            scope[var] = item
            return body(scope)

        if macro == "map":
            return [predicate(item) for item in items]
        if macro == "sortBy":
            keys = [predicate(item) for item in items]
            _require_orderable(macro, keys)
            order = sorted(range(len(items)), key=keys.__getitem__)
            return [items[i] for i in order]
        if macro == "filter":
            return [item for item in items if _require_bool(predicate(item), macro)]
        if macro == "all":
            return all(_require_bool(predicate(item), macro) for item in items)
        if macro == "exists":
            return any(_require_bool(predicate(item), macro) for item in items)
        return sum(1 for item in items if _require_bool(predicate(item), macro)) == 1

    return run


def _compile_Bind(node: Bind) -> Evaluator:
    init, body, var = compile_node(node.init), compile_node(node.body), node.var
    return lambda act: body({**act, var: init(act)})


_COMPILERS: dict[type[Node], Callable[[Any], Evaluator]] = {
    Literal: _compile_Literal,
    Ident: _compile_Ident,
    Select: _compile_Select,
    Index: _compile_Index,
    Has: _compile_Has,
    Call: _compile_Call,
    ListExpr: _compile_ListExpr,
    MapExpr: _compile_MapExpr,
    Unary: _compile_Unary,
    Binary: _compile_Binary,
    Conditional: _compile_Conditional,
    Comprehension: _compile_Comprehension,
    Bind: _compile_Bind,
}


def compile_node(node: Node) -> Evaluator:
    """Compile a checked AST into an evaluator closure."""
    return _COMPILERS[type(node)](node)
