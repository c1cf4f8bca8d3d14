"""Attribute value model.

A ``Value`` is a tagged union holding exactly one variant. ``Kind.EMPTY`` is
the "no variant set" state and is distinct from every scalar, including
``False`` and ``0``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from logwire.core.errors import EncodeError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT64_MAX = 2**64 - 1

# Maximum number of log_value() hops before resolution is abandoned
MAX_RESOLVE_DEPTH = 100


class Kind(Enum):
    """Variant tag of a Value."""

    EMPTY = "empty"
    BOOL = "bool"
    FLOAT = "float"
    INT = "int"
    UINT = "uint"
    STRING = "string"
    TIME = "time"
    DURATION = "duration"
    GROUP = "group"
    ANY = "any"
    LOG_VALUER = "log_valuer"


@runtime_checkable
class LogValuer(Protocol):
    """An object that produces its logged value on demand."""

    def log_value(self) -> Any:
        """Return the value to log in place of this object."""
        ...


@dataclass(frozen=True, slots=True)
class Opaque:
    """An opaque typed payload.

    Attributes:
        type_tag: Identifies how ``data`` is encoded (e.g. ``py/builtins.list``).
        data: The serialized payload.
    """

    type_tag: str
    data: bytes


@dataclass(frozen=True, slots=True)
class Value:
    """A single attribute value.

    Attributes:
        kind: Which variant is active.
        payload: The variant's data. For ``Kind.GROUP`` this is a tuple of
            ``Attr``; for ``Kind.ANY`` it is an ``Opaque`` or any object that
            is serialized as JSON at encode time.
    """

    kind: Kind = Kind.EMPTY
    payload: Any = None

    @classmethod
    def of(cls, obj: Any) -> "Value":
        """Classify a Python object into a Value."""
        if isinstance(obj, Value):
            return obj
        if obj is None:
            return cls()
        # bool before int: bool is an int subclass
        if isinstance(obj, bool):
            return cls(Kind.BOOL, obj)
        if isinstance(obj, int):
            if INT64_MIN <= obj <= INT64_MAX:
                return cls(Kind.INT, obj)
            if 0 <= obj <= UINT64_MAX:
                return cls(Kind.UINT, obj)
            return cls(Kind.ANY, obj)
        if isinstance(obj, float):
            return cls(Kind.FLOAT, obj)
        if isinstance(obj, str):
            return cls(Kind.STRING, obj)
        if isinstance(obj, datetime):
            return cls(Kind.TIME, obj)
        if isinstance(obj, timedelta):
            return cls(Kind.DURATION, obj)
        if isinstance(obj, Mapping):
            return cls(
                Kind.GROUP,
                tuple(Attr(str(k), Value.of(v)) for k, v in obj.items()),
            )
        if isinstance(obj, LogValuer):
            return cls(Kind.LOG_VALUER, obj)
        return cls(Kind.ANY, obj)

    @property
    def is_empty(self) -> bool:
        return self.kind is Kind.EMPTY

    def resolve(self) -> "Value":
        """Collapse LOG_VALUER chains into a concrete Value.

        Raises:
            EncodeError: If the chain does not terminate within
                MAX_RESOLVE_DEPTH steps, or a log_value() call fails.
        """
        value = self
        for _ in range(MAX_RESOLVE_DEPTH):
            if value.kind is not Kind.LOG_VALUER:
                return value
            try:
                value = Value.of(value.payload.log_value())
            except Exception as exc:
                raise EncodeError(
                    f"log_value() failed for {type(value.payload).__name__}"
                ) from exc
        if value.kind is Kind.LOG_VALUER:
            raise EncodeError(
                f"log_value() called too many times on {type(self.payload).__name__}"
            )
        return value

    def group(self) -> tuple["Attr", ...]:
        """Return the group members. Raises TypeError for other kinds."""
        if self.kind is not Kind.GROUP:
            raise TypeError(f"value of kind {self.kind.value} is not a group")
        return self.payload

    def to_python(self) -> Any:
        """Convert to plain Python data; groups become dicts keyed by member."""
        if self.kind is Kind.GROUP:
            return {a.key: a.value.to_python() for a in self.payload}
        if self.kind is Kind.LOG_VALUER:
            return self.resolve().to_python()
        return self.payload


@dataclass(frozen=True, slots=True)
class Attr:
    """A key/value pair."""

    key: str
    value: Value = Value()

    def __post_init__(self) -> None:
        if not isinstance(self.value, Value):
            object.__setattr__(self, "value", Value.of(self.value))


def bool_value(v: bool) -> Value:
    return Value(Kind.BOOL, bool(v))


def int_value(v: int) -> Value:
    if not INT64_MIN <= v <= INT64_MAX:
        raise ValueError(f"{v} does not fit in int64")
    return Value(Kind.INT, int(v))


def uint_value(v: int) -> Value:
    if not 0 <= v <= UINT64_MAX:
        raise ValueError(f"{v} does not fit in uint64")
    return Value(Kind.UINT, int(v))


def float_value(v: float) -> Value:
    return Value(Kind.FLOAT, float(v))


def string_value(v: str) -> Value:
    return Value(Kind.STRING, str(v))


def time_value(v: datetime) -> Value:
    return Value(Kind.TIME, v)


def duration_value(v: timedelta) -> Value:
    return Value(Kind.DURATION, v)


def group_value(*attrs: Attr) -> Value:
    return Value(Kind.GROUP, tuple(attrs))


def any_value(obj: Any) -> Value:
    """Classify ``obj`` the same way attribute helpers do."""
    return Value.of(obj)


def attr(key: str, obj: Any) -> Attr:
    """Build an attribute from any supported Python object."""
    return Attr(key, Value.of(obj))


def group(key: str, *attrs: Attr, **kwargs: Any) -> Attr:
    """Build a group attribute. An empty key inlines its members on output."""
    members = attrs + tuple(Attr(k, Value.of(v)) for k, v in kwargs.items())
    return Attr(key, Value(Kind.GROUP, members))
