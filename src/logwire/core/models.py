"""Core domain models for log records."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

from logwire.core.values import Attr, Value

# The zero-value timestamp. Records carrying it are written without a time.
ZERO_TIME = datetime.min.replace(tzinfo=UTC)


class Level(IntEnum):
    """Record severity. Member values are the wire numbers."""

    UNSET = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    DEBUG = 4

    @property
    def severity(self) -> int:
        """Ordering used for threshold checks (DEBUG lowest)."""
        return _SEVERITY[self]

    @classmethod
    def from_name(cls, name: str) -> "Level":
        """Parse a canonical level name, accepting WARNING as WARN."""
        upper = name.upper()
        if upper == "WARNING":
            return cls.WARN
        try:
            return cls[upper]
        except KeyError:
            raise ValueError(f"unknown level: {name!r}") from None


_SEVERITY = {
    Level.UNSET: 0,
    Level.DEBUG: 10,
    Level.INFO: 20,
    Level.WARN: 30,
    Level.ERROR: 40,
}


class Decision(Enum):
    """What a record callback asks the reader to do next."""

    CONTINUE = "continue"
    STOP = "stop"


def is_zero_time(t: datetime | None) -> bool:
    """Return True for a missing or zero-value timestamp."""
    if t is None:
        return True
    if t.tzinfo is None:
        return t == datetime.min
    return t == ZERO_TIME


@dataclass(slots=True)
class Record:
    """A structured log record as it appears on the wire.

    Attributes:
        message: The log message.
        level: Record severity.
        time: When the record was made. None means no time was recorded.
        attrs: Top-level attributes; nested groups are GROUP values.
    """

    message: str = ""
    level: Level = Level.UNSET
    time: datetime | None = None
    attrs: dict[str, Value] = field(default_factory=dict)

    def attrs_dict(self) -> dict[str, Any]:
        """Return the attributes as plain nested Python data."""
        return {k: v.to_python() for k, v in self.attrs.items()}


@dataclass(frozen=True, slots=True)
class Event:
    """One logging call as handed to a Handler.

    Attributes:
        message: The log message.
        level: Record severity.
        time: Call time, or None.
        attrs: The call's own attributes, in call order.
        origin: Caller marker (``file:line``). None means the event did not
            come from a real logging call.
    """

    message: str
    level: Level = Level.INFO
    time: datetime | None = None
    attrs: tuple[Attr, ...] = ()
    origin: str | None = None
