"""Write-side handler: builds the attribute tree and writes frames.

A ``Handler`` is immutable. ``with_attrs`` and ``with_group`` return a new
handler linked to its parent, so deriving never changes a handler that other
handlers or in-flight calls are using. Each log call walks the lineage and
builds a fresh attribute mapping.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from logwire.core.encoding.framing import frame
from logwire.core.encoding.protobuf import MessagePool, fill_record
from logwire.core.models import Event, Level, Record
from logwire.core.ports import ByteSink
from logwire.core.values import Attr, Kind, Value

logger = logging.getLogger(__name__)


class _Output:
    """Sink, lock and message pool shared by a whole handler lineage."""

    def __init__(self, sink: ByteSink) -> None:
        self.sink = sink
        self.lock = threading.Lock()
        self.pool = MessagePool()

    def write(self, data: bytes) -> None:
        with self.lock:
            self.sink.write(data)


@dataclass(frozen=True, slots=True)
class _Link:
    """One derivation step: either added attrs or an opened group."""

    attrs: tuple[Attr, ...] = ()
    group: str | None = None


def merge_attrs(target: dict[str, Value], attrs: Iterable[Attr]) -> dict[str, Value]:
    """Merge ``attrs`` into ``target`` following the group rules.

    Lazy values are resolved first. Groups are merged recursively into a new
    mapping and dropped when empty; a group with an empty key is inlined into
    ``target``. Non-group attributes with an empty key are dropped. Later
    keys overwrite earlier ones.
    """
    for a in attrs:
        value = a.value.resolve()
        if value.kind is Kind.GROUP:
            members = merge_attrs({}, value.payload)
            if not members:
                continue
            if a.key == "":
                target.update(members)
            else:
                target[a.key] = _group_of(members)
            continue
        if a.key == "":
            continue
        target[a.key] = value
    return target


def _group_of(members: dict[str, Value]) -> Value:
    return Value(Kind.GROUP, tuple(Attr(k, v) for k, v in members.items()))


# @tra: Handler.Groups
# @tra: Handler.EmptyGroups
# @tra: Handler.Isolation
# @tra: Handler.Concurrency
class Handler:
    """Encodes events as length-prefixed protobuf frames.

    Example:
        ```python
        with open("app.log", "wb") as fh:
            handler = Handler(fh).with_group("request")
            handler.handle(Event("started", origin="app.py:10", attrs=(...)))
        ```
    """

    __slots__ = ("_output", "_level", "_link", "_parent")

    def __init__(self, sink: ByteSink, level: Level = Level.DEBUG) -> None:
        """Initialize the handler.

        Args:
            sink: Destination with a ``write(bytes)`` method.
            level: Minimum level to emit (default DEBUG, i.e. everything).
        """
        self._output = _Output(sink)
        self._level = level
        self._link: _Link | None = None
        self._parent: Handler | None = None

    @property
    def sink(self) -> ByteSink:
        return self._output.sink

    @property
    def level(self) -> Level:
        return self._level

    @property
    def parent(self) -> "Handler | None":
        return self._parent

    def _derive(self, link: _Link) -> "Handler":
        child = object.__new__(Handler)
        child._output = self._output
        child._level = self._level
        child._link = link
        child._parent = self
        return child

    def enabled(self, level: Level) -> bool:
        """Return True if records at ``level`` should be emitted."""
        return level.severity >= self._level.severity

    def with_attrs(self, *attrs: Attr) -> "Handler":
        """Return a handler whose records also carry ``attrs``.

        If a group is open, the attributes land inside it.
        """
        if not attrs:
            return self
        return self._derive(_Link(attrs=tuple(attrs)))

    def with_group(self, name: str) -> "Handler":
        """Return a handler that nests subsequent attributes under ``name``.

        An empty name returns the receiver unchanged.
        """
        if name == "":
            return self
        return self._derive(_Link(group=name))

    def _lineage(self) -> list[_Link]:
        links = []
        node: Handler | None = self
        while node is not None:
            if node._link is not None:
                links.append(node._link)
            node = node._parent
        links.reverse()
        return links

    def build_attrs(self, call_attrs: Iterable[Attr] = ()) -> dict[str, Value]:
        """Build the final attribute mapping for one call.

        Walks the lineage root to leaf. Attribute links merge into the
        innermost open group; group links open a new mapping. The call's
        attributes merge last. Open groups are then attached to their parents
        under their names, innermost first, and dropped when empty.
        """
        stack: list[tuple[str | None, dict[str, Value]]] = [(None, {})]
        for link in self._lineage():
            if link.group is not None:
                stack.append((link.group, {}))
            else:
                merge_attrs(stack[-1][1], link.attrs)
        merge_attrs(stack[-1][1], call_attrs)

        while len(stack) > 1:
            name, members = stack.pop()
            if members:
                stack[-1][1][name] = _group_of(members)
        return stack[0][1]

    def handle(self, event: Event) -> None:
        """Encode ``event`` and write it to the sink as one frame.

        Events with neither an origin nor a time are not real logging calls
        and are dropped. A zero time is omitted from the record.

        Raises:
            EncodeError: If an attribute cannot be encoded. Nothing is written.
        """
        if event.origin is None and event.time is None:
            logger.debug("dropping event without origin or time: %r", event.message)
            return

        record = Record(
            message=event.message,
            level=event.level,
            time=event.time,
            attrs=self.build_attrs(event.attrs),
        )
        output = self._output
        with output.pool.borrow() as msg:
            fill_record(msg, record)
            payload = msg.SerializeToString()
        output.write(frame(payload))
