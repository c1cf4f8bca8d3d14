"""Protobuf payload codec for records.

Converts between the domain ``Record``/``Value`` model and the protobuf
messages declared in ``schema``. Framing lives in ``framing``.
"""

import json
import queue
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.protobuf.message import Message
from google.protobuf.unknown_fields import UnknownFieldSet

from logwire.core.encoding.schema import RecordMessage
from logwire.core.errors import DecodeError, EncodeError
from logwire.core.models import Level, Record, is_zero_time
from logwire.core.values import Attr, Kind, Opaque, Value

# Type tag prefix for Python objects serialized as JSON
ANY_TAG_PREFIX = "py/"


class MessagePool:
    """Thread-safe pool of reusable protobuf Record messages."""

    def __init__(self, max_size: int = 64) -> None:
        self._free: queue.LifoQueue[Message] = queue.LifoQueue(maxsize=max_size)

    @contextmanager
    def borrow(self) -> Iterator[Message]:
        """Yield a blank Record message, clearing and returning it on exit."""
        try:
            msg = self._free.get_nowait()
        except queue.Empty:
            msg = RecordMessage()
        try:
            yield msg
        finally:
            msg.Clear()
            try:
                self._free.put_nowait(msg)
            except queue.Full:
                pass


def _type_tag(obj: Any) -> str:
    cls = type(obj)
    return f"{ANY_TAG_PREFIX}{cls.__module__}.{cls.__qualname__}"


def _to_opaque(obj: Any) -> Opaque:
    if isinstance(obj, Opaque):
        return obj
    try:
        data = json.dumps(obj, separators=(",", ":")).encode()
    except (TypeError, ValueError) as exc:
        raise EncodeError(
            f"cannot serialize value of type {type(obj).__name__} as JSON"
        ) from exc
    return Opaque(_type_tag(obj), data)


def fill_value(pv: Message, value: Value) -> None:
    """Write ``value`` into the protobuf Value message ``pv``."""
    value = value.resolve()
    kind = value.kind
    if kind is Kind.EMPTY:
        return
    if kind is Kind.BOOL:
        pv.bool = value.payload
    elif kind is Kind.FLOAT:
        pv.float = value.payload
    elif kind is Kind.INT:
        pv.int = value.payload
    elif kind is Kind.UINT:
        pv.uint = value.payload
    elif kind is Kind.STRING:
        pv.string = value.payload
    elif kind is Kind.TIME:
        pv.time.FromDatetime(value.payload)
    elif kind is Kind.DURATION:
        pv.duration.FromTimedelta(value.payload)
    elif kind is Kind.GROUP:
        pv.group.SetInParent()
        for member in value.payload:
            fill_value(pv.group.attrs[member.key], member.value)
    elif kind is Kind.ANY:
        opaque = _to_opaque(value.payload)
        pv.any.type_url = opaque.type_tag
        pv.any.value = opaque.data
    else:
        raise EncodeError(f"unsupported value kind: {kind!r}")


def fill_record(msg: Message, record: Record) -> None:
    """Write ``record`` into the protobuf Record message ``msg``."""
    try:
        msg.message = record.message
        msg.level = int(record.level)
        if not is_zero_time(record.time):
            msg.time.FromDatetime(record.time)
    except (TypeError, ValueError, OverflowError) as exc:
        raise EncodeError(f"cannot encode record: {exc}") from exc
    for key, value in record.attrs.items():
        try:
            fill_value(msg.attrs[key], value)
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncodeError(f"cannot encode attribute {key!r}: {exc}") from exc


def encode_record(record: Record, pool: MessagePool | None = None) -> bytes:
    """Serialize a record to its protobuf payload (no length prefix)."""
    if pool is None:
        msg = RecordMessage()
        fill_record(msg, record)
        return msg.SerializeToString()
    with pool.borrow() as msg:
        fill_record(msg, record)
        return msg.SerializeToString()


def _to_datetime(ts: Message) -> datetime:
    try:
        return ts.ToDatetime(tzinfo=UTC)
    except (ValueError, OverflowError) as exc:
        raise DecodeError(f"invalid timestamp: {exc}") from exc


def _from_value_message(pv: Message) -> Value:
    which = pv.WhichOneof("kind")
    if which is None:
        if len(UnknownFieldSet(pv)):
            raise DecodeError("unrecognized value kind")
        return Value()
    if which == "bool":
        return Value(Kind.BOOL, pv.bool)
    if which == "float":
        return Value(Kind.FLOAT, pv.float)
    if which == "int":
        return Value(Kind.INT, pv.int)
    if which == "uint":
        return Value(Kind.UINT, pv.uint)
    if which == "string":
        return Value(Kind.STRING, pv.string)
    if which == "time":
        return Value(Kind.TIME, _to_datetime(pv.time))
    if which == "duration":
        try:
            return Value(Kind.DURATION, pv.duration.ToTimedelta())
        except (ValueError, OverflowError) as exc:
            raise DecodeError(f"invalid duration: {exc}") from exc
    if which == "group":
        members = tuple(
            Attr(k, _from_value_message(v)) for k, v in pv.group.attrs.items()
        )
        return Value(Kind.GROUP, members)
    if which == "any":
        return Value(Kind.ANY, Opaque(pv.any.type_url, pv.any.value))
    raise DecodeError(f"unrecognized value kind: {which}")


def decode_record(payload: bytes) -> Record:
    """Parse a protobuf payload into a Record.

    Raises:
        DecodeError: If the payload is malformed, holds an unknown level
            or value kind, or holds an out-of-range time or duration.
    """
    try:
        msg = RecordMessage.FromString(payload)
    except ProtobufDecodeError as exc:
        raise DecodeError(f"error unmarshaling record: {exc}") from exc

    try:
        level = Level(msg.level)
    except ValueError:
        raise DecodeError(f"unrecognized level: {msg.level}") from None

    time = _to_datetime(msg.time) if msg.HasField("time") else None
    attrs: dict[str, Value] = {}
    for key, pv in msg.attrs.items():
        # Empty keys never come from a Handler
        if key == "":
            continue
        attrs[key] = _from_value_message(pv)
    return Record(message=msg.message, level=level, time=time, attrs=attrs)
