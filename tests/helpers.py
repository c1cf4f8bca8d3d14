"""Shared helpers for reading and writing frames in tests."""

import io
from collections.abc import Iterable

from logwire.core.encoding.framing import frame
from logwire.core.encoding.protobuf import encode_record
from logwire.core.models import Record
from logwire.core.reader import iter_records


class ChunkedSource:
    """Byte source that returns at most ``chunk`` bytes per read.

    Used to check that frames split across arbitrary read boundaries are
    reassembled.
    """

    def __init__(self, data: bytes, chunk: int = 1) -> None:
        self._data = data
        self._pos = 0
        self._chunk = chunk
        self.reads = 0

    def read(self, size: int = -1, /) -> bytes:
        self.reads += 1
        n = self._chunk if size < 0 else min(size, self._chunk)
        out = self._data[self._pos : self._pos + n]
        self._pos += len(out)
        return out


class RecordingSink:
    """Byte sink that keeps each write separately."""

    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, data: bytes, /) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def getvalue(self) -> bytes:
        return b"".join(self.writes)


def frames_of(records: Iterable[Record]) -> bytes:
    """Encode records into a framed stream."""
    return b"".join(frame(encode_record(r)) for r in records)


def decode_all(data: bytes) -> list[Record]:
    """Decode every record in a framed stream."""
    return list(iter_records(io.BytesIO(data)))
