"""Stream reader: frames in, records out.

Reading is sequential and single-threaded. Cancellation is polled before
each frame is extracted and before each payload is decoded, so a cancelled
read stops at the next frame boundary.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator

from logwire.core.encoding.framing import (
    DEFAULT_MAX_FRAME_SIZE,
    PREFIX,
    PREFIX_SIZE,
    FrameSplitter,
)
from logwire.core.encoding.protobuf import decode_record
from logwire.core.errors import (
    FrameTooLargeError,
    ReadCancelledError,
    TruncatedStreamError,
)
from logwire.core.models import Decision, Record
from logwire.core.ports import ByteSource, CancelSignal, RecordCallback

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


def _check_cancel(cancel: CancelSignal | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ReadCancelledError("read cancelled")


def iter_records(
    source: ByteSource,
    *,
    cancel: CancelSignal | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> Iterator[Record]:
    """Yield records decoded from ``source`` in stream order.

    Args:
        source: Object with ``read(n) -> bytes``; an empty read means EOF.
        cancel: Optional signal polled once per frame boundary.
        chunk_size: Bytes requested from ``source`` per read.
        max_frame_size: Largest payload accepted before the stream is
            treated as corrupt.

    Raises:
        ReadCancelledError: If ``cancel`` is set.
        TruncatedStreamError: If input ends inside a frame.
        DecodeError: If a payload cannot be decoded.
    """
    splitter = FrameSplitter(max_frame_size)
    logger.debug("reading stream (chunk_size=%d)", chunk_size)
    while True:
        _check_cancel(cancel)
        payload = splitter.next_frame()
        if payload is None:
            chunk = source.read(chunk_size)
            if not chunk:
                splitter.finish()
                logger.debug("end of stream")
                return
            splitter.feed(chunk)
            continue
        _check_cancel(cancel)
        yield decode_record(payload)


# @tra: Reader.Stop
# @tra: Reader.Cancel
# @tra: Reader.Truncated
def read(
    source: ByteSource,
    fn: RecordCallback,
    *,
    cancel: CancelSignal | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> int:
    """Read records from ``source`` and pass each to ``fn``.

    ``fn`` returns ``Decision.STOP`` to end reading early; any other return
    value (including None) continues. Stopping is not an error.

    Returns:
        Number of records passed to ``fn``.

    Raises:
        ReadCancelledError: If ``cancel`` is set.
        TruncatedStreamError: If input ends inside a frame.
        DecodeError: If a payload cannot be decoded.
    """
    count = 0
    records = iter_records(
        source, cancel=cancel, chunk_size=chunk_size, max_frame_size=max_frame_size
    )
    try:
        for record in records:
            count += 1
            if fn(record) is Decision.STOP:
                logger.debug("read stopped by callback after %d records", count)
                break
    finally:
        records.close()
    return count


async def aiter_records(
    stream: asyncio.StreamReader,
    *,
    cancel: CancelSignal | None = None,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> AsyncIterator[Record]:
    """Async variant of ``iter_records`` over an asyncio StreamReader.

    Task cancellation propagates as ``asyncio.CancelledError``; ``cancel``
    is an additional cooperative signal.
    """
    while True:
        _check_cancel(cancel)
        try:
            prefix = await stream.readexactly(PREFIX_SIZE)
        except asyncio.IncompleteReadError as exc:
            if not exc.partial:
                return
            raise TruncatedStreamError(PREFIX_SIZE, len(exc.partial)) from exc
        (size,) = PREFIX.unpack(prefix)
        if size > max_frame_size:
            raise FrameTooLargeError(size, max_frame_size)
        try:
            payload = await stream.readexactly(size)
        except asyncio.IncompleteReadError as exc:
            raise TruncatedStreamError(
                PREFIX_SIZE + size, PREFIX_SIZE + len(exc.partial)
            ) from exc
        _check_cancel(cancel)
        yield decode_record(payload)


# @tra: Reader.Async
async def read_async(
    stream: asyncio.StreamReader,
    fn: RecordCallback,
    *,
    cancel: CancelSignal | None = None,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> int:
    """Async variant of ``read``. Returns the number of records delivered."""
    count = 0
    records = aiter_records(stream, cancel=cancel, max_frame_size=max_frame_size)
    try:
        async for record in records:
            count += 1
            if fn(record) is Decision.STOP:
                break
    finally:
        await records.aclose()
    return count
