"""Length-prefixed framing.

Each frame is a 4-byte little-endian unsigned payload length followed by the
payload itself::

    | length (u32le) | payload | length (u32le) | payload | ... | EOF |

No padding, checksum or magic number. Compression, if any, wraps the byte
stream from outside.
"""

import struct
from collections.abc import Iterator

from logwire.core.errors import EncodeError, FrameTooLargeError, TruncatedStreamError

PREFIX = struct.Struct("<I")
PREFIX_SIZE = PREFIX.size
MAX_PAYLOAD = 2**32 - 1

# Frames declaring more than this are treated as corruption
DEFAULT_MAX_FRAME_SIZE = 64 * 1024 * 1024


def frame(payload: bytes) -> bytes:
    """Return ``payload`` with its length prefix."""
    if len(payload) > MAX_PAYLOAD:
        raise EncodeError(f"payload of {len(payload)} bytes does not fit a u32 prefix")
    return PREFIX.pack(len(payload)) + payload


# @tra: Wire.Framing
class FrameSplitter:
    """Incrementally splits a byte stream into frame payloads.

    Feed chunks of any size with ``feed``; iterate ``frames()`` to take every
    complete payload buffered so far. Call ``finish()`` once input is
    exhausted to detect a trailing partial frame.

    Example:
        ```python
        splitter = FrameSplitter()
        splitter.feed(chunk)
        for payload in splitter.frames():
            ...
        splitter.finish()
        ```
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> None:
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size

    @property
    def buffered(self) -> int:
        """Number of bytes held but not yet returned as a frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        self._buffer += data

    def next_frame(self) -> bytes | None:
        """Return the next complete payload, or None if more input is needed."""
        if len(self._buffer) < PREFIX_SIZE:
            return None
        (size,) = PREFIX.unpack_from(self._buffer)
        if size > self._max_frame_size:
            raise FrameTooLargeError(size, self._max_frame_size)
        end = PREFIX_SIZE + size
        if len(self._buffer) < end:
            return None
        payload = bytes(self._buffer[PREFIX_SIZE:end])
        del self._buffer[:end]
        return payload

    def frames(self) -> Iterator[bytes]:
        """Yield every complete payload currently buffered."""
        while (payload := self.next_frame()) is not None:
            yield payload

    def finish(self) -> None:
        """Signal end of input.

        Raises:
            TruncatedStreamError: If a partial frame remains buffered.
        """
        if not self._buffer:
            return
        if len(self._buffer) < PREFIX_SIZE:
            raise TruncatedStreamError(PREFIX_SIZE, len(self._buffer))
        (size,) = PREFIX.unpack_from(self._buffer)
        raise TruncatedStreamError(PREFIX_SIZE + size, len(self._buffer))
