"""Port interfaces for the byte streams and signals the core talks to.

The core depends only on these protocols, so any file object, socket file,
compression stream or in-memory buffer can carry frames.
"""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from logwire.core.models import Decision, Record


@runtime_checkable
class ByteSink(Protocol):
    """Destination for encoded frames (e.g. an open binary file)."""

    def write(self, data: bytes, /) -> object:
        """Write all of ``data``."""
        ...


@runtime_checkable
class ByteSource(Protocol):
    """Source of encoded frames.

    ``read`` returns at most ``size`` bytes and an empty result at end of
    input. Short reads are expected and handled.
    """

    def read(self, size: int = -1, /) -> bytes:
        """Read up to ``size`` bytes."""
        ...


@runtime_checkable
class CancelSignal(Protocol):
    """External cancellation flag, e.g. ``threading.Event``."""

    def is_set(self) -> bool:
        """Return True once cancellation has been requested."""
        ...


RecordCallback = Callable[[Record], Decision | None]
