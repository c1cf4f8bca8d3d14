"""Exception hierarchy for encoding, stream reading and filtering."""


class LogwireError(Exception):
    """Base class for all logwire errors."""


class EncodeError(LogwireError):
    """A log call could not be serialized. No bytes were written."""


class ReadError(LogwireError):
    """Base class for fatal stream read failures."""


class TruncatedStreamError(ReadError):
    """The stream ended in the middle of a frame.

    Attributes:
        expected: Bytes needed to complete the frame (prefix included).
        available: Bytes that were buffered when input ran out.
    """

    def __init__(self, expected: int, available: int) -> None:
        self.expected = expected
        self.available = available
        super().__init__(
            f"stream truncated: frame needs {expected} bytes, "
            f"only {available} available"
        )


class DecodeError(ReadError):
    """A frame payload is not a valid record. The stream is corrupt."""


class FrameTooLargeError(DecodeError):
    """A frame declares a payload larger than the configured maximum."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"frame of {size} bytes exceeds limit of {limit} bytes")


class ReadCancelledError(LogwireError):
    """Reading stopped because the cancellation signal was set."""


class FilterError(LogwireError):
    """Base class for filter expression failures."""


class FilterCompileError(FilterError):
    """A filter expression failed to parse or type-check.

    Attributes:
        expression: The source expression.
        position: Character offset of the problem, when known.
    """

    def __init__(
        self, message: str, expression: str = "", position: int | None = None
    ) -> None:
        self.expression = expression
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)


class FilterEvalError(FilterError):
    """A compiled filter could not be evaluated against a record."""
