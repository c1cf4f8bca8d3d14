"""Python logging handler adapter for logwire.

This adapter bridges Python's standard library logging module to a logwire
Handler, so ``logging`` calls are written as length-prefixed protobuf frames.
"""

import logging
import traceback
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from logwire.core.handler import Handler
from logwire.core.models import Event, Level
from logwire.core.ports import ByteSink
from logwire.core.values import Attr, Value

# Type alias for context provider callable
ContextProvider = Callable[[], dict[str, Any]]

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Default attributes to extract from LogRecord
_DEFAULT_INCLUDE_ATTRS = ["module", "funcName", "lineno", "pathname"]


def level_from_logging(levelno: int) -> Level:
    """Map a ``logging`` level number onto a record Level."""
    if levelno >= logging.ERROR:
        return Level.ERROR
    if levelno >= logging.WARNING:
        return Level.WARN
    if levelno >= logging.INFO:
        return Level.INFO
    return Level.DEBUG


def _origin(record: logging.LogRecord) -> str | None:
    if not record.pathname or record.pathname == "(unknown file)":
        return None
    return f"{record.pathname}:{record.lineno}"


# @tra: Adapter.Logging.Emit
class LogwireHandler(logging.Handler):
    """Logging handler that writes log records as logwire frames.

    Example:
        ```python
        from logwire import LogwireHandler

        handler = LogwireHandler(open("app.log", "ab"))
        logging.getLogger().addHandler(handler)
        ```
    """

    def __init__(
        self,
        target: Handler | ByteSink,
        include_attrs: list[str] | None = None,
        context_provider: ContextProvider | None = None,
    ) -> None:
        """Initialize the handler with a logwire Handler or a byte sink.

        Args:
            target: A logwire Handler, or a sink to wrap in a new one.
            include_attrs: List of LogRecord attributes to include. Defaults to
                ["module", "funcName", "lineno", "pathname"].
            context_provider: Optional callable returning attributes merged
                into every record (e.g. a request ID). Extra attributes from
                the logging call take precedence.
        """
        super().__init__()
        self._handler = target if isinstance(target, Handler) else Handler(target)
        self._include_attrs = (
            _DEFAULT_INCLUDE_ATTRS if include_attrs is None else include_attrs
        )
        self._context_provider = context_provider

    @property
    def handler(self) -> Handler:
        return self._handler

    def _attributes(self, record: logging.LogRecord) -> dict[str, Any]:
        # Map of attribute names to their values from LogRecord
        attr_mapping: dict[str, Any] = {
            "module": record.name,
            "funcName": record.funcName or "",
            "lineno": record.lineno,
            "pathname": record.pathname,
        }

        # Build attributes based on include_attrs configuration
        attributes: dict[str, Any] = {
            key: attr_mapping[key] for key in self._include_attrs if key in attr_mapping
        }

        if self._context_provider is not None:
            attributes.update(self._context_provider())

        # Add any extra attributes passed via logging call
        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOGRECORD_ATTRS:
                attributes[key] = value

        # Extract exception info if present
        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                attributes["exc_type"] = exc_type.__name__
            if exc_value is not None:
                attributes["exc_message"] = str(exc_value)
            if exc_tb is not None:
                attributes["exc_traceback"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )
        return attributes

    def emit(self, record: logging.LogRecord) -> None:
        """Encode a log record and write it through the logwire Handler.

        Args:
            record: The log record to emit.
        """
        try:
            event = Event(
                message=record.getMessage(),
                level=level_from_logging(record.levelno),
                time=datetime.fromtimestamp(record.created, UTC),
                attrs=tuple(
                    Attr(k, Value.of(v)) for k, v in self._attributes(record).items()
                ),
                origin=_origin(record),
            )
            self._handler.handle(event)
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        """Flush the underlying sink if it supports flushing."""
        sink = self._handler.sink
        flush = getattr(sink, "flush", None)
        if callable(flush):
            with self.lock:
                flush()
