"""Logger front end for writing events through a Handler."""

import sys
import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from logwire.core.handler import Handler
from logwire.core.models import Event, Level
from logwire.core.values import Attr, Value


def _collect(attrs: tuple[Attr, ...], kwargs: dict[str, Any]) -> tuple[Attr, ...]:
    return attrs + tuple(Attr(k, Value.of(v)) for k, v in kwargs.items())


def _caller(depth: int) -> str:
    frame = sys._getframe(depth + 1)
    return f"{frame.f_code.co_filename}:{frame.f_lineno}"


class Logger:
    """Structured logger writing through a Handler.

    Example:
        ```python
        logger = Logger(Handler(fh))
        logger.with_group("db").info("query", rows=3)
        ```
    """

    def __init__(self, handler: Handler) -> None:
        self.handler = handler

    def with_(self, *attrs: Attr, **kwargs: Any) -> "Logger":
        """Return a logger whose records also carry the given attributes."""
        return Logger(self.handler.with_attrs(*_collect(attrs, kwargs)))

    def with_group(self, name: str) -> "Logger":
        """Return a logger that nests subsequent attributes under ``name``."""
        return Logger(self.handler.with_group(name))

    def _log(
        self, level: Level, message: str, attrs: tuple[Attr, ...], kwargs: dict[str, Any]
    ) -> None:
        if not self.handler.enabled(level):
            return
        self.handler.handle(
            Event(
                message=message,
                level=level,
                time=datetime.now(UTC),
                attrs=_collect(attrs, kwargs),
                # _log -> public method -> user code
                origin=_caller(2),
            )
        )

    def log(self, level: Level, message: str, *attrs: Attr, **kwargs: Any) -> None:
        """Log ``message`` at ``level`` with attributes.

        Args:
            level: Record severity.
            message: The log message.
            *attrs: Attributes, including groups built with ``group()``.
            **kwargs: Additional attributes as key=value pairs.
        """
        self._log(level, message, attrs, kwargs)

    def debug(self, message: str, *attrs: Attr, **kwargs: Any) -> None:
        self._log(Level.DEBUG, message, attrs, kwargs)

    def info(self, message: str, *attrs: Attr, **kwargs: Any) -> None:
        self._log(Level.INFO, message, attrs, kwargs)

    def warn(self, message: str, *attrs: Attr, **kwargs: Any) -> None:
        self._log(Level.WARN, message, attrs, kwargs)

    def error(self, message: str, *attrs: Attr, **kwargs: Any) -> None:
        self._log(Level.ERROR, message, attrs, kwargs)


# @tra: Logger.Timed
@contextmanager
def timed(
    logger: Logger,
    message: str,
    level: Level = Level.INFO,
    **attributes: Any,
) -> Generator[None]:
    """Context manager that logs entry and exit with elapsed time.

    Args:
        logger: Logger to write through.
        message: The base log message.
        level: Log level (default INFO).
        **attributes: Additional structured fields.
    """
    start = time.perf_counter()
    logger.log(level, f"{message} [entry]", phase="entry", **attributes)
    yield
    elapsed = timedelta(seconds=time.perf_counter() - start)
    logger.log(
        level, f"{message} [exit]", phase="exit", elapsed=elapsed, **attributes
    )
