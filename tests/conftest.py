"""Shared test fixtures for all test modules."""

import io
import threading
from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from logwire.core.handler import Handler
from logwire.core.models import Level, Record
from logwire.core.values import Value
from tests.helpers import decode_all


@pytest.fixture
def buffer() -> io.BytesIO:
    """In-memory byte stream used as both sink and source."""
    return io.BytesIO()


@pytest.fixture
def handler(buffer: io.BytesIO) -> Handler:
    """Handler writing every level into ``buffer``."""
    return Handler(buffer)


@pytest.fixture
def read_back(buffer: io.BytesIO) -> Callable[[], list[Record]]:
    """Decode everything written to ``buffer`` so far."""

    def _read() -> list[Record]:
        return decode_all(buffer.getvalue())

    return _read


@pytest.fixture
def cancel_event() -> threading.Event:
    """Cancellation signal for reader tests."""
    return threading.Event()


@pytest.fixture
def sample_record() -> Record:
    """A record exercising the common value kinds."""
    return Record(
        message="request handled",
        level=Level.INFO,
        time=datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=UTC),
        attrs={
            "status": Value.of(200),
            "path": Value.of("/health"),
            "ok": Value.of(True),
        },
    )
