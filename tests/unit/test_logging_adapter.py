"""Unit tests for the LogwireHandler logging adapter."""

import io
import logging
from collections.abc import Callable, Generator
from datetime import UTC, datetime

import pytest

from logwire.adapters.logging import LogwireHandler, level_from_logging
from logwire.core.handler import Handler
from logwire.core.models import Level, Record
from tests.helpers import decode_all

ReadBack = Callable[[], list[Record]]


@pytest.fixture
def std_logger() -> Generator[logging.Logger]:
    logger = logging.getLogger("logwire.tests.adapter")
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger
    logger.handlers.clear()


def _record(**overrides: object) -> logging.LogRecord:
    fields: dict[str, object] = {
        "name": "test",
        "level": logging.INFO,
        "pathname": "",
        "lineno": 0,
        "msg": "test message",
        "args": (),
        "exc_info": None,
    }
    fields.update(overrides)
    return logging.LogRecord(**fields)  # type: ignore[arg-type]


@pytest.mark.core
class TestLogwireHandler:
    """Tests for LogwireHandler adapter."""

    def test_handler_is_logging_handler(self, buffer: io.BytesIO) -> None:
        """Handler extends logging.Handler."""
        assert isinstance(LogwireHandler(buffer), logging.Handler)

    @pytest.mark.tra("Adapter.Logging.Emit")
    @pytest.mark.tier(1)
    def test_emit_writes_record(self, buffer: io.BytesIO, read_back: ReadBack) -> None:
        """emit() writes one frame holding the formatted message."""
        handler = LogwireHandler(buffer)

        handler.emit(_record(msg="user %s", args=("bob",)))

        (record,) = read_back()
        assert record.message == "user bob"
        assert record.level is Level.INFO

    def test_time_comes_from_log_record(
        self, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        log_record = _record()
        log_record.created = 1702300000.5

        LogwireHandler(buffer).emit(log_record)

        assert read_back()[0].time == datetime.fromtimestamp(1702300000.5, UTC)

    def test_extracts_logrecord_attributes(
        self, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        """Handler extracts module, funcName, lineno and pathname."""
        LogwireHandler(buffer).emit(
            _record(
                name="myapp.service",
                level=logging.ERROR,
                pathname="/app/service.py",
                lineno=42,
                msg="error occurred",
                func="process_request",
            )
        )

        attrs = read_back()[0].attrs_dict()
        assert attrs["module"] == "myapp.service"
        assert attrs["funcName"] == "process_request"
        assert attrs["lineno"] == 42
        assert attrs["pathname"] == "/app/service.py"

    def test_configurable_attributes(
        self, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        handler = LogwireHandler(buffer, include_attrs=["module", "lineno"])

        handler.emit(_record(pathname="/app/x.py", lineno=3))

        assert read_back()[0].attrs_dict() == {"module": "test", "lineno": 3}

    def test_empty_include_attrs(self, buffer: io.BytesIO, read_back: ReadBack) -> None:
        LogwireHandler(buffer, include_attrs=[]).emit(_record())
        assert read_back()[0].attrs_dict() == {}

    def test_includes_extra_attributes(
        self, std_logger: logging.Logger, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        """Extra fields become attributes; dicts become groups."""
        std_logger.addHandler(LogwireHandler(buffer, include_attrs=[]))

        std_logger.info(
            "request processed",
            extra={"request_id": "abc123", "user": {"id": 42, "admin": False}},
        )

        assert read_back()[0].attrs_dict() == {
            "request_id": "abc123",
            "user": {"id": 42, "admin": False},
        }

    def test_extracts_exception_info(
        self, std_logger: logging.Logger, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        std_logger.addHandler(LogwireHandler(buffer))

        try:
            raise ValueError("test error")
        except ValueError:
            std_logger.exception("caught error")

        (record,) = read_back()
        attrs = record.attrs_dict()
        assert record.level is Level.ERROR
        assert attrs["exc_type"] == "ValueError"
        assert attrs["exc_message"] == "test error"
        assert "ValueError: test error" in attrs["exc_traceback"]

    def test_context_provider_attributes(
        self, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        handler = LogwireHandler(
            buffer, include_attrs=[], context_provider=lambda: {"request_id": "r-1"}
        )

        handler.emit(_record())

        assert read_back()[0].attrs_dict() == {"request_id": "r-1"}

    def test_extra_overrides_context(
        self, std_logger: logging.Logger, buffer: io.BytesIO, read_back: ReadBack
    ) -> None:
        std_logger.addHandler(
            LogwireHandler(
                buffer, include_attrs=[], context_provider=lambda: {"who": "context"}
            )
        )

        std_logger.info("hi", extra={"who": "extra"})

        assert read_back()[0].attrs_dict() == {"who": "extra"}

    def test_wraps_existing_handler(self, buffer: io.BytesIO, read_back: ReadBack) -> None:
        """A derived logwire Handler keeps its groups."""
        core = Handler(buffer).with_group("app")

        LogwireHandler(core, include_attrs=["lineno"]).emit(_record(lineno=9))

        assert read_back()[0].attrs_dict() == {"app": {"lineno": 9}}

    def test_unencodable_extra_is_reported_not_raised(
        self, buffer: io.BytesIO, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Encoding failures go through logging's handleError."""
        errors: list[logging.LogRecord] = []
        handler = LogwireHandler(buffer)
        monkeypatch.setattr(handler, "handleError", errors.append)
        log_record = _record()
        log_record.payload = object()

        handler.emit(log_record)

        assert len(errors) == 1
        assert buffer.getvalue() == b""

    @pytest.mark.parametrize(
        "setup",
        ["failing_context", "bad_format_args"],
    )
    def test_emit_failures_are_reported_not_raised(
        self, buffer: io.BytesIO, monkeypatch: pytest.MonkeyPatch, setup: str
    ) -> None:
        """Any failure while building the event goes through handleError."""

        def failing_context() -> dict[str, object]:
            raise RuntimeError("context unavailable")

        errors: list[logging.LogRecord] = []
        if setup == "failing_context":
            handler = LogwireHandler(buffer, context_provider=failing_context)
            log_record = _record()
        else:
            handler = LogwireHandler(buffer)
            log_record = _record(msg="%d items", args=("many",))
        monkeypatch.setattr(handler, "handleError", errors.append)

        handler.emit(log_record)

        assert errors == [log_record]
        assert buffer.getvalue() == b""

    def test_flush_flushes_sink(self) -> None:
        class _Sink(io.BytesIO):
            flushed = 0

            def flush(self) -> None:
                self.flushed += 1

        sink = _Sink()
        LogwireHandler(sink).flush()
        assert sink.flushed == 1


class TestLevelMapping:
    """Tests for mapping logging levels onto record levels."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    @pytest.mark.parametrize(
        ("levelno", "level"),
        [
            (logging.NOTSET, Level.DEBUG),
            (logging.DEBUG, Level.DEBUG),
            (logging.INFO, Level.INFO),
            (25, Level.INFO),
            (logging.WARNING, Level.WARN),
            (logging.ERROR, Level.ERROR),
            (logging.CRITICAL, Level.ERROR),
        ],
    )
    def test_level_from_logging(self, levelno: int, level: Level) -> None:
        assert level_from_logging(levelno) is level

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_record_levels_round_trip(self, std_logger: logging.Logger) -> None:
        buffer = io.BytesIO()
        std_logger.addHandler(LogwireHandler(buffer))

        std_logger.debug("d")
        std_logger.warning("w")
        std_logger.critical("c")

        levels = [r.level for r in decode_all(buffer.getvalue())]
        assert levels == [Level.DEBUG, Level.WARN, Level.ERROR]


class TestPackageExports:
    """Tests for package-level exports."""

    def test_context_provider_importable_from_package(self) -> None:
        """ContextProvider type alias is importable from logwire."""
        from logwire import ContextProvider as PkgContextProvider
        from logwire.adapters.logging import ContextProvider

        assert PkgContextProvider is ContextProvider

    def test_handler_importable_from_package(self) -> None:
        from logwire import LogwireHandler as PkgHandler

        assert PkgHandler is LogwireHandler
