"""Tests for the Logger front end and timed()."""

import io
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from logwire.core.handler import Handler
from logwire.core.logs import Logger, timed
from logwire.core.models import Level, Record
from logwire.core.values import Kind, attr, group

ReadBack = Callable[[], list[Record]]


@pytest.fixture
def logger(handler: Handler) -> Logger:
    return Logger(handler)


class TestLogger:
    """Tests for Logger methods."""

    @pytest.mark.core
    @pytest.mark.tra("Logger.Log")
    @pytest.mark.tier(1)
    @pytest.mark.parametrize(
        ("method", "level"),
        [
            ("debug", Level.DEBUG),
            ("info", Level.INFO),
            ("warn", Level.WARN),
            ("error", Level.ERROR),
        ],
    )
    def test_level_methods(
        self, logger: Logger, read_back: ReadBack, method: str, level: Level
    ) -> None:
        getattr(logger, method)("hello", user="bob")

        (record,) = read_back()

        assert record.message == "hello"
        assert record.level is level
        assert record.attrs_dict() == {"user": "bob"}

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_records_current_time(self, logger: Logger, read_back: ReadBack) -> None:
        before = datetime.now(UTC)
        logger.info("now")
        after = datetime.now(UTC)

        (record,) = read_back()

        assert record.time is not None
        assert before - timedelta(seconds=1) <= record.time <= after

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_positional_attrs_and_groups(
        self, logger: Logger, read_back: ReadBack
    ) -> None:
        logger.log(Level.INFO, "req", attr("id", 1), group("http", method="GET"))

        assert read_back()[0].attrs_dict() == {"id": 1, "http": {"method": "GET"}}

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_below_threshold_is_not_written(self, buffer: io.BytesIO) -> None:
        logger = Logger(Handler(buffer, level=Level.INFO))

        logger.debug("noise")

        assert buffer.getvalue() == b""

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_with_and_with_group(self, logger: Logger, read_back: ReadBack) -> None:
        request = logger.with_(service="api").with_group("req").with_(id=7)

        request.warn("slow", ms=250)

        assert read_back()[0].attrs_dict() == {
            "service": "api",
            "req": {"id": 7, "ms": 250},
        }

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_derived_logger_leaves_parent_unchanged(
        self, logger: Logger, read_back: ReadBack
    ) -> None:
        logger.with_(extra=1)
        logger.info("plain")

        assert read_back()[0].attrs_dict() == {}


class TestTimed:
    """Tests for the timed() context manager."""

    @pytest.mark.core
    @pytest.mark.tra("Logger.Timed")
    @pytest.mark.tier(1)
    def test_logs_entry_and_exit(self, logger: Logger, read_back: ReadBack) -> None:
        with timed(logger, "job", job_id=3):
            pass

        entry, exit_ = read_back()

        assert entry.message == "job [entry]"
        assert entry.attrs_dict() == {"phase": "entry", "job_id": 3}
        assert exit_.message == "job [exit]"
        assert exit_.attrs["phase"].payload == "exit"
        assert exit_.attrs["elapsed"].kind is Kind.DURATION
        assert exit_.attrs["elapsed"].payload >= timedelta(0)

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_uses_given_level(self, logger: Logger, read_back: ReadBack) -> None:
        with timed(logger, "job", level=Level.DEBUG):
            pass

        assert {r.level for r in read_back()} == {Level.DEBUG}

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_exception_skips_exit(self, logger: Logger, read_back: ReadBack) -> None:
        with pytest.raises(RuntimeError), timed(logger, "job"):
            raise RuntimeError("fail")

        assert [r.message for r in read_back()] == ["job [entry]"]
