"""Tests for core domain models."""

from datetime import UTC, datetime

import pytest

from logwire.core.models import ZERO_TIME, Event, Level, Record, is_zero_time
from logwire.core.values import Value, group


class TestLevel:
    """Tests for record levels."""

    @pytest.mark.core
    @pytest.mark.tra("Model.Level")
    @pytest.mark.tier(0)
    def test_wire_numbers(self) -> None:
        """Member values match the wire enumeration."""
        assert [int(level) for level in Level] == [0, 1, 2, 3, 4]
        assert [level.name for level in Level] == [
            "UNSET",
            "INFO",
            "WARN",
            "ERROR",
            "DEBUG",
        ]

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_severity_orders_debug_lowest(self) -> None:
        ordered = sorted(Level, key=lambda level: level.severity)
        assert ordered == [Level.UNSET, Level.DEBUG, Level.INFO, Level.WARN, Level.ERROR]

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_from_name_accepts_warning(self) -> None:
        assert Level.from_name("warning") is Level.WARN
        assert Level.from_name("Error") is Level.ERROR

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_from_name_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="unknown level"):
            Level.from_name("verbose")


class TestZeroTime:
    """Tests for zero-time detection."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_missing_and_min_are_zero(self) -> None:
        assert is_zero_time(None)
        assert is_zero_time(datetime.min)
        assert is_zero_time(ZERO_TIME)

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_real_time_is_not_zero(self) -> None:
        assert not is_zero_time(datetime(2024, 1, 1, tzinfo=UTC))


class TestRecord:
    """Tests for the Record model."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_defaults(self) -> None:
        record = Record()

        assert record.message == ""
        assert record.level is Level.UNSET
        assert record.time is None
        assert record.attrs == {}

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_attrs_are_not_shared_between_instances(self) -> None:
        a, b = Record(), Record()
        a.attrs["x"] = Value.of(1)
        assert b.attrs == {}

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_attrs_dict_returns_plain_data(self) -> None:
        record = Record(
            attrs={"n": Value.of(1), "g": group("g", a="b").value, "e": Value()}
        )
        assert record.attrs_dict() == {"n": 1, "g": {"a": "b"}, "e": None}


class TestEvent:
    """Tests for the Event model."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_event_is_immutable(self) -> None:
        event = Event("hello")

        assert event.level is Level.INFO
        assert event.origin is None
        with pytest.raises(AttributeError):
            event.message = "changed"  # type: ignore[misc]
