"""End-to-end tests: write through a Handler, read back through the reader."""

import io
import threading
from pathlib import Path

import pytest
import zstandard

from logwire.core.filter import FilterErrorPolicy, compile_filter, select
from logwire.core.handler import Handler
from logwire.core.logs import Logger
from logwire.core.models import Decision, Level, Record
from logwire.core.reader import iter_records, read
from logwire.core.values import attr
from tests.helpers import ChunkedSource, decode_all


def _write_numbered(logger: Logger, n: int) -> None:
    for i in range(n):
        level = Level.ERROR if i % 10 == 0 else Level.INFO
        logger.log(level, f"event {i}", attr("i", i), attr("even", i % 2 == 0))


class TestStreamRoundTrip:
    """Tests that written streams decode to the same records."""

    @pytest.mark.integration
    @pytest.mark.tra("Stream.RoundTrip")
    @pytest.mark.tier(2)
    def test_hundred_records_in_order(self, buffer: io.BytesIO) -> None:
        logger = Logger(Handler(buffer)).with_group("job").with_(name="import")

        _write_numbered(logger, 100)
        records = decode_all(buffer.getvalue())

        assert len(records) == 100
        assert [r.message for r in records] == [f"event {i}" for i in range(100)]
        assert records[42].attrs_dict() == {
            "job": {"name": "import", "i": 42, "even": True}
        }
        assert records[10].level is Level.ERROR

    @pytest.mark.integration
    @pytest.mark.tra("Stream.RoundTrip")
    @pytest.mark.tier(2)
    def test_hundred_single_attribute_records(self, buffer: io.BytesIO) -> None:
        logger = Logger(Handler(buffer))
        for i in range(100):
            logger.info("this is a test", attr("test", i))

        records = decode_all(buffer.getvalue())

        assert len(records) == 100
        for i, record in enumerate(records):
            assert record.message == "this is a test"
            assert list(record.attrs) == ["test"]
            assert record.attrs_dict() == {"test": i}

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_file_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "app.log"
        with path.open("wb") as fh:
            _write_numbered(Logger(Handler(fh)), 20)

        with path.open("rb") as fh:
            count = read(fh, lambda r: None)

        assert count == 20

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_fragmented_reads(self, buffer: io.BytesIO) -> None:
        _write_numbered(Logger(Handler(buffer)), 30)
        data = buffer.getvalue()

        for chunk in (1, 3, 7, 64):
            records = list(iter_records(ChunkedSource(data, chunk=chunk)))
            assert [r.attrs_dict()["i"] for r in records] == list(range(30))

    @pytest.mark.integration
    @pytest.mark.tra("Stream.Compression")
    @pytest.mark.tier(2)
    def test_zstd_wrapped_stream(self) -> None:
        """Compression wraps the byte stream without changing the framing."""
        compressed = io.BytesIO()
        cctx = zstandard.ZstdCompressor()
        with cctx.stream_writer(compressed, closefd=False) as writer:
            _write_numbered(Logger(Handler(writer)), 50)

        dctx = zstandard.ZstdDecompressor()
        with dctx.stream_reader(io.BytesIO(compressed.getvalue())) as reader:
            records = list(iter_records(reader))

        assert len(records) == 50
        assert records[-1].message == "event 49"


class TestFilteredRead:
    """Tests for reading with a filter program."""

    @pytest.mark.integration
    @pytest.mark.tra("Stream.Filter")
    @pytest.mark.tier(2)
    def test_only_matching_records_are_delivered(self, buffer: io.BytesIO) -> None:
        _write_numbered(Logger(Handler(buffer)), 100)
        program = compile_filter('level == "ERROR" && attrs.i >= 50')
        seen: list[Record] = []

        read(io.BytesIO(buffer.getvalue()), select(seen.append, program))

        assert [r.attrs_dict()["i"] for r in seen] == [50, 60, 70, 80, 90]

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_optional_access_over_mixed_records(self, buffer: io.BytesIO) -> None:
        logger = Logger(Handler(buffer))
        logger.info("with user", user="bob")
        logger.info("without user")
        program = compile_filter('attrs.?user.orValue("nobody") == "nobody"')
        seen: list[Record] = []

        read(io.BytesIO(buffer.getvalue()), select(seen.append, program))

        assert [r.message for r in seen] == ["without user"]

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_skip_policy_keeps_reading(self, buffer: io.BytesIO) -> None:
        logger = Logger(Handler(buffer))
        logger.info("a", user="bob")
        logger.info("b")
        logger.info("c", user="bob")
        program = compile_filter('attrs.user == "bob"')
        seen: list[Record] = []

        count = read(
            io.BytesIO(buffer.getvalue()),
            select(seen.append, program, on_error=FilterErrorPolicy.SKIP),
        )

        assert count == 3
        assert [r.message for r in seen] == ["a", "c"]

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_stop_after_first_match(self, buffer: io.BytesIO) -> None:
        _write_numbered(Logger(Handler(buffer)), 100)
        seen: list[Record] = []

        def first(record: Record) -> Decision:
            seen.append(record)
            return Decision.STOP

        count = read(
            io.BytesIO(buffer.getvalue()),
            select(first, compile_filter("attrs.i > 5 && attrs.even")),
        )

        assert [r.attrs_dict()["i"] for r in seen] == [6]
        assert count == 7


class TestConcurrentWriters:
    """Tests for many threads sharing one handler lineage."""

    @pytest.mark.integration
    @pytest.mark.tra("Handler.Concurrency")
    @pytest.mark.tier(2)
    def test_frames_never_interleave(self, buffer: io.BytesIO) -> None:
        root = Logger(Handler(buffer)).with_group("worker")
        threads_n, per_thread = 8, 200

        def work(n: int) -> None:
            logger = root.with_(thread=n)
            for i in range(per_thread):
                logger.info("tick", i=i)

        threads = [threading.Thread(target=work, args=(n,)) for n in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = decode_all(buffer.getvalue())

        assert len(records) == threads_n * per_thread
        by_thread: dict[int, list[int]] = {}
        for r in records:
            worker = r.attrs_dict()["worker"]
            by_thread.setdefault(worker["thread"], []).append(worker["i"])
        assert all(seq == list(range(per_thread)) for seq in by_thread.values())
        assert len(by_thread) == threads_n
