"""BDD step definitions for the structured log stream features."""

import io
from dataclasses import dataclass, field

import pytest
from pytest_bdd import given, parsers, then, when

from logwire.core.errors import TruncatedStreamError
from logwire.core.filter import compile_filter, select
from logwire.core.handler import Handler
from logwire.core.logs import Logger
from logwire.core.models import Level, Record
from logwire.core.reader import read


@dataclass
class StreamScenarioContext:
    """State shared between the steps of one scenario."""

    buffer: io.BytesIO = field(default_factory=io.BytesIO)
    records: list[Record] = field(default_factory=list)
    selected: list[Record] = field(default_factory=list)


@pytest.fixture
def ctx() -> StreamScenarioContext:
    """Fresh scenario context for each test."""
    return StreamScenarioContext()


def _read_all(ctx: StreamScenarioContext) -> list[Record]:
    records: list[Record] = []
    read(io.BytesIO(ctx.buffer.getvalue()), records.append)
    return records


# === Background Steps ===
@given("an in-memory log stream")
def step_stream(ctx: StreamScenarioContext) -> None:
    ctx.buffer = io.BytesIO()


# === Writing ===
@when(parsers.parse('{n:d} records are logged through a handler grouped under "{name}"'))
def step_log_grouped(ctx: StreamScenarioContext, n: int, name: str) -> None:
    logger = Logger(Handler(ctx.buffer)).with_group(name)
    for i in range(n):
        level = Level.ERROR if i % 10 == 0 else Level.INFO
        logger.log(level, f"event {i}", i=i)


@when(
    parsers.parse(
        'a record is logged through a handler grouped under "{name}" with no attributes'
    )
)
def step_log_empty_group(ctx: StreamScenarioContext, name: str) -> None:
    Logger(Handler(ctx.buffer)).with_group(name).info("bare")


@when("the last byte of the stream is lost")
def step_truncate(ctx: StreamScenarioContext) -> None:
    ctx.buffer = io.BytesIO(ctx.buffer.getvalue()[:-1])


# === Reading ===
@when(parsers.parse("the stream is read with filter '{expression}'"))
def step_read_filtered(ctx: StreamScenarioContext, expression: str) -> None:
    program = compile_filter(expression)
    read(io.BytesIO(ctx.buffer.getvalue()), select(ctx.selected.append, program))


@then(parsers.parse("reading the stream yields {n:d} records"))
def step_count(ctx: StreamScenarioContext, n: int) -> None:
    ctx.records = _read_all(ctx)
    assert len(ctx.records) == n


@then(parsers.parse('record {index:d} has attribute "{path}" equal to {value:d}'))
def step_attribute(ctx: StreamScenarioContext, index: int, path: str, value: int) -> None:
    current: object = ctx.records[index].attrs_dict()
    for part in path.split("."):
        assert isinstance(current, dict)
        current = current[part]
    assert current == value


@then("the last record has no attributes")
def step_no_attrs(ctx: StreamScenarioContext) -> None:
    assert ctx.records[-1].attrs == {}


@then(parsers.parse("{n:d} records are selected"))
def step_selected(ctx: StreamScenarioContext, n: int) -> None:
    assert len(ctx.selected) == n


@then(
    parsers.parse(
        "reading the stream fails with a truncated stream error after {n:d} records"
    )
)
def step_truncated(ctx: StreamScenarioContext, n: int) -> None:
    delivered: list[Record] = []
    with pytest.raises(TruncatedStreamError):
        read(io.BytesIO(ctx.buffer.getvalue()), delivered.append)
    assert len(delivered) == n
