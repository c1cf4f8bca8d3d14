"""logwire - structured log records over length-prefixed protobuf streams."""

from logwire.adapters.logging import ContextProvider, LogwireHandler
from logwire.core.encoding.ndjson import encode_records
from logwire.core.errors import (
    DecodeError,
    EncodeError,
    FilterCompileError,
    FilterError,
    FilterEvalError,
    FrameTooLargeError,
    LogwireError,
    ReadCancelledError,
    ReadError,
    TruncatedStreamError,
)
from logwire.core.filter import (
    FilterErrorPolicy,
    FilterProgram,
    compile_filter,
    eval_filter,
    select,
)
from logwire.core.handler import Handler
from logwire.core.logs import Logger, timed
from logwire.core.models import Decision, Event, Level, Record
from logwire.core.reader import aiter_records, iter_records, read, read_async
from logwire.core.values import Attr, Kind, LogValuer, Opaque, Value, attr, group

__all__ = [
    # Values and records
    "Attr",
    "Decision",
    "Event",
    "Kind",
    "Level",
    "LogValuer",
    "Opaque",
    "Record",
    "Value",
    "attr",
    "group",
    # Writing
    "Handler",
    "Logger",
    "LogwireHandler",
    "ContextProvider",
    "timed",
    # Reading
    "aiter_records",
    "iter_records",
    "read",
    "read_async",
    "encode_records",
    # Filtering
    "FilterErrorPolicy",
    "FilterProgram",
    "compile_filter",
    "eval_filter",
    "select",
    # Errors
    "DecodeError",
    "EncodeError",
    "FilterCompileError",
    "FilterError",
    "FilterEvalError",
    "FrameTooLargeError",
    "LogwireError",
    "ReadCancelledError",
    "ReadError",
    "TruncatedStreamError",
]
