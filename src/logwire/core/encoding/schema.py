"""Protobuf message classes for the record payload.

The schema is declared as a ``FileDescriptorProto`` and registered in the
default descriptor pool at import time, so no generated ``_pb2`` module is
needed. It is wire-compatible with::

    enum Level { Unset = 0; Info = 1; Warn = 2; Error = 3; Debug = 4; }

    message Value {
        message Group { map<string, Value> attrs = 1; }
        oneof kind {
            bool bool = 1;
            double float = 2;
            int64 int = 3;
            string string = 4;
            google.protobuf.Timestamp time = 5;
            google.protobuf.Duration duration = 6;
            uint64 uint = 7;
            Group group = 8;
            google.protobuf.Any any = 9;
        }
    }

    message Record {
        google.protobuf.Timestamp time = 1;
        string message = 2;
        Level level = 3;
        map<string, Value> attrs = 4;
    }
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

# Imported for their side effect of registering the well-known types
from google.protobuf import any_pb2, duration_pb2, timestamp_pb2  # noqa: F401

FILE_NAME = "logwire/record.proto"
PACKAGE = "logwire"

_F = descriptor_pb2.FieldDescriptorProto

LEVEL_NAMES = ("Unset", "Info", "Warn", "Error", "Debug")


def _field(
    msg: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    ftype: int,
    type_name: str | None = None,
    *,
    repeated: bool = False,
    oneof_index: int | None = None,
) -> None:
    f = msg.field.add(
        name=name,
        number=number,
        type=ftype,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
        json_name=name,
    )
    if type_name is not None:
        f.type_name = type_name
    if oneof_index is not None:
        f.oneof_index = oneof_index


def _map_field(
    msg: descriptor_pb2.DescriptorProto,
    scope: str,
    name: str,
    number: int,
    value_type: str,
) -> None:
    """Declare ``map<string, value_type> name = number`` on ``msg``."""
    entry = msg.nested_type.add(name=name.capitalize() + "Entry")
    entry.options.map_entry = True
    _field(entry, "key", 1, _F.TYPE_STRING)
    _field(entry, "value", 2, _F.TYPE_MESSAGE, value_type)
    _field(msg, name, number, _F.TYPE_MESSAGE, f"{scope}.{entry.name}", repeated=True)


def build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    """Return the payload schema as a FileDescriptorProto."""
    fdp = descriptor_pb2.FileDescriptorProto(
        name=FILE_NAME,
        package=PACKAGE,
        syntax="proto3",
        dependency=[
            "google/protobuf/timestamp.proto",
            "google/protobuf/duration.proto",
            "google/protobuf/any.proto",
        ],
    )

    level = fdp.enum_type.add(name="Level")
    for number, name in enumerate(LEVEL_NAMES):
        level.value.add(name=name, number=number)

    value_type = f".{PACKAGE}.Value"
    value = fdp.message_type.add(name="Value")
    group = value.nested_type.add(name="Group")
    _map_field(group, f"{value_type}.Group", "attrs", 1, value_type)
    value.oneof_decl.add(name="kind")
    kinds = (
        ("bool", _F.TYPE_BOOL, None),
        ("float", _F.TYPE_DOUBLE, None),
        ("int", _F.TYPE_INT64, None),
        ("string", _F.TYPE_STRING, None),
        ("time", _F.TYPE_MESSAGE, ".google.protobuf.Timestamp"),
        ("duration", _F.TYPE_MESSAGE, ".google.protobuf.Duration"),
        ("uint", _F.TYPE_UINT64, None),
        ("group", _F.TYPE_MESSAGE, f"{value_type}.Group"),
        ("any", _F.TYPE_MESSAGE, ".google.protobuf.Any"),
    )
    for number, (name, ftype, type_name) in enumerate(kinds, start=1):
        _field(value, name, number, ftype, type_name, oneof_index=0)

    record = fdp.message_type.add(name="Record")
    _field(record, "time", 1, _F.TYPE_MESSAGE, ".google.protobuf.Timestamp")
    _field(record, "message", 2, _F.TYPE_STRING)
    _field(record, "level", 3, _F.TYPE_ENUM, f".{PACKAGE}.Level")
    _map_field(record, f".{PACKAGE}.Record", "attrs", 4, value_type)
    return fdp


def _register() -> descriptor_pool.DescriptorPool:
    pool = descriptor_pool.Default()
    try:
        pool.FindFileByName(FILE_NAME)
    except KeyError:
        pool.AddSerializedFile(build_file_descriptor().SerializeToString())
    return pool


_pool = _register()

RecordMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.Record")
)
ValueMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.Value")
)
