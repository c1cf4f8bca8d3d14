"""NDJSON encoder for decoded records."""

import base64
import json
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from logwire.core.models import Record
from logwire.core.values import Kind, Opaque, Value


def _opaque_to_json(opaque: Opaque) -> dict[str, Any]:
    try:
        value: Any = json.loads(opaque.data)
    except (UnicodeDecodeError, json.JSONDecodeError):
        value = base64.b64encode(opaque.data).decode("ascii")
    return {"@type": opaque.type_tag, "value": value}


def value_to_json(value: Value) -> Any:
    """Convert a Value to JSON-compatible data.

    Times become RFC 3339 strings, durations become seconds as a float and
    opaque payloads become ``{"@type": ..., "value": ...}``.
    """
    if value.kind is Kind.GROUP:
        return {a.key: value_to_json(a.value) for a in value.payload}
    payload = value.to_python()
    if isinstance(payload, datetime):
        return payload.isoformat()
    if isinstance(payload, timedelta):
        return payload.total_seconds()
    if isinstance(payload, Opaque):
        return _opaque_to_json(payload)
    return payload


def record_to_json(record: Record) -> dict[str, Any]:
    obj: dict[str, Any] = {}
    if record.time is not None:
        obj["time"] = record.time.isoformat()
    obj["level"] = record.level.name
    obj["msg"] = record.message
    for key, value in record.attrs.items():
        obj[key] = value_to_json(value)
    return obj


def encode_records(records: Iterable[Record]) -> str:
    """Encode records to newline-delimited JSON.

    Args:
        records: An iterable of Record objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no records.
    """
    lines = [json.dumps(record_to_json(record), default=str) for record in records]

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
