"""Wire encoding: length-prefixed framing and the protobuf record payload."""

from logwire.core.encoding.framing import FrameSplitter, frame
from logwire.core.encoding.protobuf import MessagePool, decode_record, encode_record

__all__ = [
    "FrameSplitter",
    "MessagePool",
    "decode_record",
    "encode_record",
    "frame",
]
