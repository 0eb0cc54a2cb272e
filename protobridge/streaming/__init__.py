"""Streaming conversion between the two dialects."""

from .assembler import assemble_response, encode_events, response_to_events
from .reframer import StreamReframer

__all__ = [
    "StreamReframer",
    "assemble_response",
    "encode_events",
    "response_to_events",
]
