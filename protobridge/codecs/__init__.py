"""Wire codecs for the two supported dialects.

Each codec module exposes ``decode_request``, ``encode_request``,
``decode_response``, ``encode_response``, ``encode_error``,
``parse_error_body`` and the per-stream ``StreamDecoder`` /
``StreamEncoder`` classes.
"""

from types import ModuleType

from ..core.backend import Dialect
from . import anthropic, openai

CODECS: dict[Dialect, ModuleType] = {
    Dialect.ANTHROPIC: anthropic,
    Dialect.OPENAI: openai,
}


def get_codec(dialect: Dialect) -> ModuleType:
    return CODECS[dialect]


__all__ = ["CODECS", "anthropic", "get_codec", "openai"]
