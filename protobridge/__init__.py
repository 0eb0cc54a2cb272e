"""protobridge: Anthropic Messages <-> OpenAI Chat Completions gateway."""

__version__ = "0.1.0"
