"""API routes for the gateway."""

from .chat import chat_completions
from .health import health
from .messages import messages_endpoint

__all__ = [
    "chat_completions",
    "health",
    "messages_endpoint",
]
