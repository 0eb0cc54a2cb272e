"""API module for the gateway."""

from .routes import chat_completions, health, messages_endpoint

__all__ = [
    "chat_completions",
    "health",
    "messages_endpoint",
]
