"""OpenAI-compatible chat completions endpoint."""

from fastapi import Request, Response

from .dispatch import dispatch_to_gateway


async def chat_completions(request: Request) -> Response:
    """POST /v1/chat/completions - OpenAI Chat Completions compatible endpoint."""
    return await dispatch_to_gateway(request)
