"""Anthropic-compatible Messages API endpoint."""

from fastapi import Request, Response

from .dispatch import dispatch_to_gateway


async def messages_endpoint(request: Request) -> Response:
    """POST /v1/messages - Anthropic Messages API compatible endpoint."""
    return await dispatch_to_gateway(request)
