"""Liveness endpoint."""

from typing import Any

from fastapi import Request


async def health(request: Request) -> dict[str, Any]:
    """GET /health - report liveness and the configured routing."""
    table = request.app.state.gateway.router.table
    return {
        "status": "ok",
        "routing_mode": table.mode.value,
        "backends": sorted(dialect.value for dialect in table.backends),
    }
