"""FastAPI application for the protobridge gateway."""

import logging
from typing import Optional

import httpx
from fastapi import FastAPI

from .api.routes import chat_completions, health, messages_endpoint
from .config_loader import GatewayConfig, load_config
from .core.gateway import Gateway
from .core.router import Router
from .core.upstream import UpstreamClient
from .logging import setup_logging

logger = logging.getLogger("protobridge")


def create_app(
    config: Optional[GatewayConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        config: Gateway settings; loaded from the environment when omitted.
        transport: Optional httpx transport for upstream calls.

    Returns:
        The configured FastAPI application instance.
    """
    if config is None:
        config = load_config()
    setup_logging(debug=config.debug)

    router = Router.from_config(config)
    gateway = Gateway(
        router,
        UpstreamClient(transport=transport),
        verbose=config.verbose,
        log_raw_json=config.log_raw_json and config.debug,
    )

    app = FastAPI(title="protobridge")
    app.state.config = config
    app.state.gateway = gateway

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        logger.info("protobridge gateway starting up...")
        logger.info("Configured bind address %s:%s", config.host, config.port)
        logger.info(f"Routing mode: {config.routing_mode.value}")
        for dialect, backend in router.table.backends.items():
            logger.info(f"  - {dialect.value}: {backend.build_url()}")
        if config.reasoning_model or config.completion_model:
            logger.info(
                f"Model overrides: reasoning={config.reasoning_model}, "
                f"completion={config.completion_model}"
            )

    app.post("/v1/messages")(messages_endpoint)
    app.post("/v1/chat/completions")(chat_completions)
    app.get("/health")(health)
    logger.info("FastAPI application created")
    return app


__all__ = ["create_app"]
