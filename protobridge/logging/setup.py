"""Logging configuration for the gateway."""

import logging
import sys


def setup_logging(debug: bool = False) -> logging.Logger:
    """Set up logging with proper handlers and formatters."""
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger("protobridge")
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Set logger to propagate to root logger to ensure proper flushing
    logger.propagate = True

    return logger
