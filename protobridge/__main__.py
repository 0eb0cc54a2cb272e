"""Run the gateway with uvicorn: ``python -m protobridge``."""

import argparse
import sys

import uvicorn

from .config_loader import load_config
from .core.exceptions import ConfigurationError
from .main import create_app


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Anthropic <-> OpenAI protocol gateway")
    parser.add_argument("--host", help="Bind address (overrides HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides PORT)")
    parser.add_argument("--env-file", default=".env", help="Path to a .env file")
    parser.add_argument("--config", help="YAML settings file (overrides PROTOBRIDGE_CONFIG)")
    args = parser.parse_args(argv)

    try:
        config = load_config(env_path=args.env_file, config_path=args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc.message}", file=sys.stderr)
        return 2

    app = create_app(config)
    uvicorn.run(
        app,
        host=args.host or config.host,
        port=args.port or config.port,
        log_level="debug" if config.debug else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
