"""Configuration loading from environment variables, a .env file and optional YAML."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.backend import DEFAULT_ANTHROPIC_VERSION, DEFAULT_TIMEOUT, RoutingMode
from .core.exceptions import ConfigurationError

logger = logging.getLogger("protobridge")

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_ENV_PATH = ".env"
CONFIG_PATH_ENV = "PROTOBRIDGE_CONFIG"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class GatewayConfig:
    """Read-only settings shared by every request."""

    routing_mode: RoutingMode = RoutingMode.TRANSFORM
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    anthropic_base_url: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    openai_base_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    reasoning_model: Optional[str] = None
    completion_model: Optional[str] = None
    request_timeout: float = DEFAULT_TIMEOUT
    anthropic_prefixes: tuple[str, ...] = ()
    openai_prefixes: tuple[str, ...] = ()
    debug: bool = False
    verbose: bool = False
    log_raw_json: bool = False

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "GatewayConfig":
        """Build and validate a config from upper-case setting names.

        Raises:
            ConfigurationError: If a value cannot be parsed or the routing
                mode lacks the backends it needs.
        """
        def get(*names: str) -> Optional[str]:
            for name in names:
                value = values.get(name)
                if value is not None and str(value).strip() != "":
                    return str(value).strip()
            return None

        config = cls(
            routing_mode=RoutingMode.parse(get("ROUTING_MODE")),
            host=get("HOST") or DEFAULT_HOST,
            port=_parse_int(get("PORT"), "PORT", DEFAULT_PORT),
            anthropic_base_url=get("ANTHROPIC_BASE_URL"),
            anthropic_api_key=get("ANTHROPIC_API_KEY"),
            anthropic_version=get("ANTHROPIC_VERSION") or DEFAULT_ANTHROPIC_VERSION,
            openai_base_url=get("OPENAI_BASE_URL", "UPSTREAM_BASE_URL", "ANTHROPIC_PROXY_BASE_URL"),
            openai_api_key=get("OPENAI_API_KEY", "UPSTREAM_API_KEY", "OPENROUTER_API_KEY"),
            reasoning_model=get("REASONING_MODEL"),
            completion_model=get("COMPLETION_MODEL"),
            request_timeout=_parse_float(get("REQUEST_TIMEOUT"), "REQUEST_TIMEOUT", DEFAULT_TIMEOUT),
            anthropic_prefixes=_parse_list(values.get("ANTHROPIC_MODEL_PREFIXES")),
            openai_prefixes=_parse_list(values.get("OPENAI_MODEL_PREFIXES")),
            debug=_parse_bool(get("DEBUG")),
            verbose=_parse_bool(get("VERBOSE")),
            log_raw_json=_parse_bool(get("LOG_RAW_JSON")),
        )
        config.validate()
        return config

    def validate(self) -> None:
        mode = self.routing_mode
        if mode is RoutingMode.TRANSFORM and not self.openai_base_url:
            raise ConfigurationError(
                "ROUTING_MODE=transform requires UPSTREAM_BASE_URL (or OPENAI_BASE_URL)"
            )
        if not self.anthropic_base_url and not self.openai_base_url:
            raise ConfigurationError(
                f"ROUTING_MODE={mode.value} requires ANTHROPIC_BASE_URL or OPENAI_BASE_URL"
            )
        for name, url in (
            ("ANTHROPIC_BASE_URL", self.anthropic_base_url),
            ("OPENAI_BASE_URL", self.openai_base_url),
        ):
            if url and url.rstrip("/").endswith("/v1"):
                logger.warning(
                    f"{name} ends with '/v1'; the gateway appends the API path itself, "
                    f"so the trailing '/v1' is ignored"
                )


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def _parse_int(value: Optional[str], name: str, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from exc


def _parse_float(value: Optional[str], name: str, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got '{value}'") from exc


def _parse_list(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]
    return tuple(item.strip().lower() for item in items if item.strip())


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_yaml_settings(path: Path, env_values: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Load a YAML settings file and upper-case its keys.

    A nested ``model_prefixes`` mapping with ``anthropic`` / ``openai`` lists
    is flattened into ``ANTHROPIC_MODEL_PREFIXES`` / ``OPENAI_MODEL_PREFIXES``.
    """
    if not path.exists():
        logger.error(f"Config file not found: {path}")
        raise ConfigurationError(f"Config file not found: {path}")

    logger.info(f"Loading configuration from {path}")
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    data = _substitute_env_vars(data, env_values)
    settings: dict[str, Any] = {}
    for key, value in data.items():
        if str(key).lower() == "model_prefixes" and isinstance(value, dict):
            for dialect, prefixes in value.items():
                settings[f"{str(dialect).upper()}_MODEL_PREFIXES"] = prefixes
            continue
        settings[str(key).upper()] = value
    return settings


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    env_path: Optional[str] = DEFAULT_ENV_PATH,
    config_path: Optional[str] = None,
) -> GatewayConfig:
    """Load the gateway configuration.

    Precedence, lowest first: YAML file, .env file, process environment.

    Args:
        environ: Environment to read; defaults to ``os.environ``.
        env_path: Path of the .env file, or None to skip it.
        config_path: YAML settings file; defaults to ``$PROTOBRIDGE_CONFIG``.

    Returns:
        The validated GatewayConfig.
    """
    environ = os.environ if environ is None else environ
    env_values: dict[str, str] = {}
    if env_path:
        env_file = Path(env_path)
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    merged: dict[str, Any] = {}
    yaml_path = config_path or environ.get(CONFIG_PATH_ENV) or env_values.get(CONFIG_PATH_ENV)
    if yaml_path:
        lookup = {**env_values, **environ}
        merged.update(load_yaml_settings(Path(yaml_path), lookup))
    merged.update(env_values)
    merged.update(environ)

    config = GatewayConfig.from_mapping(merged)
    logger.info(f"Configuration loaded: routing mode {config.routing_mode.value}")
    return config


def _substitute_env_vars(
    obj: Any, env_values: Optional[Mapping[str, str]] = None
) -> Any:
    """Recursively substitute environment variables in configuration values.

    Supports two formats:
    - ${VAR_NAME}: Braced format
    - $VAR_NAME: Simple format

    Unset variables keep their literal placeholder and log a warning.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj
