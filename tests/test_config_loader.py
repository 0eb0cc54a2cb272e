"""Tests for configuration loading."""

import logging

import pytest
import yaml

from protobridge.config_loader import (
    DEFAULT_PORT,
    GatewayConfig,
    _substitute_env_vars,
    load_config,
    load_yaml_settings,
)
from protobridge.core.backend import RoutingMode
from protobridge.core.exceptions import ConfigurationError


class TestFromMapping:
    def test_transform_defaults(self):
        config = GatewayConfig.from_mapping({"UPSTREAM_BASE_URL": "http://up.test"})
        assert config.routing_mode is RoutingMode.TRANSFORM
        assert config.openai_base_url == "http://up.test"
        assert config.port == DEFAULT_PORT
        assert config.debug is False

    def test_legacy_upstream_names(self):
        config = GatewayConfig.from_mapping({
            "ANTHROPIC_PROXY_BASE_URL": "http://legacy.test",
            "OPENROUTER_API_KEY": "or-key",
        })
        assert config.openai_base_url == "http://legacy.test"
        assert config.openai_api_key == "or-key"

    def test_openai_names_take_precedence(self):
        config = GatewayConfig.from_mapping({
            "OPENAI_BASE_URL": "http://primary.test",
            "UPSTREAM_BASE_URL": "http://fallback.test",
        })
        assert config.openai_base_url == "http://primary.test"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("passthrough", RoutingMode.PASSTHROUGH),
            ("anthropic", RoutingMode.PASSTHROUGH),
            ("AUTO", RoutingMode.AUTO),
            ("gateway", RoutingMode.GATEWAY),
            ("something-else", RoutingMode.TRANSFORM),
        ],
    )
    def test_routing_mode_parsing(self, raw, expected):
        config = GatewayConfig.from_mapping({
            "ROUTING_MODE": raw,
            "ANTHROPIC_BASE_URL": "http://a.test",
            "OPENAI_BASE_URL": "http://o.test",
        })
        assert config.routing_mode is expected

    def test_transform_requires_openai_backend(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig.from_mapping({"ANTHROPIC_BASE_URL": "http://a.test"})

    def test_any_mode_requires_a_backend(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig.from_mapping({"ROUTING_MODE": "auto"})

    def test_bad_port(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig.from_mapping({"OPENAI_BASE_URL": "http://o.test", "PORT": "eighty"})

    def test_flags_and_prefix_lists(self):
        config = GatewayConfig.from_mapping({
            "OPENAI_BASE_URL": "http://o.test",
            "DEBUG": "true",
            "VERBOSE": "1",
            "REQUEST_TIMEOUT": "12.5",
            "OPENAI_MODEL_PREFIXES": "GPT, llama ,",
        })
        assert config.debug and config.verbose
        assert config.request_timeout == 12.5
        assert config.openai_prefixes == ("gpt", "llama")

    def test_trailing_v1_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="protobridge"):
            GatewayConfig.from_mapping({"OPENAI_BASE_URL": "http://o.test/v1"})
        assert "/v1" in caplog.text


class TestLoadConfig:
    def test_env_file_then_environment(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("OPENAI_BASE_URL=http://from-dotenv.test\nPORT=4000\n", encoding="utf-8")
        config = load_config(environ={"PORT": "5000"}, env_path=str(env_file))
        assert config.openai_base_url == "http://from-dotenv.test"
        assert config.port == 5000

    def test_yaml_is_lowest_precedence(self, tmp_path):
        settings = {
            "routing_mode": "auto",
            "anthropic_base_url": "http://a.test",
            "openai_base_url": "http://o.test",
            "anthropic_api_key": "${MY_KEY}",
            "model_prefixes": {"anthropic": ["sonnet"], "openai": ["gpt"]},
        }
        yaml_path = tmp_path / "protobridge.yaml"
        yaml_path.write_text(yaml.safe_dump(settings), encoding="utf-8")
        config = load_config(
            environ={"MY_KEY": "secret", "OPENAI_BASE_URL": "http://override.test"},
            env_path=None,
            config_path=str(yaml_path),
        )
        assert config.routing_mode is RoutingMode.AUTO
        assert config.anthropic_api_key == "secret"
        assert config.openai_base_url == "http://override.test"
        assert config.anthropic_prefixes == ("sonnet",)

    def test_missing_yaml_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_yaml_settings(tmp_path / "absent.yaml")

    def test_config_path_from_environment(self, tmp_path):
        yaml_path = tmp_path / "c.yaml"
        yaml_path.write_text("upstream_base_url: http://y.test\nport: 3100\n", encoding="utf-8")
        config = load_config(environ={"PROTOBRIDGE_CONFIG": str(yaml_path)}, env_path=None)
        assert config.openai_base_url == "http://y.test"
        assert config.port == 3100


class TestSubstituteEnvVars:
    def test_braced_and_simple_forms(self):
        result = _substitute_env_vars(
            {"a": "${X}", "b": ["$Y", "plain"], "c": 3}, {"X": "1", "Y": "2"}
        )
        assert result == {"a": "1", "b": ["2", "plain"], "c": 3}

    def test_unset_variable_keeps_placeholder(self):
        assert _substitute_env_vars("${NOPE}", {}) == "${NOPE}"
