"""Tests for routing decisions."""

import pytest

from protobridge.config_loader import GatewayConfig
from protobridge.core.backend import Backend, Dialect, RoutingMode
from protobridge.core.exceptions import NoRouteForModel, UnsupportedRoute
from protobridge.core.router import Router, RoutingTable, strip_routing_prefix

ANTHROPIC = Backend(name="anthropic", dialect=Dialect.ANTHROPIC, base_url="http://anthropic.test")
OPENAI = Backend(name="openai", dialect=Dialect.OPENAI, base_url="http://openai.test/v1")


def _router(mode, backends=(ANTHROPIC, OPENAI), **kwargs):
    table = RoutingTable(mode=mode, backends={b.dialect: b for b in backends}, **kwargs)
    return Router(table)


class TestTransformMode:
    def test_messages_go_to_openai_backend(self):
        decision = _router(RoutingMode.TRANSFORM, backends=(OPENAI,)).decide("/v1/messages", "gpt-4o")
        assert decision.backend is OPENAI
        assert decision.needs_transform
        assert decision.inbound is Dialect.ANTHROPIC
        assert decision.direction == "anthropic->openai"

    def test_chat_completions_not_served(self):
        with pytest.raises(UnsupportedRoute):
            _router(RoutingMode.TRANSFORM, backends=(OPENAI,)).decide("/v1/chat/completions", "gpt-4o")

    def test_effort_suffix_split_for_openai_targets(self):
        decision = _router(RoutingMode.TRANSFORM).decide("/v1/messages", "openai/gpt-5.1-codex-high")
        assert decision.model == "gpt-5.1-codex"
        assert decision.reasoning_effort == "high"


class TestPassthroughMode:
    def test_same_dialect_backend_without_transform(self):
        decision = _router(RoutingMode.PASSTHROUGH).decide("/v1/messages", "claude-sonnet")
        assert decision.backend is ANTHROPIC
        assert not decision.needs_transform
        assert decision.model == "claude-sonnet"

    def test_missing_backend_for_inbound_dialect(self):
        """Passthrough with only an Anthropic backend cannot serve chat completions."""
        router = _router(RoutingMode.PASSTHROUGH, backends=(ANTHROPIC,))
        with pytest.raises(UnsupportedRoute):
            router.decide("/v1/chat/completions", "gpt-4o")


class TestAutoMode:
    @pytest.mark.parametrize("mode", [RoutingMode.AUTO, RoutingMode.GATEWAY])
    def test_claude_on_chat_completions_transforms_to_anthropic(self, mode):
        decision = _router(mode).decide("/v1/chat/completions", "claude-3-opus")
        assert decision.backend is ANTHROPIC
        assert decision.needs_transform
        assert decision.direction == "openai->anthropic"

    def test_gpt_on_messages_transforms_to_openai(self):
        decision = _router(RoutingMode.AUTO).decide("/v1/messages", "gpt-4")
        assert decision.backend is OPENAI
        assert decision.needs_transform

    def test_same_dialect_passes_through(self):
        decision = _router(RoutingMode.AUTO).decide("/v1/chat/completions", "o3-mini")
        assert decision.backend is OPENAI
        assert not decision.needs_transform

    def test_decisions_are_deterministic(self):
        router = _router(RoutingMode.AUTO)
        first = router.decide("/v1/messages", "gpt-4")
        assert all(router.decide("/v1/messages", "gpt-4") == first for _ in range(5))

    def test_unclassified_model(self):
        with pytest.raises(NoRouteForModel) as exc_info:
            _router(RoutingMode.AUTO).decide("/v1/messages", "llama-3-70b")
        assert exc_info.value.model == "llama-3-70b"

    def test_classified_backend_not_configured(self):
        with pytest.raises(NoRouteForModel):
            _router(RoutingMode.AUTO, backends=(OPENAI,)).decide("/v1/chat/completions", "claude-3")

    def test_routing_prefix_is_stripped_on_transform(self):
        decision = _router(RoutingMode.AUTO).decide("/v1/chat/completions", "anthropic/claude-3-haiku")
        assert decision.model == "claude-3-haiku"

    def test_custom_prefixes(self):
        router = _router(RoutingMode.AUTO, openai_prefixes=("llama",))
        assert router.decide("/v1/messages", "llama-3").backend is OPENAI


class TestModelOverrides:
    def test_explicit_model_wins(self):
        router = _router(RoutingMode.TRANSFORM, completion_model="gpt-4o-mini")
        assert router.resolve_model("gpt-4o") == "gpt-4o"

    def test_alias_uses_completion_override(self):
        router = _router(RoutingMode.TRANSFORM, reasoning_model="o3", completion_model="gpt-4o-mini")
        assert router.resolve_model("default") == "gpt-4o-mini"
        assert router.resolve_model("") == "gpt-4o-mini"

    def test_reasoning_requests_prefer_reasoning_override(self):
        router = _router(RoutingMode.TRANSFORM, reasoning_model="o3", completion_model="gpt-4o-mini")
        assert router.resolve_model("reasoning") == "o3"
        assert router.resolve_model("", reasoning=True) == "o3"

    def test_override_feeds_classification(self):
        router = _router(RoutingMode.AUTO, completion_model="claude-haiku")
        decision = router.decide("/v1/chat/completions", "default")
        assert decision.backend is ANTHROPIC
        assert decision.model == "claude-haiku"


class TestFromConfig:
    def test_backends_built_from_config(self):
        config = GatewayConfig(
            routing_mode=RoutingMode.AUTO,
            anthropic_base_url="http://a.test",
            anthropic_api_key="ak",
            openai_base_url="http://o.test/v1",
            request_timeout=30,
        )
        router = Router.from_config(config)
        backend = router.table.backend_for(Dialect.ANTHROPIC)
        assert backend.api_key == "ak"
        assert backend.timeout == 30
        assert router.table.backend_for(Dialect.OPENAI).build_url() == "http://o.test/v1/chat/completions"

    def test_table_backends_are_read_only(self):
        router = _router(RoutingMode.AUTO)
        with pytest.raises(TypeError):
            router.table.backends[Dialect.OPENAI] = ANTHROPIC


def test_strip_routing_prefix():
    assert strip_routing_prefix("openai/gpt-4o") == "gpt-4o"
    assert strip_routing_prefix("Anthropic/claude") == "claude"
    assert strip_routing_prefix("claude") == "claude"
