"""Routing decisions: which backend serves a request and whether to transform it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping, Optional

from ..codecs.common import parse_model_with_effort
from .backend import Backend, Dialect, RoutingMode
from .exceptions import NoRouteForModel, UnsupportedRoute

if TYPE_CHECKING:
    from ..config_loader import GatewayConfig

logger = logging.getLogger("protobridge")

GENERIC_MODEL_ALIASES = frozenset({"", "default", "auto", "reasoning", "completion"})
DEFAULT_ANTHROPIC_PREFIXES = ("claude", "anthropic/", "anthropic-")
DEFAULT_OPENAI_PREFIXES = (
    "gpt",
    "chatgpt",
    "o1",
    "o3",
    "o4",
    "openai/",
    "text-",
    "davinci",
)
ROUTING_PREFIXES = ("anthropic/", "openai/")


@dataclass(frozen=True)
class RoutingTable:
    """Read-only routing inputs built once at startup."""

    mode: RoutingMode
    backends: Mapping[Dialect, Backend] = field(default_factory=dict)
    anthropic_prefixes: tuple[str, ...] = DEFAULT_ANTHROPIC_PREFIXES
    openai_prefixes: tuple[str, ...] = DEFAULT_OPENAI_PREFIXES
    reasoning_model: Optional[str] = None
    completion_model: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "backends", MappingProxyType(dict(self.backends)))

    def backend_for(self, dialect: Dialect) -> Optional[Backend]:
        return self.backends.get(dialect)

    def classify(self, model: str) -> Optional[Dialect]:
        """Match a model identifier against the configured prefix lists."""
        lowered = model.strip().lower()
        if not lowered:
            return None
        if lowered.startswith(self.anthropic_prefixes):
            return Dialect.ANTHROPIC
        if lowered.startswith(self.openai_prefixes):
            return Dialect.OPENAI
        return None


@dataclass(frozen=True)
class RouteDecision:
    backend: Backend
    needs_transform: bool
    inbound: Dialect
    model: str
    reasoning_effort: Optional[str] = None

    @property
    def direction(self) -> str:
        return f"{self.inbound.value}->{self.backend.dialect.value}"


class Router:
    """Selects exactly one backend per request from an immutable RoutingTable."""

    def __init__(self, table: RoutingTable) -> None:
        self.table = table

    @classmethod
    def from_config(cls, config: "GatewayConfig") -> "Router":
        backends: dict[Dialect, Backend] = {}
        timeout = config.request_timeout
        if config.anthropic_base_url:
            backends[Dialect.ANTHROPIC] = Backend(
                name="anthropic",
                dialect=Dialect.ANTHROPIC,
                base_url=config.anthropic_base_url,
                api_key=config.anthropic_api_key or "",
                timeout=timeout,
                anthropic_version=config.anthropic_version,
            )
        if config.openai_base_url:
            backends[Dialect.OPENAI] = Backend(
                name="openai",
                dialect=Dialect.OPENAI,
                base_url=config.openai_base_url,
                api_key=config.openai_api_key or "",
                timeout=timeout,
            )
        table = RoutingTable(
            mode=config.routing_mode,
            backends=backends,
            anthropic_prefixes=tuple(config.anthropic_prefixes) or DEFAULT_ANTHROPIC_PREFIXES,
            openai_prefixes=tuple(config.openai_prefixes) or DEFAULT_OPENAI_PREFIXES,
            reasoning_model=config.reasoning_model,
            completion_model=config.completion_model,
        )
        logger.info(
            f"Routing table built: mode={table.mode.value}, "
            f"backends={[d.value for d in table.backends]}"
        )
        return cls(table)

    def resolve_model(self, model: str, reasoning: bool = False) -> str:
        """Apply REASONING_MODEL / COMPLETION_MODEL overrides.

        An explicit model always wins; overrides only replace an empty model
        or a generic alias. The ``reasoning`` alias and thinking-enabled
        requests prefer the reasoning override.
        """
        alias = (model or "").strip().lower()
        if alias not in GENERIC_MODEL_ALIASES:
            return model
        table = self.table
        if alias == "reasoning" or (reasoning and alias != "completion"):
            override = table.reasoning_model or table.completion_model
        else:
            override = table.completion_model or table.reasoning_model
        if override:
            logger.debug(f"Model override: '{model}' -> '{override}'")
            return override
        return model

    def decide(self, path: str, model: str, reasoning: bool = False) -> RouteDecision:
        """Pick the backend for one request.

        Args:
            path: Inbound request path
            model: Model identifier from the decoded request
            reasoning: Whether the request enables extended thinking

        Raises:
            UnsupportedRoute: Unknown path, or path not served in this mode
            NoRouteForModel: Model unclassifiable or its backend unconfigured
        """
        inbound = Dialect.from_path(path)
        if inbound is None:
            raise UnsupportedRoute(f"no route for path '{path}'")

        table = self.table
        resolved = self.resolve_model(model, reasoning)

        if table.mode is RoutingMode.TRANSFORM:
            if inbound is not Dialect.ANTHROPIC:
                raise UnsupportedRoute(
                    f"{inbound.path} is not served in transform mode; use /v1/messages"
                )
            backend = self._require_backend(Dialect.OPENAI, resolved)
            return self._transform(inbound, backend, resolved)

        if table.mode is RoutingMode.PASSTHROUGH:
            backend = table.backend_for(inbound)
            if backend is None:
                raise UnsupportedRoute(
                    f"{inbound.path} is not served in passthrough mode: "
                    f"no {inbound.value} backend is configured"
                )
            return RouteDecision(backend=backend, needs_transform=False, inbound=inbound, model=resolved)

        target = table.classify(resolved)
        if target is None:
            raise NoRouteForModel(
                f"model '{resolved}' does not match any configured backend", model=resolved
            )
        backend = self._require_backend(target, resolved)
        if target is inbound:
            return RouteDecision(backend=backend, needs_transform=False, inbound=inbound, model=resolved)
        return self._transform(inbound, backend, resolved)

    def _require_backend(self, dialect: Dialect, model: str) -> Backend:
        backend = self.table.backend_for(dialect)
        if backend is None:
            raise NoRouteForModel(
                f"model '{model}' routes to the {dialect.value} backend, which is not configured",
                model=model,
            )
        return backend

    @staticmethod
    def _transform(inbound: Dialect, backend: Backend, model: str) -> RouteDecision:
        upstream_model = strip_routing_prefix(model)
        effort = None
        if backend.dialect is Dialect.OPENAI:
            upstream_model, effort = parse_model_with_effort(upstream_model)
        return RouteDecision(
            backend=backend,
            needs_transform=True,
            inbound=inbound,
            model=upstream_model,
            reasoning_effort=effort,
        )


def strip_routing_prefix(model: str) -> str:
    lowered = model.lower()
    for prefix in ROUTING_PREFIXES:
        if lowered.startswith(prefix) and len(model) > len(prefix):
            return model[len(prefix):]
    return model

