"""Backend configuration and utilities."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

logger = logging.getLogger("protobridge")

DEFAULT_TIMEOUT = 600
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"


class Dialect(str, Enum):
    """The two wire protocols the gateway speaks."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"

    @property
    def path(self) -> str:
        if self is Dialect.ANTHROPIC:
            return "/v1/messages"
        return "/v1/chat/completions"

    @classmethod
    def from_path(cls, path: str) -> Optional["Dialect"]:
        normalized = "/" + (path or "").strip("/")
        for dialect in cls:
            if normalized == dialect.path:
                return dialect
        return None


class RoutingMode(str, Enum):
    TRANSFORM = "transform"
    PASSTHROUGH = "passthrough"
    AUTO = "auto"
    GATEWAY = "gateway"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "RoutingMode":
        """Parse a ``ROUTING_MODE`` value; anything unrecognized means transform."""
        value = (raw or "").strip().lower()
        if value in ("passthrough", "anthropic"):
            return cls.PASSTHROUGH
        if value == "auto":
            return cls.AUTO
        if value == "gateway":
            return cls.GATEWAY
        return cls.TRANSFORM


@dataclass(frozen=True)
class Backend:
    """Represents a backend LLM provider."""

    name: str
    dialect: Dialect
    base_url: str
    api_key: str = ""
    timeout: Optional[float] = None
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION

    def build_url(self) -> str:
        """Build the full endpoint URL; a base that already ends in ``/v1`` is not doubled."""
        base = self.base_url.rstrip("/")
        if base.endswith("/v1"):
            base = base[: -len("/v1")]
        return f"{base}{self.dialect.path}"


HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

_CREDENTIAL_HEADERS = {"authorization", "x-api-key", "api-key"}


def format_httpx_error(exc: Any, backend: Backend, url: Optional[str] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    import httpx

    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    try:
        request = getattr(exc, "request", None)
    except RuntimeError:
        # httpx raises when the request was never attached to the exception
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")

    if isinstance(exc, httpx.TimeoutException):
        timeout = backend.timeout or DEFAULT_TIMEOUT
        parts.append(f"timeout={timeout}s")

    return "; ".join(parts)


def extract_client_api_key(incoming: Mapping[str, str]) -> str:
    """Return the key the client sent, from ``x-api-key`` or a Bearer token."""
    lowered = {key.lower(): value for key, value in incoming.items()}
    api_key = lowered.get("x-api-key", "").strip()
    if api_key:
        return api_key
    authorization = lowered.get("authorization", "").strip()
    if authorization.lower().startswith("bearer "):
        return authorization[len("bearer "):].strip()
    return ""


def build_outbound_headers(
    incoming: Mapping[str, str], backend: Backend
) -> dict[str, str]:
    """Build headers for an outbound request in the backend's dialect.

    Credentials from the client are replaced by the backend's key; when the
    backend has no key configured, the client's key is re-sent in the header
    the backend's dialect expects. Headers that belong to the other dialect
    are dropped.
    """
    foreign_prefix = "openai-" if backend.dialect is Dialect.ANTHROPIC else "anthropic-"
    headers: dict[str, str] = {}
    normalized_keys: set[str] = set()
    for key, value in incoming.items():
        key_lower = key.lower()
        if key_lower in HOP_BY_HOP_HEADERS or key_lower in _CREDENTIAL_HEADERS or key_lower in {
            "host",
            "content-length",
            "content-type",
            "accept-encoding",
        }:
            continue
        if key_lower.startswith(foreign_prefix):
            continue
        if key_lower in normalized_keys:
            continue
        headers[key] = value
        normalized_keys.add(key_lower)

    headers["Content-Type"] = "application/json"
    api_key = backend.api_key or extract_client_api_key(incoming)
    if backend.dialect is Dialect.ANTHROPIC:
        if api_key:
            headers["x-api-key"] = api_key
        if "anthropic-version" not in normalized_keys:
            headers["anthropic-version"] = backend.anthropic_version
    elif api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    # Explicitly request uncompressed responses
    headers["Accept-Encoding"] = "identity"
    return headers


def build_backend_body(
    payload: Mapping[str, Any], model: str, original_body: bytes
) -> bytes:
    """Return the passthrough body, rewriting only the model name when it changed."""
    if payload.get("model") == model:
        return original_body

    try:
        updated_payload = dict(payload)
        updated_payload["model"] = model
        logger.debug("Rewrote model for passthrough to %s", model)
        return json.dumps(updated_payload, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to rewrite passthrough payload: %s", exc)
        return original_body


def filter_response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Filter response headers, removing hop-by-hop headers."""
    filtered: dict[str, str] = {}
    for key, value in headers.items():
        key_lower = key.lower()
        # Drop headers FastAPI will recompute or that no longer match the payload
        if key_lower in HOP_BY_HOP_HEADERS or key_lower in {
            "content-length",
            "transfer-encoding",
            "content-encoding",
        }:
            continue
        filtered[key] = value
    return filtered
