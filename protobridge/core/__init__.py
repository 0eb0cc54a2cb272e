"""Core gateway plumbing: errors, backends, SSE framing and routing."""

from .backend import Backend, Dialect, RoutingMode
from .exceptions import (
    ConfigurationError,
    DecodeError,
    ErrorKind,
    MalformedPayload,
    NoRouteForModel,
    ProxyError,
    UnexpectedStreamTermination,
    UnsupportedRoute,
    UpstreamDisconnected,
    UpstreamError,
)

__all__ = [
    "Backend",
    "ConfigurationError",
    "DecodeError",
    "Dialect",
    "ErrorKind",
    "MalformedPayload",
    "NoRouteForModel",
    "ProxyError",
    "RoutingMode",
    "UnexpectedStreamTermination",
    "UnsupportedRoute",
    "UpstreamDisconnected",
    "UpstreamError",
]
