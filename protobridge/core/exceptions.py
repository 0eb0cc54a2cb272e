"""Core exceptions for the gateway."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Dialect-neutral classification of a failed exchange."""

    DECODE_ERROR = "decode_error"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNSUPPORTED_ROUTE = "unsupported_route"
    NO_ROUTE_FOR_MODEL = "no_route_for_model"
    UPSTREAM_DISCONNECTED = "upstream_disconnected"
    UPSTREAM_ERROR = "upstream_error"
    UNEXPECTED_STREAM_TERMINATION = "unexpected_stream_termination"
    CONFIGURATION_ERROR = "configuration_error"


class ProxyError(Exception):
    """Base exception for gateway errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM_ERROR
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DecodeError(ProxyError):
    """Raised when an inbound body is not valid JSON or lacks a required field."""

    kind = ErrorKind.DECODE_ERROR
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class MalformedPayload(ProxyError):
    """Raised when well-formed JSON violates a schema invariant or a legal range."""

    kind = ErrorKind.MALFORMED_PAYLOAD
    status_code = 400

    def __init__(self, message: str, invariant: Optional[str] = None) -> None:
        super().__init__(message)
        self.invariant = invariant


class UnsupportedRoute(ProxyError):
    """Raised when the path and routing mode combination is not permitted."""

    kind = ErrorKind.UNSUPPORTED_ROUTE
    status_code = 404


class NoRouteForModel(ProxyError):
    """Raised when auto routing cannot classify the requested model."""

    kind = ErrorKind.NO_ROUTE_FOR_MODEL
    status_code = 400

    def __init__(self, message: str, model: str = "") -> None:
        super().__init__(message)
        self.model = model


class UpstreamDisconnected(ProxyError):
    """Raised when the backend closes the connection mid-response."""

    kind = ErrorKind.UPSTREAM_DISCONNECTED
    status_code = 502


class UpstreamError(ProxyError):
    """Raised when the backend answers with a non-success status."""

    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        error_type: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.body = body


class UnexpectedStreamTermination(ProxyError):
    """Raised when a content block is still open at the end of a stream."""

    kind = ErrorKind.UNEXPECTED_STREAM_TERMINATION
    status_code = 502

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""

    kind = ErrorKind.CONFIGURATION_ERROR
    status_code = 500
