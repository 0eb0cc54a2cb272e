"""Outbound HTTP dispatch to the routed backend.

Exactly one request is sent per call; retries are left to the transport.
"""

import logging
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional

import httpx

from .backend import DEFAULT_TIMEOUT, Backend, format_httpx_error
from .exceptions import UpstreamDisconnected, UpstreamError

logger = logging.getLogger("protobridge")

DisconnectChecker = Callable[[], Awaitable[bool]]


def _safe_headers_for_log(headers: Mapping[str, str]) -> dict[str, str]:
    redacted = {}
    for key, value in headers.items():
        if key.lower() in {"authorization", "x-api-key", "api-key"}:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


def _request_error(exc: httpx.HTTPError, backend: Backend, url: str) -> UpstreamError:
    detail = format_httpx_error(exc, backend, url)
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamError(f"upstream request timed out: {detail}", status_code=504)
    return UpstreamError(f"upstream request failed: {detail}", status_code=502)


class UpstreamStream:
    """An open streaming response; closing it releases the upstream connection."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        url: str,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> None:
        self.client = client
        self.response = response
        self.url = url
        self.disconnect_checker = disconnect_checker
        self.client_disconnected = False
        self._closed = False

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.response.headers

    async def aread(self) -> bytes:
        try:
            return await self.response.aread()
        finally:
            await self.aclose()

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks as they arrive.

        A transport failure mid-body raises UpstreamDisconnected. A client
        disconnect ends the iteration quietly. The stream is always closed
        when iteration stops.
        """
        chunk_count = 0
        try:
            async for chunk in self.response.aiter_bytes():
                if self.disconnect_checker and await self.disconnect_checker():
                    logger.info(f"Client disconnected; closing upstream stream {self.url}")
                    self.client_disconnected = True
                    return
                if not chunk:
                    continue
                chunk_count += 1
                if chunk_count % 10 == 0:
                    logger.debug(f"Streamed {chunk_count} chunks from {self.url}")
                yield chunk
        except httpx.HTTPError as exc:
            logger.error(
                "HTTP error during streaming from %s: %s (type: %s)",
                self.url,
                str(exc),
                exc.__class__.__name__,
            )
            raise UpstreamDisconnected(
                f"upstream connection lost mid-stream: {exc.__class__.__name__}"
            ) from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Closing stream for {self.url}")
        await self.response.aclose()
        await self.client.aclose()


class UpstreamClient:
    """Sends requests to backends with httpx.

    Args:
        transport: Optional httpx transport, used by tests to fake the backend
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.transport = transport

    async def send(
        self, backend: Backend, body: bytes, headers: Mapping[str, str]
    ) -> httpx.Response:
        """Send a non-streaming request and return the fully read response."""
        url = backend.build_url()
        timeout = backend.timeout or DEFAULT_TIMEOUT
        logger.debug(f"Initiating non-streaming request to {url} with timeout {timeout}s")
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Outbound headers for %s: %s", backend.name, _safe_headers_for_log(headers))
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self.transport, follow_redirects=True
            ) as client:
                resp = await client.post(url, headers=dict(headers), content=body)
        except httpx.HTTPError as exc:
            logger.error(f"Request to {url} failed: {exc} (type: {exc.__class__.__name__})")
            raise _request_error(exc, backend, url) from exc
        logger.debug(f"Received response from {url}: status {resp.status_code}")
        return resp

    async def open_stream(
        self,
        backend: Backend,
        body: bytes,
        headers: Mapping[str, str],
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> UpstreamStream:
        """Send a streaming request and return once the response headers arrive."""
        url = backend.build_url()
        timeout = backend.timeout or DEFAULT_TIMEOUT
        logger.debug(
            f"Stream timeout config - connect={timeout}s, read=None, write={timeout}s, pool={timeout}s"
        )
        stream_timeout = httpx.Timeout(connect=timeout, read=None, write=timeout, pool=timeout)
        client = httpx.AsyncClient(
            timeout=stream_timeout, transport=self.transport, follow_redirects=True
        )
        try:
            request = client.build_request("POST", url, headers=dict(headers), content=body)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Request headers: %s", _safe_headers_for_log(request.headers))
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error(
                f"Failed to send streaming request to {url}: {exc} (type: {exc.__class__.__name__})"
            )
            await client.aclose()
            raise _request_error(exc, backend, url) from exc
        logger.debug(f"Received initial response from {url}: status={resp.status_code}")
        return UpstreamStream(client, resp, url, disconnect_checker)
