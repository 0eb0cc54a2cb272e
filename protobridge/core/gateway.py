"""Per-request orchestration: decode, route, transform, dispatch, respond."""

from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from typing import AsyncIterator, Mapping, Optional

from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse

from ..codecs import get_codec
from ..schema import ErrorEvent, Request
from ..schema import Response as ChatResponse
from ..streaming import StreamReframer, encode_events, response_to_events
from .backend import Dialect, build_backend_body, build_outbound_headers, filter_response_headers
from .exceptions import (
    DecodeError,
    ErrorKind,
    MalformedPayload,
    ProxyError,
    UnsupportedRoute,
    UpstreamDisconnected,
    UpstreamError,
)
from .router import RouteDecision, Router
from .sse import detect_sse_stream_error
from .upstream import DisconnectChecker, UpstreamClient, UpstreamStream

logger = logging.getLogger("protobridge")

SSE_MEDIA_TYPE = "text/event-stream"


def error_response(dialect: Dialect, exc: ProxyError) -> JSONResponse:
    """Render a gateway error in the client's own dialect."""
    status_code = exc.status_code
    error_type = getattr(exc, "error_type", None)
    if dialect is Dialect.ANTHROPIC:
        payload = get_codec(dialect).error_payload(status_code, exc.message, error_type)
    else:
        payload = get_codec(dialect).error_payload(
            status_code,
            exc.message,
            error_type,
            code=exc.kind.value,
            param=getattr(exc, "field", None),
        )
    return JSONResponse(payload, status_code=status_code)


class Gateway:
    """Ties the codecs, router and upstream client together for one request at a time.

    Holds only read-only collaborators, so one instance serves every
    concurrent request.
    """

    def __init__(
        self,
        router: Router,
        upstream: Optional[UpstreamClient] = None,
        verbose: bool = False,
        log_raw_json: bool = False,
    ) -> None:
        self.router = router
        self.upstream = upstream or UpstreamClient()
        self.verbose = verbose
        self.log_raw_json = log_raw_json

    async def handle(
        self,
        path: str,
        body: bytes,
        headers: Mapping[str, str],
        disconnect_checker: Optional[DisconnectChecker] = None,
        req_id: Optional[str] = None,
    ) -> Response:
        req_id = req_id or uuid.uuid4().hex[:8]
        inbound = Dialect.from_path(path)
        if inbound is None:
            logger.warning(f"[{req_id}] Rejected request for unknown path {path}")
            return error_response(Dialect.ANTHROPIC, UnsupportedRoute(f"no route for path '{path}'"))
        if self.log_raw_json:
            logger.debug(f"[{req_id}] Raw inbound body: {body.decode('utf-8', errors='replace')}")

        try:
            request = get_codec(inbound).decode_request(body)
            decision = self.router.decide(path, request.model, reasoning=request.wants_reasoning)
        except ProxyError as exc:
            logger.warning(f"[{req_id}] Rejected request: {exc.kind.value}: {exc.message}")
            return error_response(inbound, exc)

        logger.info(
            f"[{req_id}] {path} model='{request.model}' -> backend={decision.backend.name} "
            f"model='{decision.model}' transform={decision.needs_transform} stream={request.stream}"
        )

        outbound_body = self._build_outbound_body(request, decision, body)
        if self.verbose:
            logger.info(
                f"[{req_id}] Outbound {decision.backend.dialect.value} body: "
                f"{outbound_body.decode('utf-8', errors='replace')}"
            )
        outbound_headers = build_outbound_headers(headers, decision.backend)

        try:
            if request.stream:
                return await self._handle_stream(
                    request, decision, outbound_body, outbound_headers, disconnect_checker, req_id
                )
            return await self._handle_json(decision, outbound_body, outbound_headers, req_id)
        except ProxyError as exc:
            logger.error(f"[{req_id}] Upstream failure: {exc.message}")
            return error_response(inbound, exc)

    def _build_outbound_body(
        self, request: Request, decision: RouteDecision, original_body: bytes
    ) -> bytes:
        if not decision.needs_transform:
            payload = json.loads(original_body)
            return build_backend_body(payload, decision.model, original_body)
        target = dataclasses.replace(
            request,
            model=decision.model,
            reasoning_effort=decision.reasoning_effort or request.reasoning_effort,
        )
        return get_codec(decision.backend.dialect).encode_request(target)

    async def _handle_json(
        self,
        decision: RouteDecision,
        body: bytes,
        headers: Mapping[str, str],
        req_id: str,
    ) -> Response:
        resp = await self.upstream.send(decision.backend, body, headers)
        if resp.status_code >= 400:
            return self._upstream_error(decision, resp.status_code, resp.content, resp.headers, req_id)
        if not decision.needs_transform:
            return _passthrough_response(resp.status_code, resp.content, resp.headers)

        response = self._decode_upstream_response(decision, resp.content)
        encoded = get_codec(decision.inbound).encode_response(response)
        return Response(content=encoded, status_code=200, media_type="application/json")

    async def _handle_stream(
        self,
        request: Request,
        decision: RouteDecision,
        body: bytes,
        headers: Mapping[str, str],
        disconnect_checker: Optional[DisconnectChecker],
        req_id: str,
    ) -> Response:
        stream = await self.upstream.open_stream(decision.backend, body, headers, disconnect_checker)
        if stream.status_code >= 400:
            data = await stream.aread()
            return self._upstream_error(decision, stream.status_code, data, stream.headers, req_id)

        content_type = stream.headers.get("content-type", "")
        if SSE_MEDIA_TYPE not in content_type.lower():
            # Backend ignored the stream flag; replay its JSON answer as a stream
            data = await stream.aread()
            logger.info(f"[{req_id}] Backend answered a streaming request with {content_type or 'no content type'}")
            response = self._decode_upstream_response(decision, data)
            events = response_to_events(response)
            return Response(
                content=encode_events(decision.inbound, events, model=response.model),
                status_code=200,
                media_type=SSE_MEDIA_TYPE,
            )

        if decision.needs_transform:
            iterator = self._reframe(stream, decision, request, req_id)
            response_headers = {"Cache-Control": "no-cache"}
        else:
            iterator = self._passthrough_stream(stream, decision, req_id)
            response_headers = filter_response_headers(stream.headers)
            response_headers.pop("content-type", None)
        logger.info(f"[{req_id}] Streaming {decision.direction} response, status {stream.status_code}")
        return StreamingResponse(
            iterator,
            status_code=stream.status_code,
            headers=response_headers,
            media_type=SSE_MEDIA_TYPE,
        )

    async def _reframe(
        self,
        stream: UpstreamStream,
        decision: RouteDecision,
        request: Request,
        req_id: str,
    ) -> AsyncIterator[bytes]:
        reframer = StreamReframer(
            source=decision.backend.dialect,
            destination=decision.inbound,
            model=request.model or decision.model,
        )
        try:
            async for frame in reframer.reframe(stream.iter_bytes()):
                yield frame
        finally:
            await stream.aclose()
            for error in reframer.errors:
                logger.warning(f"[{req_id}] {error.kind.value}: {error.message}")
            if reframer.error is not None:
                logger.warning(f"[{req_id}] Stream terminated with error: {reframer.error.message}")

    async def _passthrough_stream(
        self, stream: UpstreamStream, decision: RouteDecision, req_id: str
    ) -> AsyncIterator[bytes]:
        tail = b""
        try:
            async for chunk in stream.iter_bytes():
                sse_error = detect_sse_stream_error(chunk)
                if sse_error:
                    logger.warning(f"[{req_id}] {sse_error}")
                tail = (tail + chunk)[-2:]
                yield chunk
        except UpstreamDisconnected as exc:
            logger.warning(f"[{req_id}] Upstream disconnected mid-stream: {exc.message}")
            encoder = get_codec(decision.inbound).StreamEncoder()
            frame = encoder.encode_error(ErrorEvent(ErrorKind.UPSTREAM_DISCONNECTED, exc.message))
            if tail and not tail.endswith(b"\n\n"):
                frame = b"\n\n" + frame
            yield frame
        finally:
            await stream.aclose()

    def _decode_upstream_response(self, decision: RouteDecision, data: bytes) -> ChatResponse:
        try:
            return get_codec(decision.backend.dialect).decode_response(data)
        except (DecodeError, MalformedPayload) as exc:
            raise UpstreamError(
                f"backend returned an unreadable response: {exc.message}", status_code=502
            ) from exc

    def _upstream_error(
        self,
        decision: RouteDecision,
        status_code: int,
        data: bytes,
        headers: Mapping[str, str],
        req_id: str,
    ) -> Response:
        message, upstream_type = get_codec(decision.backend.dialect).parse_error_body(data)
        logger.warning(
            f"[{req_id}] Backend {decision.backend.name} returned status {status_code}: {message}"
        )
        if not decision.needs_transform:
            return _passthrough_response(status_code, data, headers)
        error = UpstreamError(message, status_code=status_code, body=data)
        logger.debug(f"[{req_id}] Upstream error type was {upstream_type}")
        return error_response(decision.inbound, error)


def _passthrough_response(status_code: int, content: bytes, headers: Mapping[str, str]) -> Response:
    filtered = filter_response_headers(headers)
    media_type = filtered.pop("content-type", None) or "application/json"
    return Response(content=content, status_code=status_code, headers=filtered, media_type=media_type)
