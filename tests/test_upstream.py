"""Tests for outbound dispatch and mid-stream failures."""

import httpx
import pytest

from conftest import parse_sse
from protobridge.core.backend import Backend, Dialect, RoutingMode
from protobridge.core.exceptions import UpstreamDisconnected, UpstreamError
from protobridge.core.upstream import UpstreamClient

BACKEND = Backend(name="openai", dialect=Dialect.OPENAI, base_url="http://openai.test", timeout=3)

PARTIAL_ANTHROPIC = (
    b'event: message_start\ndata: {"type": "message_start", "message": {"id": "msg_1", "model": "claude"}}\n\n'
    b'event: content_block_start\ndata: {"type": "content_block_start", "index": 0, '
    b'"content_block": {"type": "text", "text": ""}}\n\n'
    b'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 0, '
    b'"delta": {"type": "text_delta", "text": "half"}}\n\n'
    b"event: content_block_delta\ndata: {\"type\": \"content"
)


class FailingStream(httpx.AsyncByteStream):
    """Response body that drops the connection after sending ``prefix``."""

    def __init__(self, prefix: bytes):
        self.prefix = prefix

    async def __aiter__(self):
        yield self.prefix
        raise httpx.ReadError("connection reset by peer")


def _failing_responder(prefix):
    def respond(request):
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=FailingStream(prefix))
    return respond


class TestUpstreamClient:
    @pytest.mark.asyncio
    async def test_send_returns_response(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))
        resp = await UpstreamClient(transport).send(BACKEND, b"{}", {"Content-Type": "application/json"})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_timeout_maps_to_gateway_timeout(self):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await UpstreamClient(httpx.MockTransport(slow)).send(BACKEND, b"{}", {})
        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_mid_stream_failure_raises_disconnected(self):
        client = UpstreamClient(httpx.MockTransport(_failing_responder(b"data: {}\n\n")))
        stream = await client.open_stream(BACKEND, b"{}", {})
        received = []
        with pytest.raises(UpstreamDisconnected):
            async for chunk in stream.iter_bytes():
                received.append(chunk)
        assert received == [b"data: {}\n\n"]

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_quietly(self):
        async def disconnected():
            return True

        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, headers={"content-type": "text/event-stream"}, content=b"data: 1\n\n")
        )
        stream = await UpstreamClient(transport).open_stream(BACKEND, b"{}", {}, disconnected)
        chunks = [chunk async for chunk in stream.iter_bytes()]
        assert chunks == []
        assert stream.client_disconnected


class TestMidStreamFailureThroughApp:
    def test_passthrough_stream_gets_error_frame(self, make_client):
        client, _ = make_client(_failing_responder(PARTIAL_ANTHROPIC), mode=RoutingMode.PASSTHROUGH)
        with client:
            resp = client.post(
                "/v1/messages",
                json={"model": "claude", "stream": True, "messages": [{"role": "user", "content": "x"}]},
            )
        assert resp.content.startswith(PARTIAL_ANTHROPIC)
        frames = parse_sse(resp.content[len(PARTIAL_ANTHROPIC):])
        assert frames[-1][0] == "error"
        assert frames[-1][1]["error"]["type"] == "api_error"

    def test_transformed_stream_gets_error_frame(self, make_client):
        client, _ = make_client(_failing_responder(PARTIAL_ANTHROPIC), mode=RoutingMode.AUTO)
        with client:
            resp = client.post(
                "/v1/chat/completions",
                json={"model": "claude-3", "stream": True, "messages": [{"role": "user", "content": "x"}]},
            )
        chunks = [data for _, data in parse_sse(resp.content) if isinstance(data, dict)]
        texts = [c["choices"][0]["delta"].get("content") for c in chunks if c.get("choices")]
        assert "half" in texts
        assert chunks[-1]["error"]["code"] == "upstream_disconnected"
        assert b"[DONE]" not in resp.content
