"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable

import httpx
import pytest
from fastapi.testclient import TestClient

from protobridge.codecs import get_codec
from protobridge.config_loader import GatewayConfig
from protobridge.core.backend import Dialect, RoutingMode
from protobridge.core.sse import SSEDecoder
from protobridge.main import create_app
from protobridge.schema import StreamEvent

ANTHROPIC_URL = "http://anthropic.test"
OPENAI_URL = "http://openai.test/v1"


async def aiter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def parse_sse(body: bytes) -> list[tuple[str | None, Any]]:
    """Split an SSE body into ``(event, data)`` pairs; JSON data is decoded."""
    frames = []
    for raw in body.decode("utf-8").split("\n\n"):
        if not raw.strip():
            continue
        event = None
        data_lines = []
        for line in raw.split("\n"):
            if line.startswith("event:"):
                event = line[6:].strip()
            elif line.startswith("data:"):
                data_lines.append(line[5:].strip())
        data = "\n".join(data_lines)
        try:
            frames.append((event, json.loads(data)))
        except json.JSONDecodeError:
            frames.append((event, data))
    return frames


def anthropic_sse(*events: dict[str, Any]) -> bytes:
    return b"".join(
        f"event: {event['type']}\ndata: {json.dumps(event)}\n\n".encode("utf-8") for event in events
    )


def openai_sse(*chunks: dict[str, Any], done: bool = True) -> bytes:
    body = b"".join(f"data: {json.dumps(chunk)}\n\n".encode("utf-8") for chunk in chunks)
    if done:
        body += b"data: [DONE]\n\n"
    return body


def decode_stream(dialect: Dialect, body: bytes) -> list[StreamEvent]:
    """Decode a complete SSE body into StreamEvents."""
    sse = SSEDecoder()
    decoder = get_codec(dialect).StreamDecoder()
    events: list[StreamEvent] = []
    for frame in sse.feed(body) + sse.flush():
        events.extend(decoder.decode_stream_event(frame))
    return events


class RecordingBackend:
    """Fake upstream for httpx.MockTransport that records every request it sees."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def make_client() -> Callable[..., TestClient]:
    """Build a TestClient for an app whose backends are served by ``responder``."""

    def _make(
        responder: Callable[[httpx.Request], httpx.Response],
        mode: RoutingMode = RoutingMode.TRANSFORM,
        **overrides: Any,
    ) -> tuple[TestClient, RecordingBackend]:
        backend = RecordingBackend(responder)
        settings: dict[str, Any] = {
            "routing_mode": mode,
            "openai_base_url": OPENAI_URL,
            "openai_api_key": "sk-upstream",
        }
        if mode is not RoutingMode.TRANSFORM:
            settings["anthropic_base_url"] = ANTHROPIC_URL
            settings["anthropic_api_key"] = "ak-upstream"
        settings.update(overrides)
        config = GatewayConfig(**settings)
        app = create_app(config, transport=httpx.MockTransport(backend))
        return TestClient(app), backend

    return _make
