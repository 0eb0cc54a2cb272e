"""Anthropic Messages codec.

Decodes Anthropic Messages request/response bodies and SSE frames into the
dialect-neutral schema and encodes the schema back out.

Anthropic Messages Events:
    event: message_start
    data: {"type":"message_start","message":{...}}

    event: content_block_start
    data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hello"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":10}}

    event: message_stop
    data: {"type":"message_stop"}

Reference:
- Anthropic Messages API: https://docs.anthropic.com/en/api/messages
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from ..core.exceptions import DecodeError, ErrorKind, MalformedPayload
from ..core.sse import SSEEvent, format_sse_event
from ..schema import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ContentBlock,
    ErrorEvent,
    ImageBlock,
    Message,
    MessageDelta,
    MessageStart,
    MessageStop,
    RedactedBlock,
    Request,
    Response,
    Role,
    StopReason,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    Tool,
    ToolChoice,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .common import (
    ANTHROPIC_STOP_REASONS,
    DEFAULT_MAX_TOKENS,
    anthropic_error_type,
    anthropic_stop_reason,
    canonical_json,
    effort_to_budget,
    load_json_object,
    optional_index,
    optional_int,
    optional_number,
    optional_object,
    optional_str,
    parse_error_body,
    parse_tool_arguments,
    proxy_metadata,
    read_proxy_metadata,
    require_field,
    text_of_parts,
    to_anthropic_id,
    token_count,
)

logger = logging.getLogger("protobridge")

SKIPPED_TOOL_TYPES = ("BatchTool",)

__all__ = [
    "AnthropicStreamDecoder",
    "AnthropicStreamEncoder",
    "StreamDecoder",
    "StreamEncoder",
    "decode_request",
    "decode_response",
    "decode_stream_event",
    "encode_error",
    "encode_request",
    "encode_response",
    "parse_error_body",
]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _decode_image(block: Mapping[str, Any], where: str) -> ImageBlock:
    source = optional_object(block, "source", f"{where}.source", "content")
    if source.get("type") == "url":
        return ImageBlock(url=source.get("url", ""))
    return ImageBlock(
        media_type=source.get("media_type", "image/png"),
        data=source.get("data", ""),
    )


def _decode_block(block: Any, where: str) -> Optional[ContentBlock]:
    if not isinstance(block, Mapping):
        raise MalformedPayload(f"{where} must be an object", invariant="block_indices")
    block_type = block.get("type", "")

    if block_type == "text":
        return TextBlock(text=str(block.get("text", "")))
    if block_type == "image":
        return _decode_image(block, where)
    if block_type == "tool_use":
        tool_input = block.get("input")
        if tool_input is not None and not isinstance(tool_input, Mapping):
            raise MalformedPayload(f"{where}.input must be an object", invariant="tool_arguments")
        return ToolUseBlock(
            id=str(block.get("id", "")),
            name=str(block.get("name", "")),
            arguments_json=canonical_json(tool_input or {}),
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(block.get("tool_use_id", "")),
            content=text_of_parts(block.get("content")),
            is_error=bool(block.get("is_error", False)),
        )
    if block_type == "thinking":
        return ThinkingBlock(
            thinking=str(block.get("thinking", "")),
            signature=block.get("signature"),
        )
    if block_type == "redacted_thinking":
        return RedactedBlock(data=str(block.get("data", "")))
    if block_type == "document":
        # No neutral document type; keep a readable placeholder
        source = optional_object(block, "source", f"{where}.source", "content")
        name = block.get("name") or block.get("title") or "document"
        media_type = source.get("media_type", "application/pdf")
        return TextBlock(text=f"[Document: {name} ({media_type})]")

    if "text" in block:
        return TextBlock(text=str(block["text"]))
    logger.warning(f"Unknown content block type: {block_type}")
    return None


def _decode_content(content: Any, where: str) -> list[ContentBlock]:
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if content is None:
        return []
    if not isinstance(content, list):
        raise MalformedPayload(f"{where} must be a string or a list of blocks", invariant="messages")
    blocks: list[ContentBlock] = []
    for position, raw in enumerate(content):
        block = _decode_block(raw, f"{where}[{position}]")
        if block is not None:
            blocks.append(block)
    return blocks


def _decode_system(system: Any) -> Optional[str]:
    if system is None:
        return None
    if isinstance(system, str):
        return system
    if isinstance(system, list):
        parts = []
        for block in system:
            if isinstance(block, Mapping) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
            else:
                logger.warning("Non-text block in system parameter ignored")
        return "\n".join(parts) if parts else None
    raise MalformedPayload("system must be a string or a list of text blocks", invariant="system")


def _decode_tools(tools: Any) -> Optional[list[Tool]]:
    if tools is None:
        return None
    if not isinstance(tools, list):
        raise MalformedPayload("tools must be a list", invariant="tools")
    decoded: list[Tool] = []
    for position, tool in enumerate(tools):
        if not isinstance(tool, Mapping):
            raise MalformedPayload(f"tools[{position}] must be an object", invariant="tools")
        if tool.get("type") in SKIPPED_TOOL_TYPES or tool.get("name") in SKIPPED_TOOL_TYPES:
            logger.debug(f"Skipping unsupported tool {tool.get('name')}")
            continue
        schema = optional_object(tool, "input_schema", f"tools[{position}].input_schema", "tools")
        decoded.append(
            Tool(
                name=str(tool.get("name", "")),
                input_schema=dict(schema),
                description=tool.get("description"),
            )
        )
    return decoded


def _decode_tool_choice(tool_choice: Any) -> Optional[ToolChoice]:
    """Anthropic: "auto" | "any" | "none" | {"type": "tool", "name": "..."}"""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str) and tool_choice in ("auto", "any", "none"):
        return ToolChoice(type=tool_choice)
    if isinstance(tool_choice, Mapping):
        choice_type = tool_choice.get("type", "auto")
        if choice_type == "tool":
            return ToolChoice(type="tool", name=tool_choice.get("name"))
        if choice_type in ("auto", "any", "none"):
            return ToolChoice(type=choice_type)
    raise MalformedPayload(f"unsupported tool_choice {tool_choice!r}", invariant="tool_choice")


def decode_request(body: bytes) -> Request:
    """Parse an Anthropic Messages request body.

    Args:
        body: Raw request body

    Returns:
        The decoded Request

    Raises:
        DecodeError: If the body is not JSON or lacks ``model`` / ``messages``
        MalformedPayload: If a field is outside the legal range
    """
    payload = load_json_object(body, "request body")
    model = require_field(payload, "model")
    raw_messages = require_field(payload, "messages")
    if not isinstance(model, str):
        raise MalformedPayload("model must be a string", invariant="model")
    if not isinstance(raw_messages, list):
        raise MalformedPayload("messages must be a list", invariant="messages")

    messages: list[Message] = []
    for position, raw in enumerate(raw_messages):
        if not isinstance(raw, Mapping):
            raise MalformedPayload(f"messages[{position}] must be an object", invariant="messages")
        role = raw.get("role")
        if role not in ("user", "assistant"):
            raise MalformedPayload(
                f"messages[{position}].role must be 'user' or 'assistant', got {role!r}",
                invariant="role",
            )
        content = _decode_content(raw.get("content"), f"messages[{position}].content")
        messages.append(Message(role=Role(role), content=content))

    thinking = payload.get("thinking")
    thinking_budget = None
    if isinstance(thinking, Mapping) and thinking.get("type") == "enabled":
        thinking_budget = optional_int(thinking, "budget_tokens")

    metadata = payload.get("metadata")
    user = None
    if isinstance(metadata, Mapping) and metadata.get("user_id") is not None:
        user = str(metadata["user_id"])

    stop_sequences = payload.get("stop_sequences")
    if stop_sequences is not None and not isinstance(stop_sequences, list):
        raise MalformedPayload("stop_sequences must be a list", invariant="stop_sequences")

    return Request(
        model=model,
        messages=messages,
        max_tokens=optional_int(payload, "max_tokens"),
        temperature=optional_number(payload, "temperature", 0.0, 1.0),
        tools=_decode_tools(payload.get("tools")),
        tool_choice=_decode_tool_choice(payload.get("tool_choice")),
        stream=bool(payload.get("stream", False)),
        system=_decode_system(payload.get("system")),
        stop_sequences=stop_sequences,
        top_p=optional_number(payload, "top_p", 0.0, 1.0),
        top_k=optional_int(payload, "top_k"),
        user=user,
        thinking_budget=thinking_budget,
    )


def _encode_block(block: ContentBlock) -> Optional[dict[str, Any]]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": parse_tool_arguments(block.arguments_json),
        }
    if isinstance(block, ToolResultBlock):
        encoded: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
        }
        if block.is_error:
            encoded["is_error"] = True
        return encoded
    if isinstance(block, ThinkingBlock):
        encoded = {"type": "thinking", "thinking": block.thinking}
        if block.signature is not None:
            encoded["signature"] = block.signature
        return encoded
    if isinstance(block, RedactedBlock):
        return {"type": "redacted_thinking", "data": block.data}
    if isinstance(block, ImageBlock):
        if block.url and not block.data:
            return {"type": "image", "source": {"type": "url", "url": block.url}}
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": block.media_type or "image/png",
                "data": block.data or "",
            },
        }
    return None


def _encode_message_content(message: Message) -> str | list[dict[str, Any]]:
    blocks = []
    for block in message.content:
        if isinstance(block, ThinkingBlock) and block.signature is None:
            # The API rejects thinking blocks it did not sign
            logger.warning("Dropping unsigned thinking block from request")
            continue
        encoded = _encode_block(block)
        if encoded is not None:
            blocks.append(encoded)
    if len(blocks) == 1 and blocks[0]["type"] == "text":
        return blocks[0]["text"]
    return blocks


def _encode_tool_choice(tool_choice: ToolChoice) -> dict[str, Any]:
    if tool_choice.type == "tool":
        return {"type": "tool", "name": tool_choice.name or ""}
    return {"type": tool_choice.type}


def encode_request(request: Request) -> bytes:
    system_parts: list[str] = []
    if request.system:
        system_parts.append(request.system)

    messages: list[dict[str, Any]] = []
    for message in request.messages:
        if message.role is Role.SYSTEM:
            # mid-conversation system prompts fold into the top-level field
            text = message.text()
            if text:
                system_parts.append(text)
            continue
        messages.append({"role": message.role.value, "content": _encode_message_content(message)})

    max_tokens = request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS
    result: dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if system_parts:
        result["system"] = "\n\n".join(system_parts)

    if request.temperature is not None:
        temperature = request.temperature
        if temperature > 1.0:
            logger.debug(f"Clamping temperature {temperature} to 1.0")
            temperature = 1.0
        result["temperature"] = temperature
    if request.top_p is not None:
        result["top_p"] = request.top_p
    if request.top_k is not None:
        result["top_k"] = request.top_k
    if request.stop_sequences:
        result["stop_sequences"] = list(request.stop_sequences)
    if request.stream:
        result["stream"] = True

    if request.tools:
        result["tools"] = [
            {
                "name": tool.name,
                **({"description": tool.description} if tool.description is not None else {}),
                "input_schema": tool.input_schema or {"type": "object", "properties": {}},
            }
            for tool in request.tools
        ]
    if request.tool_choice is not None:
        result["tool_choice"] = _encode_tool_choice(request.tool_choice)

    budget = request.thinking_budget
    if budget is None:
        budget = effort_to_budget(request.reasoning_effort, max_tokens)
    if budget:
        result["thinking"] = {"type": "enabled", "budget_tokens": budget}

    if request.user:
        result["metadata"] = {"user_id": request.user}

    return json.dumps(result, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _decode_usage(usage: Any) -> Usage:
    if not isinstance(usage, Mapping):
        return Usage()
    return Usage(
        input_tokens=token_count(usage, "input_tokens"),
        output_tokens=token_count(usage, "output_tokens"),
    )


def decode_response(body: bytes) -> Response:
    payload = load_json_object(body, "response body")
    content = payload.get("content")
    if content is None:
        content = []
    if not isinstance(content, list):
        raise MalformedPayload("content must be a list of blocks", invariant="block_indices")

    blocks = _decode_content(content, "content")
    raw_stop = payload.get("stop_reason")
    warnings, stop_detail = read_proxy_metadata(payload)
    if raw_stop == "refusal" and stop_detail is None:
        stop_detail = "refusal"

    return Response(
        id=str(payload.get("id") or ""),
        model=str(payload.get("model") or ""),
        stop_reason=anthropic_stop_reason(raw_stop),
        content=blocks,
        usage=_decode_usage(payload.get("usage")),
        stop_sequence=payload.get("stop_sequence"),
        stop_detail=stop_detail,
        warnings=warnings,
    )


def encode_response(response: Response) -> bytes:
    content = []
    for block in response.content:
        encoded = _encode_block(block)
        if encoded is not None:
            content.append(encoded)

    result: dict[str, Any] = {
        "id": to_anthropic_id(response.id),
        "type": "message",
        "role": "assistant",
        "content": content,
        "model": response.model,
        "stop_reason": ANTHROPIC_STOP_REASONS[response.stop_reason],
        "stop_sequence": response.stop_sequence,
        "usage": {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        },
    }
    metadata = proxy_metadata(response)
    if metadata:
        result["proxy_metadata"] = metadata
    return json.dumps(result, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def error_payload(status_code: int, message: str, error_type: Optional[str] = None) -> dict[str, Any]:
    return {
        "type": "error",
        "error": {
            "type": error_type or anthropic_error_type(status_code),
            "message": message,
        },
    }


def encode_error(status_code: int, message: str, error_type: Optional[str] = None) -> bytes:
    """Encode an Anthropic error envelope: {"type":"error","error":{...}}"""
    return json.dumps(error_payload(status_code, message, error_type), ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

_BLOCK_KINDS = {
    "text": BlockKind.TEXT,
    "tool_use": BlockKind.TOOL_USE,
    "server_tool_use": BlockKind.TOOL_USE,
    "thinking": BlockKind.THINKING,
    "redacted_thinking": BlockKind.REDACTED,
}


def decode_stream_event(frame: SSEEvent) -> Optional[StreamEvent]:
    """Map one Anthropic SSE frame to a StreamEvent.

    Returns None for frames with no semantic content (``ping``,
    ``signature_delta`` and unknown event types).
    """
    if frame.data is None or frame.is_done:
        return None
    try:
        data = frame.json()
    except json.JSONDecodeError as exc:
        raise DecodeError(f"malformed Anthropic SSE frame: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError("Anthropic SSE frame data must be a JSON object")

    event_type = data.get("type") or frame.event

    if event_type == "message_start":
        message = optional_object(data, "message", invariant="stream_frame")
        return MessageStart(
            model=str(message.get("model") or ""),
            message_id=str(message.get("id") or ""),
            usage=_decode_usage(message.get("usage")),
        )

    if event_type == "content_block_start":
        block = optional_object(data, "content_block", invariant="stream_frame")
        kind = _BLOCK_KINDS.get(optional_str(block, "type", "text"))
        if kind is None:
            logger.debug(f"Unknown content block type in stream: {block.get('type')}")
            kind = BlockKind.TEXT
        return BlockStart(
            index=optional_index(data),
            kind=kind,
            tool_id=block.get("id"),
            tool_name=block.get("name"),
            data=block.get("data"),
        )

    if event_type == "content_block_delta":
        index = optional_index(data)
        delta = optional_object(data, "delta", invariant="stream_frame")
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return BlockDelta(index=index, text=optional_str(delta, "text"))
        if delta_type == "thinking_delta":
            return BlockDelta(index=index, text=optional_str(delta, "thinking"))
        if delta_type == "input_json_delta":
            return BlockDelta(index=index, arguments_json=optional_str(delta, "partial_json"))
        return None

    if event_type == "content_block_stop":
        return BlockStop(index=optional_index(data))

    if event_type == "message_delta":
        delta = optional_object(data, "delta", invariant="stream_frame")
        raw_stop = delta.get("stop_reason")
        return MessageDelta(
            stop_reason=anthropic_stop_reason(raw_stop) if raw_stop else None,
            stop_sequence=delta.get("stop_sequence"),
            usage=_decode_usage(data.get("usage")) if data.get("usage") else None,
            stop_detail="refusal" if raw_stop == "refusal" else None,
        )

    if event_type == "message_stop":
        return MessageStop()

    if event_type == "error":
        error = optional_object(data, "error", invariant="stream_frame")
        return ErrorEvent(
            kind=ErrorKind.UPSTREAM_DISCONNECTED,
            message=str(error.get("message") or "upstream stream error"),
            error_type=error.get("type"),
        )

    return None


class AnthropicStreamDecoder:
    """List-returning wrapper so both dialects decode streams the same way."""

    def decode_stream_event(self, frame: SSEEvent) -> list[StreamEvent]:
        event = decode_stream_event(frame)
        return [event] if event is not None else []


class AnthropicStreamEncoder:
    """Encodes StreamEvents as Anthropic Messages SSE frames for one stream.

    ``message_delta`` is held back until ``MessageStop`` so it can carry the
    final usage counters.
    """

    def __init__(self, message_id: Optional[str] = None, model: str = ""):
        self.message_id = to_anthropic_id(message_id) if message_id else None
        self.model = model
        self._kinds: dict[int, BlockKind] = {}
        self._pending_delta: Optional[MessageDelta] = None

    def encode(self, event: StreamEvent) -> bytes:
        if isinstance(event, MessageStart):
            return self._emit_message_start(event)
        if isinstance(event, BlockStart):
            return self._emit_block_start(event)
        if isinstance(event, BlockDelta):
            return self._emit_block_delta(event)
        if isinstance(event, BlockStop):
            return format_sse_event(
                "content_block_stop", {"type": "content_block_stop", "index": event.index}
            )
        if isinstance(event, MessageDelta):
            self._pending_delta = event
            return b""
        if isinstance(event, MessageStop):
            return self._emit_message_end(event)
        if isinstance(event, ErrorEvent):
            return self.encode_error(event)
        return b""

    def encode_error(self, event: ErrorEvent) -> bytes:
        error_type = event.error_type or "api_error"
        return format_sse_event("error", error_payload(502, event.message, error_type))

    def _emit_message_start(self, event: MessageStart) -> bytes:
        if self.message_id is None:
            self.message_id = to_anthropic_id(event.message_id)
        if event.model:
            self.model = event.model
        usage = event.usage or Usage()
        message = {
            "id": self.message_id,
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": self.model,
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
            },
        }
        return format_sse_event("message_start", {"type": "message_start", "message": message})

    def _emit_block_start(self, event: BlockStart) -> bytes:
        self._kinds[event.index] = event.kind
        if event.kind is BlockKind.TOOL_USE:
            block: dict[str, Any] = {
                "type": "tool_use",
                "id": event.tool_id or "",
                "name": event.tool_name or "",
                "input": {},
            }
        elif event.kind is BlockKind.THINKING:
            block = {"type": "thinking", "thinking": ""}
        elif event.kind is BlockKind.REDACTED:
            block = {"type": "redacted_thinking", "data": event.data or ""}
        else:
            block = {"type": "text", "text": ""}
        return format_sse_event(
            "content_block_start",
            {"type": "content_block_start", "index": event.index, "content_block": block},
        )

    def _emit_block_delta(self, event: BlockDelta) -> bytes:
        kind = self._kinds.get(event.index, BlockKind.TEXT)
        if kind is BlockKind.TOOL_USE:
            delta = {"type": "input_json_delta", "partial_json": event.arguments_json or ""}
        elif kind is BlockKind.THINKING:
            delta = {"type": "thinking_delta", "thinking": event.text or ""}
        elif kind is BlockKind.REDACTED:
            return b""
        else:
            delta = {"type": "text_delta", "text": event.text or ""}
        return format_sse_event(
            "content_block_delta",
            {"type": "content_block_delta", "index": event.index, "delta": delta},
        )

    def _emit_message_end(self, event: MessageStop) -> bytes:
        pending = self._pending_delta or MessageDelta(stop_reason=StopReason.END_TURN)
        usage = event.usage or pending.usage or Usage()
        stop_reason = pending.stop_reason or StopReason.END_TURN
        message_delta = {
            "type": "message_delta",
            "delta": {
                "stop_reason": ANTHROPIC_STOP_REASONS[stop_reason],
                "stop_sequence": pending.stop_sequence,
            },
            "usage": {
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
            },
        }
        self._pending_delta = None
        return format_sse_event("message_delta", message_delta) + format_sse_event(
            "message_stop", {"type": "message_stop"}
        )


StreamDecoder = AnthropicStreamDecoder
StreamEncoder = AnthropicStreamEncoder
