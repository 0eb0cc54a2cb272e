"""OpenAI Chat Completions codec.

OpenAI Chat Completion Events:
    data: {"choices":[{"delta":{"role":"assistant"},"index":0}]}
    data: {"choices":[{"delta":{"content":"Hello"},"index":0}]}
    data: {"choices":[{"delta":{"tool_calls":[...]},"index":0}]}
    data: {"choices":[{"delta":{},"finish_reason":"stop","index":0}]}
    data: [DONE]

The stream is flat: one ``choices[0].delta`` may carry text, reasoning or
tool-call fragments, so the stream decoder keeps track of which block is
currently open and assigns contiguous block indices itself.

Reference:
- OpenAI Chat Completions: https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional

from ..core.exceptions import DecodeError, ErrorKind, MalformedPayload
from ..core.sse import DONE_SENTINEL, SSEEvent, format_sse_event
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
    CONTENT_FILTER_DETAIL,
    ERROR_PREFIX,
    OPENAI_FINISH_REASONS,
    REDACTED_DROPPED_WARNING,
    budget_to_effort,
    clean_schema,
    generate_id,
    load_json_object,
    openai_error_type,
    openai_stop_reason,
    optional_index,
    optional_int,
    optional_list,
    optional_number,
    optional_object,
    optional_str,
    parse_data_url,
    parse_error_body,
    proxy_metadata,
    read_proxy_metadata,
    require_field,
    text_of_parts,
    to_openai_id,
    token_count,
)

logger = logging.getLogger("protobridge")

__all__ = [
    "OpenAIStreamDecoder",
    "OpenAIStreamEncoder",
    "StreamDecoder",
    "StreamEncoder",
    "decode_request",
    "decode_response",
    "encode_error",
    "encode_request",
    "encode_response",
    "parse_error_body",
]

_SYSTEM_ROLES = ("system", "developer")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _decode_parts(content: Any, where: str) -> list[ContentBlock]:
    """Decode user/assistant content (string or list of parts) into blocks."""
    if content is None:
        return []
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if not isinstance(content, list):
        raise MalformedPayload(f"{where} must be a string or a list of parts", invariant="messages")
    blocks: list[ContentBlock] = []
    for part in content:
        if not isinstance(part, Mapping):
            raise MalformedPayload(f"{where} parts must be objects", invariant="messages")
        part_type = part.get("type", "")
        if part_type == "text":
            blocks.append(TextBlock(text=str(part.get("text", ""))))
        elif part_type == "image_url":
            image_url = part.get("image_url")
            if isinstance(image_url, str):
                url = image_url
            else:
                image = optional_object(part, "image_url", f"{where}.image_url", "content")
                url = optional_str(image, "url")
            parsed = parse_data_url(url)
            if parsed:
                blocks.append(ImageBlock(media_type=parsed[0], data=parsed[1]))
            else:
                blocks.append(ImageBlock(url=url))
        elif part_type == "refusal":
            blocks.append(TextBlock(text=str(part.get("refusal", ""))))
        else:
            logger.warning(f"Unknown content part type: {part_type}")
    return blocks


def _decode_tool_calls(tool_calls: Any, where: str) -> list[ContentBlock]:
    if not tool_calls:
        return []
    if not isinstance(tool_calls, list):
        raise MalformedPayload(f"{where} must be a list", invariant="tool_calls")
    blocks: list[ContentBlock] = []
    for position, call in enumerate(tool_calls):
        if not isinstance(call, Mapping):
            raise MalformedPayload(f"{where} entries must be objects", invariant="tool_calls")
        function = optional_object(call, "function", f"{where}[{position}].function", "tool_calls")
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        blocks.append(
            ToolUseBlock(
                id=str(call.get("id") or generate_id("call_")),
                name=str(function.get("name", "")),
                arguments_json=arguments or "{}",
            )
        )
    return blocks


def _decode_tool_result(raw: Mapping[str, Any]) -> ToolResultBlock:
    content = text_of_parts(raw.get("content"))
    is_error = content.startswith(ERROR_PREFIX)
    if is_error:
        content = content[len(ERROR_PREFIX):]
    return ToolResultBlock(
        tool_use_id=str(raw.get("tool_call_id", "")),
        content=content,
        is_error=is_error,
    )


def _decode_messages(raw_messages: list[Any]) -> tuple[Optional[str], list[Message]]:
    """Split leading system messages off and group tool results into user turns.

    Consecutive ``tool`` messages become one user message of tool_result
    blocks; a user message that directly follows them joins the same turn.
    """
    system_parts: list[str] = []
    messages: list[Message] = []
    tool_turn: Optional[Message] = None
    leading = True

    for position, raw in enumerate(raw_messages):
        if not isinstance(raw, Mapping):
            raise MalformedPayload(f"messages[{position}] must be an object", invariant="messages")
        role = raw.get("role")
        where = f"messages[{position}]"

        if role in _SYSTEM_ROLES:
            text = text_of_parts(raw.get("content"))
            if leading:
                system_parts.append(text)
            else:
                messages.append(Message(role=Role.SYSTEM, content=[TextBlock(text=text)]))
            tool_turn = None
            continue

        leading = False
        if role == "tool":
            if tool_turn is None:
                tool_turn = Message(role=Role.USER, content=[])
                messages.append(tool_turn)
            tool_turn.content.append(_decode_tool_result(raw))
        elif role == "user":
            blocks = _decode_parts(raw.get("content"), f"{where}.content")
            if tool_turn is not None:
                tool_turn.content.extend(blocks)
            else:
                messages.append(Message(role=Role.USER, content=blocks))
            tool_turn = None
        elif role == "assistant":
            blocks = []
            reasoning = raw.get("reasoning_content") or raw.get("reasoning")
            if isinstance(reasoning, str) and reasoning:
                blocks.append(ThinkingBlock(thinking=reasoning))
            content = raw.get("content")
            tool_calls = raw.get("tool_calls")
            if not (tool_calls and content in (None, "")):
                blocks.extend(_decode_parts(content, f"{where}.content"))
            blocks.extend(_decode_tool_calls(tool_calls, f"{where}.tool_calls"))
            messages.append(Message(role=Role.ASSISTANT, content=blocks))
            tool_turn = None
        else:
            raise MalformedPayload(f"{where}.role {role!r} is not a valid role", invariant="role")

    system = "\n".join(system_parts) if system_parts else None
    return system, messages


def _decode_tools(tools: Any) -> Optional[list[Tool]]:
    if tools is None:
        return None
    if not isinstance(tools, list):
        raise MalformedPayload("tools must be a list", invariant="tools")
    decoded: list[Tool] = []
    for position, tool in enumerate(tools):
        if not isinstance(tool, Mapping):
            raise MalformedPayload(f"tools[{position}] must be an object", invariant="tools")
        function = optional_object(tool, "function", f"tools[{position}].function", "tools")
        parameters = optional_object(function, "parameters", f"tools[{position}].function.parameters", "tools")
        decoded.append(
            Tool(
                name=str(function.get("name", "")),
                input_schema=dict(parameters),
                description=function.get("description"),
            )
        )
    return decoded


def _decode_tool_choice(tool_choice: Any) -> Optional[ToolChoice]:
    """OpenAI: "auto" | "required" | "none" | {"type": "function", "function": {"name": "..."}}"""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return ToolChoice(type="any")
        if tool_choice in ("auto", "none"):
            return ToolChoice(type=tool_choice)
    if isinstance(tool_choice, Mapping):
        function = optional_object(tool_choice, "function", "tool_choice.function", "tool_choice")
        if tool_choice.get("type") == "function" and function.get("name"):
            return ToolChoice(type="tool", name=function["name"])
    raise MalformedPayload(f"unsupported tool_choice {tool_choice!r}", invariant="tool_choice")


def decode_request(body: bytes) -> Request:
    """Parse an OpenAI Chat Completions request body.

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

    system, messages = _decode_messages(raw_messages)

    max_tokens = optional_int(payload, "max_tokens")
    if max_tokens is None:
        max_tokens = optional_int(payload, "max_completion_tokens")

    stop = payload.get("stop")
    if isinstance(stop, str):
        stop_sequences: Optional[list[str]] = [stop]
    elif stop is None or isinstance(stop, list):
        stop_sequences = stop
    else:
        raise MalformedPayload("stop must be a string or a list", invariant="stop")

    reasoning_effort = payload.get("reasoning_effort")
    return Request(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=optional_number(payload, "temperature", 0.0, 2.0),
        tools=_decode_tools(payload.get("tools")),
        tool_choice=_decode_tool_choice(payload.get("tool_choice")),
        stream=bool(payload.get("stream", False)),
        system=system,
        stop_sequences=stop_sequences,
        top_p=optional_number(payload, "top_p", 0.0, 1.0),
        user=str(payload["user"]) if payload.get("user") is not None else None,
        reasoning_effort=str(reasoning_effort) if reasoning_effort else None,
    )


def _encode_image(block: ImageBlock) -> dict[str, Any]:
    if block.data:
        url = f"data:{block.media_type or 'image/png'};base64,{block.data}"
    else:
        url = block.url or ""
    return {"type": "image_url", "image_url": {"url": url}}


def _collapse_parts(parts: list[dict[str, Any]]) -> str | list[dict[str, Any]] | None:
    if not parts:
        return None
    if len(parts) == 1 and parts[0]["type"] == "text":
        return parts[0]["text"]
    return parts


def _encode_message(message: Message) -> list[dict[str, Any]]:
    """Encode one neutral message; a user turn may expand into several OpenAI messages."""
    if message.role is Role.SYSTEM:
        return [{"role": "system", "content": message.text()}]

    encoded: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []
    tool_calls: list[dict[str, Any]] = []

    for block in message.content:
        if isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            parts.append(_encode_image(block))
        elif isinstance(block, ToolUseBlock):
            tool_calls.append({
                "id": block.id,
                "type": "function",
                "function": {"name": block.name, "arguments": block.arguments_json},
            })
        elif isinstance(block, ToolResultBlock):
            content = block.content
            if block.is_error:
                content = f"{ERROR_PREFIX}{content}"
            # Tool results must directly follow the assistant turn that called them
            encoded.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": content})
        elif isinstance(block, ThinkingBlock):
            logger.debug("Dropping thinking block during translation")
        elif isinstance(block, RedactedBlock):
            logger.debug("Dropping redacted_thinking block during translation")

    content = _collapse_parts(parts)
    if message.role is Role.ASSISTANT:
        msg_dict: dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            msg_dict["tool_calls"] = tool_calls
        elif content is None:
            msg_dict["content"] = ""
        encoded.append(msg_dict)
    elif content is not None or not encoded:
        encoded.append({"role": "user", "content": content if content is not None else ""})
    return encoded


def _encode_tool_choice(tool_choice: ToolChoice) -> str | dict[str, Any]:
    if tool_choice.type == "tool":
        return {"type": "function", "function": {"name": tool_choice.name or ""}}
    if tool_choice.type == "any":
        return "required"
    return tool_choice.type


def encode_request(request: Request) -> bytes:
    messages: list[dict[str, Any]] = []
    if request.system:
        messages.append({"role": "system", "content": request.system})
    for message in request.messages:
        messages.extend(_encode_message(message))

    result: dict[str, Any] = {"model": request.model, "messages": messages}
    if request.max_tokens is not None:
        result["max_tokens"] = request.max_tokens
    if request.temperature is not None:
        result["temperature"] = request.temperature
    if request.top_p is not None:
        result["top_p"] = request.top_p
    if request.top_k is not None:
        logger.debug(f"top_k={request.top_k} is not supported by OpenAI, ignoring")
    if request.stop_sequences:
        result["stop"] = list(request.stop_sequences)
    if request.tools:
        result["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    **({"description": tool.description} if tool.description is not None else {}),
                    "parameters": clean_schema(tool.input_schema),
                },
            }
            for tool in request.tools
        ]
    if request.tool_choice is not None:
        result["tool_choice"] = _encode_tool_choice(request.tool_choice)
    effort = request.reasoning_effort or budget_to_effort(request.thinking_budget)
    if effort:
        result["reasoning_effort"] = effort
    if request.user:
        result["user"] = request.user
    if request.stream:
        result["stream"] = True
        result["stream_options"] = {"include_usage": True}
    return json.dumps(result, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _decode_usage(usage: Any) -> Usage:
    if not isinstance(usage, Mapping):
        return Usage()
    details = optional_object(usage, "completion_tokens_details", invariant="usage")
    return Usage(
        input_tokens=token_count(usage, "prompt_tokens"),
        output_tokens=token_count(usage, "completion_tokens"),
        reasoning_tokens=token_count(details, "reasoning_tokens"),
    )


def _encode_usage(usage: Usage) -> dict[str, Any]:
    encoded: dict[str, Any] = {
        "prompt_tokens": usage.input_tokens,
        "completion_tokens": usage.output_tokens,
        "total_tokens": usage.input_tokens + usage.output_tokens,
    }
    if usage.reasoning_tokens:
        encoded["completion_tokens_details"] = {"reasoning_tokens": usage.reasoning_tokens}
    return encoded


def decode_response(body: bytes) -> Response:
    payload = load_json_object(body, "response body")
    choices = require_field(payload, "choices")
    if not isinstance(choices, list):
        raise MalformedPayload("choices must be a list", invariant="choices")

    # Only n=1 has a neutral equivalent
    choice = choices[0] if choices else {}
    if not isinstance(choice, Mapping):
        raise MalformedPayload("choices[0] must be an object", invariant="choices")
    message = optional_object(choice, "message", "choices[0].message", "choices")
    finish_reason = choice.get("finish_reason")

    blocks: list[ContentBlock] = []
    reasoning = message.get("reasoning_content") or message.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        blocks.append(ThinkingBlock(thinking=reasoning))
    content = message.get("content")
    if isinstance(content, str):
        if content:
            blocks.append(TextBlock(text=content))
    else:
        blocks.extend(_decode_parts(content, "message.content"))
    blocks.extend(_decode_tool_calls(message.get("tool_calls"), "message.tool_calls"))

    warnings, stop_detail = read_proxy_metadata(payload)
    if finish_reason == "content_filter" and stop_detail is None:
        stop_detail = message.get("refusal") or CONTENT_FILTER_DETAIL

    return Response(
        id=str(payload.get("id") or ""),
        model=str(payload.get("model") or ""),
        stop_reason=openai_stop_reason(finish_reason),
        content=blocks,
        usage=_decode_usage(payload.get("usage")),
        stop_detail=stop_detail,
        warnings=warnings,
    )


def encode_response(response: Response) -> bytes:
    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    extra_warnings: list[str] = []

    for block in response.content:
        if isinstance(block, TextBlock):
            text_parts.append(block.text)
        elif isinstance(block, ThinkingBlock):
            reasoning_parts.append(block.thinking)
        elif isinstance(block, ToolUseBlock):
            tool_calls.append({
                "id": block.id,
                "type": "function",
                "function": {"name": block.name, "arguments": block.arguments_json},
            })
        elif isinstance(block, RedactedBlock):
            if REDACTED_DROPPED_WARNING not in extra_warnings:
                extra_warnings.append(REDACTED_DROPPED_WARNING)

    message: dict[str, Any] = {
        "role": "assistant",
        "content": "".join(text_parts) if text_parts or not tool_calls else None,
    }
    if reasoning_parts:
        message["reasoning_content"] = "".join(reasoning_parts)
    if tool_calls:
        message["tool_calls"] = tool_calls

    result: dict[str, Any] = {
        "id": to_openai_id(response.id),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": response.model,
        "choices": [{
            "index": 0,
            "message": message,
            "finish_reason": OPENAI_FINISH_REASONS[response.stop_reason],
        }],
        "usage": _encode_usage(response.usage),
    }
    metadata = proxy_metadata(response, extra_warnings)
    if metadata:
        result["proxy_metadata"] = metadata
    return json.dumps(result, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def error_payload(
    status_code: int,
    message: str,
    error_type: Optional[str] = None,
    code: Optional[str] = None,
    param: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": error_type or openai_error_type(status_code),
            "param": param,
            "code": code,
        }
    }


def encode_error(
    status_code: int,
    message: str,
    error_type: Optional[str] = None,
    code: Optional[str] = None,
    param: Optional[str] = None,
) -> bytes:
    """Encode an OpenAI error envelope: {"error":{"message","type","param","code"}}"""
    payload = error_payload(status_code, message, error_type, code, param)
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class OpenAIStreamDecoder:
    """Turns flat chat completion chunks into block-scoped StreamEvents.

    One chunk can produce several events (closing the previous block, opening
    a new one and its first delta), so ``decode_stream_event`` returns a list.
    """

    def __init__(self) -> None:
        self.started = False
        self.finished = False
        self.usage: Optional[Usage] = None
        self._next_index = 0
        self._open_index: Optional[int] = None
        self._open_kind: Optional[BlockKind] = None
        # OpenAI tool_call index -> our block index
        self._tool_blocks: dict[int, int] = {}

    def decode_stream_event(self, frame: SSEEvent) -> list[StreamEvent]:
        if frame.data is None:
            return []
        if frame.data.strip() == DONE_SENTINEL:
            return self._finish()
        try:
            data = frame.json()
        except json.JSONDecodeError as exc:
            raise DecodeError(f"malformed OpenAI SSE frame: {exc}") from exc
        if not isinstance(data, dict):
            raise DecodeError("OpenAI SSE frame data must be a JSON object")

        error = data.get("error")
        if error:
            if isinstance(error, Mapping):
                message = str(error.get("message") or "upstream stream error")
                error_type = error.get("type")
            else:
                message, error_type = str(error), None
            return [ErrorEvent(ErrorKind.UPSTREAM_DISCONNECTED, message, error_type)]

        events: list[StreamEvent] = []
        if not self.started:
            self.started = True
            events.append(MessageStart(
                model=str(data.get("model") or ""),
                message_id=str(data.get("id") or ""),
            ))

        if data.get("usage"):
            self.usage = _decode_usage(data["usage"])

        choices = optional_list(data, "choices", invariant="stream_frame")
        if not choices:
            return events
        choice = choices[0]
        if not isinstance(choice, Mapping):
            raise MalformedPayload("choices[0] must be an object", invariant="stream_frame")
        delta = optional_object(choice, "delta", "choices[0].delta", "stream_frame")

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            events.extend(self._ensure_block(BlockKind.THINKING))
            events.append(BlockDelta(index=self._open_index, text=reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.extend(self._ensure_block(BlockKind.TEXT))
            events.append(BlockDelta(index=self._open_index, text=content))

        for call in optional_list(delta, "tool_calls", "delta.tool_calls", "stream_frame"):
            if not isinstance(call, Mapping):
                raise MalformedPayload("delta.tool_calls entries must be objects", invariant="stream_frame")
            events.extend(self._decode_tool_fragment(call))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.extend(self._close_open_block())
            stop_reason = openai_stop_reason(finish_reason)
            events.append(MessageDelta(
                stop_reason=stop_reason,
                usage=self.usage,
                stop_detail=CONTENT_FILTER_DETAIL if stop_reason is StopReason.ERROR else None,
            ))
            self.finished = True
        return events

    def _decode_tool_fragment(self, call: Mapping[str, Any]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        call_index = optional_index(call)
        function = optional_object(call, "function", "tool_calls.function", "stream_frame")
        block_index = self._tool_blocks.get(call_index)
        if block_index is None:
            events.extend(self._close_open_block())
            block_index = self._next_index
            self._next_index += 1
            self._tool_blocks[call_index] = block_index
            self._open_index = block_index
            self._open_kind = BlockKind.TOOL_USE
            events.append(BlockStart(
                index=block_index,
                kind=BlockKind.TOOL_USE,
                tool_id=call.get("id") or generate_id("call_"),
                tool_name=function.get("name") or "",
            ))
        elif block_index != self._open_index:
            raise MalformedPayload(
                f"tool call {call_index} received a fragment after its block was closed",
                invariant="block_indices",
            )
        arguments = optional_str(function, "arguments")
        if arguments:
            events.append(BlockDelta(index=block_index, arguments_json=arguments))
        return events

    def _ensure_block(self, kind: BlockKind) -> list[StreamEvent]:
        if self._open_index is not None and self._open_kind is kind:
            return []
        events = self._close_open_block()
        self._open_index = self._next_index
        self._open_kind = kind
        self._next_index += 1
        events.append(BlockStart(index=self._open_index, kind=kind))
        return events

    def _close_open_block(self) -> list[StreamEvent]:
        if self._open_index is None:
            return []
        index = self._open_index
        self._open_index = None
        self._open_kind = None
        return [BlockStop(index=index)]

    def _finish(self) -> list[StreamEvent]:
        events = self._close_open_block()
        events.append(MessageStop(usage=self.usage))
        return events


class OpenAIStreamEncoder:
    """Encodes StreamEvents as chat completion chunks for one stream."""

    def __init__(self, message_id: Optional[str] = None, model: str = ""):
        self.message_id = to_openai_id(message_id) if message_id else None
        self.model = model
        self.created = int(time.time())
        self.usage: Optional[Usage] = None
        self._kinds: dict[int, BlockKind] = {}
        # our block index -> OpenAI tool_call ordinal
        self._tool_ordinals: dict[int, int] = {}

    def encode(self, event: StreamEvent) -> bytes:
        if isinstance(event, MessageStart):
            if self.message_id is None:
                self.message_id = to_openai_id(event.message_id)
            if event.model:
                self.model = event.model
            return self._chunk({"role": "assistant", "content": ""})
        if isinstance(event, BlockStart):
            return self._emit_block_start(event)
        if isinstance(event, BlockDelta):
            return self._emit_block_delta(event)
        if isinstance(event, BlockStop):
            return b""
        if isinstance(event, MessageDelta):
            if event.usage is not None:
                self.usage = event.usage
            reason = OPENAI_FINISH_REASONS[event.stop_reason or StopReason.END_TURN]
            return self._chunk({}, finish_reason=reason)
        if isinstance(event, MessageStop):
            usage = event.usage or self.usage or Usage()
            usage_chunk = self._base()
            usage_chunk["choices"] = []
            usage_chunk["usage"] = _encode_usage(usage)
            return format_sse_event(None, usage_chunk) + format_sse_event(None, DONE_SENTINEL)
        if isinstance(event, ErrorEvent):
            return self.encode_error(event)
        return b""

    def encode_error(self, event: ErrorEvent) -> bytes:
        payload = error_payload(502, event.message, event.error_type, code=event.kind.value)
        return format_sse_event(None, payload)

    def _base(self) -> dict[str, Any]:
        if self.message_id is None:
            self.message_id = to_openai_id(None)
        return {
            "id": self.message_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
        }

    def _chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> bytes:
        chunk = self._base()
        chunk["choices"] = [{"index": 0, "delta": delta, "finish_reason": finish_reason}]
        return format_sse_event(None, chunk)

    def _emit_block_start(self, event: BlockStart) -> bytes:
        self._kinds[event.index] = event.kind
        if event.kind is BlockKind.REDACTED:
            logger.debug("Dropping redacted_thinking block from OpenAI stream")
            return b""
        if event.kind is not BlockKind.TOOL_USE:
            return b""
        ordinal = len(self._tool_ordinals)
        self._tool_ordinals[event.index] = ordinal
        return self._chunk({
            "tool_calls": [{
                "index": ordinal,
                "id": event.tool_id or generate_id("call_"),
                "type": "function",
                "function": {"name": event.tool_name or "", "arguments": ""},
            }]
        })

    def _emit_block_delta(self, event: BlockDelta) -> bytes:
        kind = self._kinds.get(event.index, BlockKind.TEXT)
        if kind is BlockKind.TOOL_USE:
            if not event.arguments_json:
                return b""
            return self._chunk({
                "tool_calls": [{
                    "index": self._tool_ordinals[event.index],
                    "function": {"arguments": event.arguments_json},
                }]
            })
        if not event.text:
            return b""
        if kind is BlockKind.THINKING:
            return self._chunk({"reasoning_content": event.text})
        if kind is BlockKind.REDACTED:
            return b""
        return self._chunk({"content": event.text})


StreamDecoder = OpenAIStreamDecoder
StreamEncoder = OpenAIStreamEncoder
