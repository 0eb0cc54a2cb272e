"""Dialect-neutral representation of chat requests and responses.

The codecs decode wire payloads into these types and encode them back out.
Nothing here performs I/O; construction only validates the invariants that
both dialects share.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..core.exceptions import MalformedPayload


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StopReason(str, Enum):
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"
    ERROR = "error"


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation; ``arguments_json`` is the string-encoded input object."""

    id: str
    name: str
    arguments_json: str = "{}"


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class ThinkingBlock:
    """Extended reasoning text. ``signature`` is only ever set by Anthropic."""

    thinking: str
    signature: Optional[str] = None


@dataclass(frozen=True)
class RedactedBlock:
    data: str


@dataclass(frozen=True)
class ImageBlock:
    """Image input given either inline (``media_type`` + ``data``) or by ``url``."""

    media_type: Optional[str] = None
    data: Optional[str] = None
    url: Optional[str] = None


ContentBlock = Union[
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
    ThinkingBlock,
    RedactedBlock,
    ImageBlock,
]

CONTENT_BLOCK_TYPES = (
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
    ThinkingBlock,
    RedactedBlock,
    ImageBlock,
)


@dataclass
class Message:
    role: Role
    content: list[ContentBlock] = field(default_factory=list)

    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


@dataclass(frozen=True)
class Tool:
    name: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None


@dataclass(frozen=True)
class ToolChoice:
    """Tool selection policy: ``auto``, ``any``, ``none`` or ``tool`` (with ``name``)."""

    type: str = "auto"
    name: Optional[str] = None


@dataclass
class Request:
    model: str
    messages: list[Message]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: Optional[list[Tool]] = None
    tool_choice: Optional[ToolChoice] = None
    stream: bool = False
    system: Optional[str] = None
    stop_sequences: Optional[list[str]] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    user: Optional[str] = None
    thinking_budget: Optional[int] = None
    reasoning_effort: Optional[str] = None

    def __post_init__(self) -> None:
        validate_request(self)

    @property
    def wants_reasoning(self) -> bool:
        return bool(self.thinking_budget) or bool(self.reasoning_effort)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0

    def merged(self, update: Optional["Usage"]) -> "Usage":
        """Overlay the non-zero counters of ``update`` on this usage."""
        if update is None:
            return self
        return Usage(
            input_tokens=update.input_tokens or self.input_tokens,
            output_tokens=update.output_tokens or self.output_tokens,
            reasoning_tokens=update.reasoning_tokens or self.reasoning_tokens,
        )


@dataclass
class Response:
    id: str
    model: str
    stop_reason: StopReason
    content: list[ContentBlock] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_sequence: Optional[str] = None
    stop_detail: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        validate_response(self)


def validate_request(request: Request) -> None:
    """Reject requests that break the tool-name or message-shape invariants."""
    if not isinstance(request.messages, list):
        raise MalformedPayload("messages must be a list", invariant="messages")
    for position, message in enumerate(request.messages):
        if not isinstance(message, Message):
            raise MalformedPayload(
                f"messages[{position}] is not a Message", invariant="messages"
            )
        _validate_blocks(message.content, f"messages[{position}].content")
    if request.max_tokens is not None and request.max_tokens < 0:
        raise MalformedPayload(
            f"max_tokens must be non-negative, got {request.max_tokens}",
            invariant="max_tokens",
        )
    if request.tools:
        seen: set[str] = set()
        for tool in request.tools:
            if tool.name in seen:
                raise MalformedPayload(
                    f"tool names must be unique within a request: '{tool.name}' repeats",
                    invariant="unique_tool_names",
                )
            seen.add(tool.name)


def validate_response(response: Response) -> None:
    if not isinstance(response.stop_reason, StopReason):
        raise MalformedPayload(
            f"unknown stop reason {response.stop_reason!r}", invariant="stop_reason"
        )
    _validate_blocks(response.content, "content")


def _validate_blocks(blocks: Any, where: str) -> None:
    if not isinstance(blocks, list):
        raise MalformedPayload(f"{where} must be a list of blocks", invariant="block_indices")
    for index, block in enumerate(blocks):
        if not isinstance(block, CONTENT_BLOCK_TYPES):
            raise MalformedPayload(
                f"{where}[{index}] is not a content block", invariant="block_indices"
            )
